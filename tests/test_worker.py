from __future__ import annotations


def test_worker_app_imports_task_module():
    from expense_relay.worker.celery_app import celery_app

    assert "expense_relay.worker.tasks" in celery_app.conf.include
    celery_app.loader.import_default_modules()
    assert "process_message" in celery_app.tasks


def test_process_message_task_reports_skip_reason():
    from expense_relay.worker.tasks import process_message_task

    result = process_message_task.apply(
        args=[{"id": "true_1", "chat_id": "me@c.us", "from_me": True, "type": "sticker"}]
    )
    assert result.get() == {"status": "skipped", "reason": "unsupported_type"}
