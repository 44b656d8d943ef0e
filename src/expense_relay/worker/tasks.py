from __future__ import annotations

import time
from typing import Any

from expense_relay.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_task_context,
    set_task_context,
)
from expense_relay.worker.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="process_message", bind=True)
def process_message_task(self, message: dict[str, Any]) -> dict[str, Any]:
    from expense_relay.modules.messages.schemas import InboundMessage
    from expense_relay.modules.messages.service import handle_message

    task_id = getattr(self.request, "id", None)
    token = set_task_context(task_id)
    start = time.monotonic()
    message_id = message.get("id")
    log_event(
        logger,
        "celery.task.start",
        task_name="process_message",
        celery_task_id=task_id,
        message_id=message_id,
    )
    try:
        handled = handle_message(InboundMessage.model_validate(message))
        log_event(
            logger,
            "celery.task.finish",
            task_name="process_message",
            celery_task_id=task_id,
            message_id=message_id,
            status=handled.status,
            duration_ms=monotonic_ms(start),
        )
        return {"status": handled.status, "reason": handled.reason}
    except Exception:
        log_exception(
            logger,
            "celery.task.error",
            task_name="process_message",
            celery_task_id=task_id,
            message_id=message_id,
            duration_ms=monotonic_ms(start),
        )
        raise
    finally:
        reset_task_context(token)
