from __future__ import annotations

from fastapi import APIRouter, Depends

from expense_relay.api.deps import require_bridge
from expense_relay.core.logging import get_logger, log_event
from expense_relay.modules.messages.schemas import (
    InboundMessage,
    QueuedOut,
    ReadyEvent,
    SessionOut,
)
from expense_relay.modules.messages.session import self_identity
from expense_relay.worker.tasks import process_message_task

router = APIRouter(tags=["messages"], dependencies=[Depends(require_bridge)])
logger = get_logger(__name__)


@router.post("/messages", response_model=QueuedOut, status_code=202)
def receive_message(payload: InboundMessage) -> QueuedOut:
    log_event(
        logger,
        "message.webhook.received",
        message_id=payload.id,
        chat_id=payload.chat_id,
        message_type=payload.type,
        has_media=payload.media is not None,
    )
    async_result = process_message_task.delay(payload.model_dump())
    log_event(
        logger,
        "celery.task.enqueued",
        task_name="process_message",
        celery_task_id=async_result.id,
        message_id=payload.id,
    )
    return QueuedOut(status="queued", task_id=async_result.id)


@router.post("/session/ready", response_model=SessionOut)
def session_ready(payload: ReadyEvent) -> SessionOut:
    self_identity.mark_ready(payload.self_id)
    return SessionOut(ready=self_identity.ready, self_id=self_identity.self_id)


@router.get("/session", response_model=SessionOut)
def session_state() -> SessionOut:
    return SessionOut(ready=self_identity.ready, self_id=self_identity.self_id)
