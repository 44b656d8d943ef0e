from __future__ import annotations

from expense_relay.core.config import settings
from expense_relay.core.logging import get_logger, log_event
from expense_relay.modules.ledger.service import get_ledger

logger = get_logger(__name__)


def bootstrap() -> None:
    if not settings.gemini_api_key:
        raise RuntimeError("GEMINI_API_KEY is not set. Configure it before starting the relay.")

    ledger = get_ledger()
    log_event(
        logger,
        "startup.ready",
        environment=settings.environment,
        ledger_backend=ledger.backend,
        model=settings.gemini_model,
        default_currency=settings.default_currency,
        default_timezone=settings.default_timezone,
        reply_enabled=settings.whatsapp_reply_enabled,
        self_messages_only=settings.whatsapp_self_messages_only,
    )
    if not settings.whatsapp_reply_enabled:
        log_event(logger, "startup.replies_disabled")
