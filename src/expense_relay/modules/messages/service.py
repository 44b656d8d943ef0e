from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass

import httpx

from expense_relay.core.config import settings
from expense_relay.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_message_context,
    set_message_context,
)
from expense_relay.modules.extraction.ai import ModelClient
from expense_relay.modules.extraction.errors import ExtractionError
from expense_relay.modules.extraction.schemas import ExpenseRecord, ImageInput
from expense_relay.modules.extraction.service import extract_expense
from expense_relay.modules.ledger.service import Ledger, LedgerError, LedgerMetadata, get_ledger
from expense_relay.modules.messages.directives import parse_directives
from expense_relay.modules.messages.replies import (
    FAILURE_REPLY,
    ReplyChannel,
    build_success_reply,
    get_reply_channel,
)
from expense_relay.modules.messages.schemas import SUPPORTED_MESSAGE_TYPES, InboundMessage
from expense_relay.modules.messages.session import SelfIdentity, self_identity

logger = get_logger(__name__)


@dataclass(frozen=True)
class HandledMessage:
    status: str
    reason: str | None = None
    record: ExpenseRecord | None = None
    reply: str | None = None
    stage: str | None = None


def allowed_chat_ids() -> list[str]:
    return [c.strip() for c in (settings.allowed_chat_ids or "").split(",") if c.strip()]


def is_message_from_self(message: InboundMessage, self_id: str | None) -> bool:
    if message.from_me:
        return True
    if message.id.startswith("true_"):
        return True
    if self_id:
        if message.author and message.author == self_id:
            return True
        if not message.author and message.chat_id == self_id:
            return True
    return False


def skip_reason(message: InboundMessage, identity: SelfIdentity) -> str | None:
    from_self = is_message_from_self(message, identity.self_id)
    if settings.whatsapp_self_messages_only and not from_self:
        return "not_from_self"

    allowed = allowed_chat_ids()
    if allowed and message.chat_id not in allowed:
        return "chat_not_allowed"

    if message.type not in SUPPORTED_MESSAGE_TYPES:
        return "unsupported_type"
    return None


def load_image(message: InboundMessage) -> ImageInput | None:
    media = message.media
    if media is None:
        return None
    if not media.mime_type.startswith("image/"):
        log_event(logger, "message.media.discarded", reason="not_image", mime_type=media.mime_type)
        return None

    data = media.data
    if not data and media.url:
        headers: dict[str, str] = {}
        if settings.bridge_token:
            headers["Authorization"] = f"Bearer {settings.bridge_token}"
        try:
            resp = httpx.get(
                media.url,
                headers=headers,
                timeout=float(settings.bridge_timeout_seconds or 10.0),
                follow_redirects=True,
            )
            resp.raise_for_status()
        except httpx.HTTPError:
            log_exception(logger, "message.media.download_failure", media_url=media.url)
            return None
        data = base64.b64encode(resp.content).decode("ascii")

    if not data:
        log_event(logger, "message.media.discarded", reason="empty", mime_type=media.mime_type)
        return None
    return ImageInput(data_base64=data, mime_type=media.mime_type)


def handle_message(
    message: InboundMessage,
    *,
    ledger: Ledger | None = None,
    reply_channel: ReplyChannel | None = None,
    client: ModelClient | None = None,
    identity: SelfIdentity | None = None,
) -> HandledMessage:
    identity = identity or self_identity
    tokens = set_message_context(message_id=message.id, chat_id=message.chat_id)
    try:
        return _handle(
            message,
            ledger=ledger,
            reply_channel=reply_channel,
            client=client,
            identity=identity,
        )
    finally:
        reset_message_context(tokens)


def _handle(
    message: InboundMessage,
    *,
    ledger: Ledger | None,
    reply_channel: ReplyChannel | None,
    client: ModelClient | None,
    identity: SelfIdentity,
) -> HandledMessage:
    start = time.monotonic()
    identity.refresh(message.self_id)
    log_event(
        logger,
        "message.received",
        message_type=message.type,
        has_media=message.media is not None,
        from_me=message.from_me,
        author=message.author,
    )

    reason = skip_reason(message, identity)
    if reason:
        log_event(logger, "message.skipped", reason=reason, message_type=message.type)
        return HandledMessage(status="skipped", reason=reason)

    raw_text = (message.body or "").strip()
    directives = parse_directives(raw_text)
    image = load_image(message)
    timestamp_ms = (message.timestamp or int(time.time())) * 1000

    try:
        result = extract_expense(
            text=directives.text,
            image=image,
            timestamp_ms=timestamp_ms,
            account_override=directives.account_override,
            raw_text=raw_text,
            client=client,
        )
        note = directives.text if image is not None else ""
        (ledger or get_ledger()).append(
            result.record,
            LedgerMetadata(
                message_id=message.id,
                chat_name=message.chat_name or message.chat_id,
                source=message.source,
                note=note,
            ),
        )
    except (ExtractionError, LedgerError) as e:
        log_event(
            logger,
            "message.failed",
            level=logging.ERROR,
            error_type=type(e).__name__,
            error=str(e),
            duration_ms=monotonic_ms(start),
        )
        _send_reply(message, FAILURE_REPLY, reply_channel)
        return HandledMessage(status="failed", reason=type(e).__name__, reply=FAILURE_REPLY)
    except Exception:
        log_exception(logger, "message.error", duration_ms=monotonic_ms(start))
        _send_reply(message, FAILURE_REPLY, reply_channel)
        raise

    confirmation = build_success_reply(result.record)
    log_event(
        logger,
        "message.recorded",
        stage=result.stage,
        summary=confirmation,
        account=result.record.account,
        duration_ms=monotonic_ms(start),
    )
    _send_reply(message, confirmation, reply_channel)
    return HandledMessage(
        status="recorded", record=result.record, reply=confirmation, stage=result.stage
    )


def _send_reply(message: InboundMessage, text: str, channel: ReplyChannel | None) -> None:
    if not settings.whatsapp_reply_enabled:
        log_event(logger, "reply.disabled", level=logging.DEBUG)
        return
    channel = channel or get_reply_channel()
    channel.reply(chat_id=message.chat_id, message_id=message.id, text=text)
