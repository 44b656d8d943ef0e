from __future__ import annotations

import time

import httpx

from expense_relay.core.config import settings
from expense_relay.core.currencies import format_money
from expense_relay.core.logging import get_logger, log_event, log_exception, monotonic_ms
from expense_relay.modules.extraction.schemas import ExpenseRecord

logger = get_logger(__name__)

FAILURE_REPLY = (
    "Could not record expense. Please try again or specify amount and description in text."
)


def build_success_reply(record: ExpenseRecord) -> str:
    amount = format_money(record.amount, record.currency)
    return (
        f"Recorded: {record.description} – {amount} on {record.date}. "
        f"Category: {record.category}."
    )


class ReplyChannel:
    def reply(self, *, chat_id: str, message_id: str, text: str) -> bool:  # pragma: no cover
        raise NotImplementedError


class BridgeReplyChannel(ReplyChannel):
    def __init__(self, *, url: str | None, token: str | None, timeout_seconds: float) -> None:
        self._url = url
        self._token = token
        self._timeout = timeout_seconds

    def reply(self, *, chat_id: str, message_id: str, text: str) -> bool:
        if not self._url:
            log_event(logger, "reply.skipped", reason="bridge_reply_url_unset")
            return False
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        start = time.monotonic()
        try:
            resp = httpx.post(
                self._url,
                headers=headers,
                json={"chat_id": chat_id, "quoted_message_id": message_id, "text": text},
                timeout=self._timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPError:
            log_exception(logger, "reply.failure", duration_ms=monotonic_ms(start))
            return False
        log_event(logger, "reply.sent", duration_ms=monotonic_ms(start))
        return True


_channel: ReplyChannel | None = None


def get_reply_channel() -> ReplyChannel:
    global _channel  # noqa: PLW0603
    if _channel is None:
        _channel = BridgeReplyChannel(
            url=settings.bridge_reply_url,
            token=settings.bridge_token,
            timeout_seconds=float(settings.bridge_timeout_seconds or 10.0),
        )
    return _channel
