from __future__ import annotations

import threading

from expense_relay.core.logging import get_logger, log_event

logger = get_logger(__name__)


class SelfIdentity:
    """Account id of the chat login the bridge is running as."""

    def __init__(self) -> None:
        self._self_id: str | None = None
        self._ready = False
        self._lock = threading.Lock()

    @property
    def self_id(self) -> str | None:
        return self._self_id

    @property
    def ready(self) -> bool:
        return self._ready

    def mark_ready(self, self_id: str | None) -> None:
        with self._lock:
            self._ready = True
        log_event(logger, "session.ready")
        self.refresh(self_id)

    def refresh(self, candidate: str | None) -> bool:
        resolved = (candidate or "").strip()
        if not resolved:
            return False
        with self._lock:
            if resolved == self._self_id:
                return False
            self._self_id = resolved
        log_event(logger, "session.self_id.resolved", self_id=resolved)
        return True

    def reset(self) -> None:
        with self._lock:
            self._self_id = None
            self._ready = False


self_identity = SelfIdentity()
