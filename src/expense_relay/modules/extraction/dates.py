from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from expense_relay.core.logging import get_logger, log_event

logger = get_logger(__name__)

_FIXED_OFFSET_RE = re.compile(r"^(?:GMT|UTC)\s*([+-])(\d{1,2})(?::?(\d{2}))?$", re.I)


def resolve_date(timestamp_ms: int, tz_name: str) -> str:
    """
    Calendar date (YYYY-MM-DD) of an epoch instant in the given zone.

    Tries an IANA zone first, then a fixed "UTC+7" / "GMT+07:00" style offset, and
    finally falls back to the UTC date. Instants outside the calendar range resolve
    to today's UTC date. Never raises.
    """
    name = (tz_name or "").strip()
    try:
        return _resolve(timestamp_ms, name)
    except (OverflowError, ValueError, OSError):
        log_event(
            logger,
            "dates.timestamp.out_of_range",
            level=logging.WARNING,
            timestamp_ms=timestamp_ms,
            timezone=name or None,
        )
        return datetime.now(UTC).date().isoformat()


def _resolve(timestamp_ms: int, name: str) -> str:
    instant = datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)

    zone = _load_zone(name)
    if zone is not None:
        return instant.astimezone(zone).date().isoformat()

    offset = _parse_fixed_offset(name)
    if offset is not None:
        return instant.astimezone(timezone(offset)).date().isoformat()

    log_event(
        logger,
        "dates.timezone.unresolved",
        level=logging.WARNING,
        timezone=name or None,
    )
    return instant.date().isoformat()


def _load_zone(name: str) -> ZoneInfo | None:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def _parse_fixed_offset(name: str) -> timedelta | None:
    m = _FIXED_OFFSET_RE.match(name)
    if not m:
        return None
    sign, hours_s, minutes_s = m.groups()
    hours = int(hours_s)
    minutes = int(minutes_s or 0)
    if hours > 14 or minutes >= 60:
        return None
    delta = timedelta(hours=hours, minutes=minutes)
    return -delta if sign == "-" else delta
