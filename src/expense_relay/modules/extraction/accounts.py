from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from expense_relay.core.logging import get_logger, log_event

logger = get_logger(__name__)

# Definition order is the tie-break when aliases of several accounts match.
ACCOUNT_ALIASES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("cash", ("cash", "tunai")),
    ("gopay", ("gopay", "go-pay", "go pay")),
    ("shopeepay", ("shopeepay", "shopee pay", "spay")),
    ("isaku", ("isaku", "i.saku", "i-saku")),
    ("bca", ("bca", "klikbca", "m-bca", "bca mobile")),
    ("flazz emoney", ("flazz emoney", "flazz", "emoney", "e-money")),
    ("superbank", ("superbank", "super bank")),
    ("jago cloudthingy", ("jago cloudthingy", "jago", "bank jago", "cloudthingy")),
)

ACCOUNT_NAMES: tuple[str, ...] = tuple(name for name, _ in ACCOUNT_ALIASES)


def _normalize_key(value: str) -> str:
    return " ".join(value.replace("_", " ").strip().lower().split())


def _build_lookup() -> dict[str, str]:
    lookup: dict[str, str] = {}
    for name, aliases in ACCOUNT_ALIASES:
        for alias in (name, *aliases):
            lookup.setdefault(_normalize_key(alias), name)
    return lookup


def _build_patterns() -> tuple[tuple[str, re.Pattern[str]], ...]:
    out: list[tuple[str, re.Pattern[str]]] = []
    for name, aliases in ACCOUNT_ALIASES:
        ordered = sorted({_normalize_key(a) for a in (name, *aliases)}, key=len, reverse=True)
        alternation = "|".join(r"\s+".join(re.escape(part) for part in a.split()) for a in ordered)
        out.append((name, re.compile(rf"(?<![\w])(?:{alternation})(?![\w])", re.I)))
    return tuple(out)


_LOOKUP = _build_lookup()
_PATTERNS = _build_patterns()


def normalize_account(value: str | None) -> str | None:
    """Canonical account name for an exact (case-insensitive) name or alias, else None."""
    if not value:
        return None
    return _LOOKUP.get(_normalize_key(str(value)))


def match_account_in_text(text: str | None) -> str | None:
    if not text or not text.strip():
        return None
    for name, pattern in _PATTERNS:
        if pattern.search(text):
            return name
    return None


def resolve_account(
    *,
    override: str | None,
    model_account: str | None,
    text_candidates: Iterable[str | None] = (),
) -> str | None:
    """
    Pick one authoritative account label.

    Order: explicit override, then the model's proposal, then the first candidate
    text mentioning an alias. An override that is not in the vocabulary is dropped.
    """
    if override is not None and str(override).strip():
        account = normalize_account(override)
        if account:
            log_event(logger, "accounts.resolved", source="override", account=account)
            return account
        log_event(
            logger,
            "accounts.override.ignored",
            level=logging.WARNING,
            override=str(override),
        )

    account = normalize_account(model_account)
    if account:
        log_event(logger, "accounts.resolved", source="model", account=account)
        return account

    for idx, candidate in enumerate(text_candidates):
        account = match_account_in_text(candidate)
        if account:
            log_event(
                logger,
                "accounts.resolved",
                source="text",
                candidate_index=idx,
                account=account,
            )
            return account

    log_event(logger, "accounts.unresolved", level=logging.DEBUG)
    return None
