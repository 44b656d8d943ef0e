from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

from expense_relay.core.currencies import CURRENCY_SYMBOLS, is_iso4217_currency
from expense_relay.core.logging import get_logger, log_event
from expense_relay.modules.extraction.errors import AmountUnresolvedError, UnparsableTextError
from expense_relay.modules.extraction.schemas import DEFAULT_CATEGORY, ExpenseRecord

logger = get_logger(__name__)

_SYMBOLS = "".join(re.escape(s) for s in CURRENCY_SYMBOLS)

_EXPENSE_RE = re.compile(
    r"^\s*(?P<description>[^\W\d_](?:[^\W\d_]|\s)*?)\s*"
    r"(?P<amount>\d[\d.,]*)\s*"
    rf"(?P<currency>[A-Za-z]{{3}}(?![A-Za-z])|[{_SYMBOLS}])?"
)


def parse_text_fallback(
    text: str | None, fallback_date: str, default_currency: str
) -> ExpenseRecord:
    """Parse "<description> <amount> [currency]" without the model."""
    m = _EXPENSE_RE.match(text or "")
    if not m:
        raise UnparsableTextError("Fallback parser could not understand the message")

    description = " ".join(m.group("description").split())
    amount = parse_amount_token(m.group("amount"))
    if amount is None or not amount.is_finite() or amount <= 0:
        raise AmountUnresolvedError(
            f"Fallback parser found no usable amount in {m.group('amount')!r}"
        )

    currency = _currency_from_token(m.group("currency"), default_currency)

    log_event(
        logger,
        "extraction.fallback.parsed",
        description=description,
        amount=str(amount),
        currency=currency,
        currency_token=m.group("currency"),
    )
    return ExpenseRecord(
        date=fallback_date,
        description=description,
        category=DEFAULT_CATEGORY,
        amount=amount,
        currency=currency,
        merchant=None,
        account=None,
    )


def parse_amount_token(token: str | None) -> Decimal | None:
    """
    Read a numeric token with either "," or "." as decimal separator.

    With both present the right-most one is the decimal separator. A lone comma
    followed by one or two digits is decimal; other commas and repeated dots group
    thousands.
    """
    s = (token or "").strip().rstrip(".,")
    if not s:
        return None
    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        if re.fullmatch(r"\d+,\d{1,2}", s):
            s = s.replace(",", ".")
        else:
            s = s.replace(",", "")
    elif s.count(".") > 1:
        s = s.replace(".", "")
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def _currency_from_token(token: str | None, default_currency: str) -> str:
    if not token:
        return default_currency
    if token in CURRENCY_SYMBOLS:
        return CURRENCY_SYMBOLS[token]
    code = token.upper()
    if is_iso4217_currency(code):
        return code
    return default_currency
