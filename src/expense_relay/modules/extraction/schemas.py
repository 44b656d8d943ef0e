from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any

DEFAULT_DESCRIPTION = "Expense"
DEFAULT_CATEGORY = "General"


@dataclass(frozen=True)
class ExpenseRecord:
    date: str
    description: str
    category: str
    amount: Decimal
    currency: str
    merchant: str | None = None
    account: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ImageInput:
    data_base64: str
    mime_type: str
    accompanying_text: str | None = None
