from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from expense_relay.modules.extraction.service import StageOutcome


class ExtractionError(Exception):
    pass


class ModelInvocationError(ExtractionError):
    pass


class MalformedModelResponseError(ExtractionError):
    pass


class AmountUnresolvedError(ExtractionError):
    pass


class UnparsableTextError(ExtractionError):
    pass


class ExtractionFailedError(ExtractionError):
    def __init__(self, message: str, *, outcomes: list[StageOutcome] | None = None) -> None:
        super().__init__(message)
        self.outcomes = list(outcomes or [])
