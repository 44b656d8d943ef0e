from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from expense_relay.core.config import settings
from expense_relay.core.logging import get_logger, log_event, monotonic_ms
from expense_relay.modules.extraction.accounts import resolve_account
from expense_relay.modules.extraction.ai import ModelClient, parse_image_expense, parse_text_expense
from expense_relay.modules.extraction.dates import resolve_date
from expense_relay.modules.extraction.errors import (
    ExtractionError,
    ExtractionFailedError,
    UnparsableTextError,
)
from expense_relay.modules.extraction.parsers.text_fallback import parse_text_fallback
from expense_relay.modules.extraction.schemas import ExpenseRecord, ImageInput

logger = get_logger(__name__)

STAGE_MODEL_IMAGE = "model_image"
STAGE_MODEL_TEXT = "model_text"
STAGE_TEXT_FALLBACK = "text_fallback"


@dataclass(frozen=True)
class StageOutcome:
    stage: str
    record: ExpenseRecord | None = None
    error: ExtractionError | None = None

    @property
    def ok(self) -> bool:
        return self.record is not None


@dataclass(frozen=True)
class Stage:
    name: str
    run: Callable[[], ExpenseRecord]


@dataclass(frozen=True)
class ExtractionResult:
    record: ExpenseRecord
    stage: str
    outcomes: list[StageOutcome]


def plan_stages(
    *,
    text: str | None,
    image: ImageInput | None,
    fallback_date: str,
    default_currency: str,
    client: ModelClient | None = None,
) -> list[Stage]:
    """
    Ordered extraction attempts for one message.

    Image messages try the model on the image, then the regex parser on any
    accompanying text. Text messages try the model, then the regex parser.
    """
    cleaned = (text or "").strip()

    def run_model_text() -> ExpenseRecord:
        if not cleaned:
            raise UnparsableTextError("Message has no text to extract from")
        return parse_text_expense(
            cleaned,
            fallback_date=fallback_date,
            default_currency=default_currency,
            client=client,
        )

    def run_text_fallback() -> ExpenseRecord:
        return parse_text_fallback(cleaned, fallback_date, default_currency)

    if image is not None:
        with_notes = replace(image, accompanying_text=cleaned or None)

        def run_model_image() -> ExpenseRecord:
            return parse_image_expense(
                with_notes,
                fallback_date=fallback_date,
                default_currency=default_currency,
                client=client,
            )

        stages = [Stage(STAGE_MODEL_IMAGE, run_model_image)]
        if cleaned:
            stages.append(Stage(STAGE_TEXT_FALLBACK, run_text_fallback))
        return stages

    return [
        Stage(STAGE_MODEL_TEXT, run_model_text),
        Stage(STAGE_TEXT_FALLBACK, run_text_fallback),
    ]


def run_stage(stage: Stage) -> StageOutcome:
    start = time.monotonic()
    try:
        record = stage.run()
    except ExtractionError as e:
        log_event(
            logger,
            "extraction.stage.failure",
            level=logging.WARNING,
            stage=stage.name,
            error_type=type(e).__name__,
            error=str(e),
            duration_ms=monotonic_ms(start),
        )
        return StageOutcome(stage=stage.name, error=e)
    log_event(
        logger,
        "extraction.stage.success",
        stage=stage.name,
        duration_ms=monotonic_ms(start),
    )
    return StageOutcome(stage=stage.name, record=record)


def extract_expense(
    *,
    text: str | None,
    image: ImageInput | None,
    timestamp_ms: int,
    account_override: str | None = None,
    raw_text: str | None = None,
    client: ModelClient | None = None,
    timezone_name: str | None = None,
    default_currency: str | None = None,
) -> ExtractionResult:
    currency = default_currency or settings.default_currency
    fallback_date = resolve_date(timestamp_ms, timezone_name or settings.default_timezone)

    stages = plan_stages(
        text=text,
        image=image,
        fallback_date=fallback_date,
        default_currency=currency,
        client=client,
    )
    log_event(
        logger,
        "extraction.start",
        stages=[s.name for s in stages],
        has_image=image is not None,
        fallback_date=fallback_date,
    )

    outcomes: list[StageOutcome] = []
    winner: StageOutcome | None = None
    for stage in stages:
        outcome = run_stage(stage)
        outcomes.append(outcome)
        if outcome.ok:
            winner = outcome
            break

    if winner is None or winner.record is None:
        last_error = outcomes[-1].error if outcomes else None
        log_event(
            logger,
            "extraction.failed",
            level=logging.ERROR,
            stages=[o.stage for o in outcomes],
            errors=[type(o.error).__name__ for o in outcomes],
        )
        raise ExtractionFailedError(
            f"No extraction stage produced a record: {last_error}", outcomes=outcomes
        ) from last_error

    record = winner.record
    account = resolve_account(
        override=account_override,
        model_account=record.account,
        text_candidates=[text, raw_text, record.description, record.merchant],
    )
    record = replace(record, account=account)

    log_event(
        logger,
        "extraction.finish",
        stage=winner.stage,
        description=record.description,
        amount=str(record.amount),
        currency=record.currency,
        date=record.date,
        account=record.account,
    )
    return ExtractionResult(record=record, stage=winner.stage, outcomes=outcomes)
