from __future__ import annotations

import json
from decimal import Decimal

import pytest

from expense_relay.modules.extraction import service as extraction_service
from expense_relay.modules.extraction.errors import (
    ExtractionFailedError,
    MalformedModelResponseError,
    ModelInvocationError,
    UnparsableTextError,
)
from expense_relay.modules.extraction.schemas import ImageInput

# 2024-03-16T20:30:00Z
_TS_MS = 1710621000 * 1000
_IMAGE = ImageInput(data_base64="aGVsbG8=", mime_type="image/jpeg")


def _model_reply(**overrides) -> str:
    body = {
        "date": "2024-03-15",
        "description": "Groceries",
        "category": "Food",
        "amount": 42.1,
        "currency": "usd",
        "merchant": "Superindo",
        "account": None,
    }
    body.update(overrides)
    return "```json\n" + json.dumps(body) + "\n```"


def test_text_message_uses_model_result(stub_client_factory):
    client = stub_client_factory(_model_reply())
    result = extraction_service.extract_expense(
        text="Groceries 42.10", image=None, timestamp_ms=_TS_MS, client=client
    )
    assert result.stage == "model_text"
    assert result.record.description == "Groceries"
    assert result.record.amount == Decimal("42.1")
    assert result.record.currency == "USD"
    assert result.record.account is None
    assert [o.stage for o in result.outcomes] == ["model_text"]


def test_text_message_falls_back_to_regex_on_model_failure(stub_client_factory):
    client = stub_client_factory(ModelInvocationError("quota"))
    result = extraction_service.extract_expense(
        text="Lunch 12.50 USD", image=None, timestamp_ms=_TS_MS, client=client
    )
    assert result.stage == "text_fallback"
    assert result.record.date == "2024-03-16"
    assert result.record.amount == Decimal("12.50")
    assert isinstance(result.outcomes[0].error, ModelInvocationError)


def test_malformed_model_reply_is_treated_like_a_failed_call(stub_client_factory):
    client = stub_client_factory("I cannot help with that")
    result = extraction_service.extract_expense(
        text="Parking 5 SGD", image=None, timestamp_ms=_TS_MS, client=client
    )
    assert result.stage == "text_fallback"
    assert isinstance(result.outcomes[0].error, MalformedModelResponseError)
    assert result.record.currency == "SGD"


def test_text_message_fails_when_every_stage_fails(stub_client_factory):
    client = stub_client_factory(ModelInvocationError("down"))
    with pytest.raises(ExtractionFailedError) as exc_info:
        extraction_service.extract_expense(
            text="hello there", image=None, timestamp_ms=_TS_MS, client=client
        )
    assert [o.stage for o in exc_info.value.outcomes] == ["model_text", "text_fallback"]
    assert isinstance(exc_info.value.__cause__, UnparsableTextError)


def test_empty_text_message_skips_the_model(stub_client_factory):
    client = stub_client_factory(_model_reply())
    with pytest.raises(ExtractionFailedError):
        extraction_service.extract_expense(
            text="  ", image=None, timestamp_ms=_TS_MS, client=client
        )
    assert client.calls == []


def test_image_message_uses_model_and_passes_note(stub_client_factory):
    client = stub_client_factory(_model_reply())
    result = extraction_service.extract_expense(
        text="weekly shop", image=_IMAGE, timestamp_ms=_TS_MS, client=client
    )
    assert result.stage == "model_image"
    (parts,) = client.calls
    assert parts[-1] == {"text": "Additional user notes: weekly shop"}


def test_image_failure_falls_back_to_accompanying_text(stub_client_factory):
    client = stub_client_factory(ModelInvocationError("timeout"))
    result = extraction_service.extract_expense(
        text="Dinner 20 EUR", image=_IMAGE, timestamp_ms=_TS_MS, client=client
    )
    assert result.stage == "text_fallback"
    assert result.record.currency == "EUR"
    assert len(client.calls) == 1


def test_image_failure_without_text_propagates_model_error(stub_client_factory):
    cause = ModelInvocationError("network down")
    client = stub_client_factory(cause)
    with pytest.raises(ExtractionFailedError) as exc_info:
        extraction_service.extract_expense(
            text=None, image=_IMAGE, timestamp_ms=_TS_MS, client=client
        )
    assert exc_info.value.__cause__ is cause
    assert [o.stage for o in exc_info.value.outcomes] == ["model_image"]
    assert exc_info.value.outcomes[0].error is cause


def test_account_resolution_prefers_override(stub_client_factory):
    client = stub_client_factory(_model_reply(account="cash"))
    result = extraction_service.extract_expense(
        text="Groceries 42.10",
        image=None,
        timestamp_ms=_TS_MS,
        account_override="GoPay",
        raw_text="Groceries 42.10 acct:GoPay",
        client=client,
    )
    assert result.record.account == "gopay"


def test_account_resolution_uses_model_then_text(stub_client_factory):
    client = stub_client_factory(_model_reply(account="BCA"))
    result = extraction_service.extract_expense(
        text="Groceries 42.10 cash", image=None, timestamp_ms=_TS_MS, client=client
    )
    assert result.record.account == "bca"

    client = stub_client_factory(_model_reply(account="unknown wallet"))
    result = extraction_service.extract_expense(
        text="Groceries 42.10 paid with shopee pay", image=None, timestamp_ms=_TS_MS, client=client
    )
    assert result.record.account == "shopeepay"


def test_account_resolution_scans_raw_text_and_merchant(stub_client_factory):
    client = stub_client_factory(_model_reply(merchant="Isaku kiosk"))
    result = extraction_service.extract_expense(
        text="Groceries 42.10",
        image=None,
        timestamp_ms=_TS_MS,
        account_override="bogus",
        raw_text="Groceries 42.10 acct:bogus",
        client=client,
    )
    assert result.record.account == "isaku"


def test_fallback_date_follows_configured_timezone(stub_client_factory):
    client = stub_client_factory(ModelInvocationError("down"))
    result = extraction_service.extract_expense(
        text="Snack 2 USD",
        image=None,
        timestamp_ms=_TS_MS,
        client=client,
        timezone_name="Asia/Jakarta",
    )
    assert result.record.date == "2024-03-17"


def test_plan_stages_orders_attempts():
    names = lambda stages: [s.name for s in stages]  # noqa: E731
    kwargs = {"fallback_date": "2024-01-01", "default_currency": "USD"}
    assert names(extraction_service.plan_stages(text="x", image=None, **kwargs)) == [
        "model_text",
        "text_fallback",
    ]
    assert names(extraction_service.plan_stages(text="x", image=_IMAGE, **kwargs)) == [
        "model_image",
        "text_fallback",
    ]
    assert names(extraction_service.plan_stages(text="", image=_IMAGE, **kwargs)) == ["model_image"]


def test_missing_api_key_falls_back_to_regex(monkeypatch):
    from expense_relay.modules.extraction import ai

    monkeypatch.setattr(ai.settings, "gemini_api_key", None)
    result = extraction_service.extract_expense(
        text="Lunch 12.50 USD", image=None, timestamp_ms=_TS_MS
    )
    assert result.stage == "text_fallback"
    assert result.record.amount == Decimal("12.50")
    assert isinstance(result.outcomes[0].error, ModelInvocationError)
    assert ai._client is None
