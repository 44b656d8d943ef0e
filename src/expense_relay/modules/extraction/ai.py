from __future__ import annotations

import json
import logging
import math
import re
import time
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from expense_relay.core.config import settings
from expense_relay.core.logging import get_logger, log_event, monotonic_ms
from expense_relay.modules.extraction.accounts import ACCOUNT_NAMES
from expense_relay.modules.extraction.errors import (
    AmountUnresolvedError,
    MalformedModelResponseError,
    ModelInvocationError,
)
from expense_relay.modules.extraction.schemas import (
    DEFAULT_CATEGORY,
    DEFAULT_DESCRIPTION,
    ExpenseRecord,
    ImageInput,
)

logger = get_logger(__name__)

_SLASHED_DATE_RE = re.compile(r"^(\d{1,4})[/-](\d{1,2})[/-](\d{1,4})$")
_LEADING_NUMBER_RE = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


class ModelClient(Protocol):
    def invoke(self, parts: list[dict[str, Any]]) -> str: ...


class GeminiClient:
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        timeout_seconds: float,
        temperature: float,
    ) -> None:
        if not api_key:
            raise ModelInvocationError("GEMINI_API_KEY is required to initialize GeminiClient")
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._temperature = temperature

    @property
    def model(self) -> str:
        return self._model

    def invoke(self, parts: list[dict[str, Any]]) -> str:
        url = f"{self._base_url}/models/{self._model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"temperature": self._temperature},
        }
        start = time.monotonic()
        try:
            resp = httpx.post(
                url,
                params={"key": self._api_key},
                json=payload,
                timeout=self._timeout,
                follow_redirects=True,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise ModelInvocationError(
                f"Gemini returned HTTP {e.response.status_code}: {e.response.text[:500]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ModelInvocationError(f"Gemini request failed: {e}") from e

        text = _candidate_text(data)
        log_event(
            logger,
            "model.invoke.success",
            model=self._model,
            part_count=len(parts),
            response_chars=len(text),
            duration_ms=monotonic_ms(start),
        )
        return text


def _candidate_text(data: Any) -> str:
    candidates = data.get("candidates") if isinstance(data, dict) else None
    if not candidates:
        feedback = data.get("promptFeedback") if isinstance(data, dict) else None
        raise ModelInvocationError(f"Gemini returned no candidates: {feedback}")
    content = candidates[0].get("content") or {}
    texts = [p.get("text") for p in content.get("parts") or [] if isinstance(p, dict)]
    text = "".join(t for t in texts if isinstance(t, str))
    if not text.strip():
        reason = candidates[0].get("finishReason")
        raise ModelInvocationError(f"Gemini returned an empty candidate (finishReason={reason})")
    return text


_client: ModelClient | None = None


def get_model_client() -> ModelClient:
    global _client  # noqa: PLW0603
    if _client is not None:
        return _client
    _client = GeminiClient(
        api_key=settings.gemini_api_key or "",
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        timeout_seconds=float(settings.gemini_timeout_seconds or 30.0),
        temperature=float(settings.gemini_temperature),
    )
    return _client


def build_prompt(*, fallback_date: str, default_currency: str) -> str:
    accounts = ", ".join(ACCOUNT_NAMES)
    return (
        "You are an AI assistant that extracts structured expense data. "
        "Always respond with a single JSON object using this schema:\n"
        "{\n"
        '  "date": "YYYY-MM-DD",\n'
        '  "description": string,\n'
        '  "category": string,\n'
        '  "amount": number,\n'
        '  "currency": ISO 4217 currency code (3 letters),\n'
        '  "merchant": string | null,\n'
        '  "account": string | null\n'
        "}\n\n"
        "Rules:\n"
        f"- If the input lacks a date, use the provided fallback date ({fallback_date}).\n"
        "- If multiple amounts exist, choose the total the customer paid.\n"
        "- Normalize the currency to its ISO 4217 alpha code (e.g., USD, EUR). "
        f"Infer from symbols when necessary. Default to {default_currency} when unsure.\n"
        "- Keep the description short (<=60 characters) and human readable.\n"
        "- Category should be a single word (e.g., Food, Travel, Groceries). "
        f'Use "{DEFAULT_CATEGORY}" if unclear.\n'
        "- Merchant can be null if unknown.\n"
        f"- Account must be one of: {accounts}. Use lowercase and return null if unsure.\n"
        "- Use a decimal number for amount, without currency symbols.\n"
        "- Do not wrap the JSON in markdown fences or explanations."
    )


def parse_text_expense(
    text: str,
    *,
    fallback_date: str,
    default_currency: str,
    client: ModelClient | None = None,
) -> ExpenseRecord:
    prompt = build_prompt(fallback_date=fallback_date, default_currency=default_currency)
    parts = [{"text": f"{prompt}\n\nInput:\n{text}"}]
    raw = (client or get_model_client()).invoke(parts)
    log_event(logger, "model.text.raw_response", level=logging.DEBUG, raw=raw)
    return normalize_response(
        parse_json_object(raw), fallback_date=fallback_date, default_currency=default_currency
    )


def parse_image_expense(
    image: ImageInput,
    *,
    fallback_date: str,
    default_currency: str,
    client: ModelClient | None = None,
) -> ExpenseRecord:
    prompt = build_prompt(fallback_date=fallback_date, default_currency=default_currency)
    parts: list[dict[str, Any]] = [
        {"text": prompt},
        {"inline_data": {"mime_type": image.mime_type, "data": image.data_base64}},
    ]
    if image.accompanying_text:
        parts.append({"text": f"Additional user notes: {image.accompanying_text}"})
    raw = (client or get_model_client()).invoke(parts)
    log_event(logger, "model.image.raw_response", level=logging.DEBUG, raw=raw)
    return normalize_response(
        parse_json_object(raw), fallback_date=fallback_date, default_currency=default_currency
    )


def parse_json_object(raw: str | None) -> dict[str, Any]:
    if not raw or not raw.strip():
        raise MalformedModelResponseError("Model response was empty")
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise MalformedModelResponseError(f"Unable to locate JSON in model response: {raw[:300]}")
    try:
        obj = json.loads(raw[start : end + 1])
    except ValueError as e:
        raise MalformedModelResponseError(f"Model response is not valid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise MalformedModelResponseError("Model response JSON is not an object")
    return obj


def normalize_response(
    obj: dict[str, Any], *, fallback_date: str, default_currency: str
) -> ExpenseRecord:
    merged: dict[str, Any] = {
        "date": fallback_date,
        "description": DEFAULT_DESCRIPTION,
        "category": DEFAULT_CATEGORY,
        "amount": None,
        "currency": default_currency,
        "merchant": None,
        "account": None,
        **obj,
    }

    amount = coerce_amount(merged["amount"])
    if amount is None:
        raise AmountUnresolvedError(f"Model could not determine an amount: {merged['amount']!r}")

    currency = _clean_str(merged["currency"]).upper() or default_currency
    description = _clean_str(merged["description"]) or DEFAULT_DESCRIPTION
    category = _clean_str(merged["category"]) or DEFAULT_CATEGORY
    merchant = _clean_str(merged["merchant"]) or None
    account = _clean_str(merged["account"]) or None

    record = ExpenseRecord(
        date=_normalize_date(merged["date"], fallback_date=fallback_date),
        description=description,
        category=category,
        amount=amount,
        currency=currency,
        merchant=merchant,
        account=account,
    )
    log_event(
        logger,
        "model.response.normalized",
        description=record.description,
        amount=str(record.amount),
        currency=record.currency,
        date=record.date,
    )
    return record


def coerce_amount(value: Any) -> Decimal | None:
    """Positive finite amount from a model value, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0:
            return None
        return Decimal(str(value))
    sanitized = re.sub(r"[^\d.,-]", "", str(value)).replace(",", ".", 1)
    m = _LEADING_NUMBER_RE.match(sanitized)
    if not m:
        return None
    try:
        amount = Decimal(m.group(0))
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def _normalize_date(value: Any, *, fallback_date: str) -> str:
    s = _clean_str(value)
    if not s:
        return fallback_date

    m = _SLASHED_DATE_RE.match(s)
    if m:
        first, second, third = m.groups()
        if len(first) == 4:
            year, month, day = first, second, third
        else:
            month, day, year = first, second, third
        if len(year) <= 2:
            year = "20" + year.zfill(2)
        s = f"{year.zfill(4)}-{month.zfill(2)}-{day.zfill(2)}"

    try:
        return date.fromisoformat(s).isoformat()
    except ValueError:
        log_event(
            logger,
            "model.response.date_unparsed",
            level=logging.WARNING,
            raw_date=str(value),
            fallback_date=fallback_date,
        )
        return fallback_date


def _clean_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
