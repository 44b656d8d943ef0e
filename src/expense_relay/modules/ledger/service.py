from __future__ import annotations

import csv
import json
import os
import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from expense_relay.core.config import settings
from expense_relay.core.logging import get_logger, log_event, log_exception, monotonic_ms
from expense_relay.modules.extraction.schemas import ExpenseRecord

logger = get_logger(__name__)

LEDGER_COLUMNS: tuple[str, ...] = (
    "timestamp",
    "date",
    "category",
    "description",
    "amount",
    "currency",
    "merchant",
    "source",
    "chat_name",
    "message_id",
    "account",
)

_SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
_SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"


class LedgerError(RuntimeError):
    pass


@dataclass(frozen=True)
class LedgerMetadata:
    message_id: str = ""
    chat_name: str = ""
    source: str = ""
    note: str = ""


def build_row(
    record: ExpenseRecord, metadata: LedgerMetadata, *, now: datetime | None = None
) -> list[Any]:
    note = (metadata.note or "").strip()
    description = f"{record.description} - {note}" if note else record.description
    ts = (now or datetime.now(UTC)).isoformat().replace("+00:00", "Z")
    return [
        ts,
        record.date,
        record.category,
        description,
        str(record.amount),
        record.currency,
        record.merchant or "",
        metadata.source or "",
        metadata.chat_name or "",
        metadata.message_id or "",
        record.account or "",
    ]


class Ledger:
    backend = "abstract"

    def append(self, record: ExpenseRecord, metadata: LedgerMetadata) -> None:  # pragma: no cover
        raise NotImplementedError


class CsvLedger(Ledger):
    backend = "csv"

    def __init__(self, path: Path):
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: ExpenseRecord, metadata: LedgerMetadata) -> None:
        start = time.monotonic()
        row = build_row(record, metadata)
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                is_new = not self._path.exists()
                with self._path.open("a", newline="", encoding="utf-8") as fh:
                    writer = csv.writer(fh)
                    if is_new:
                        writer.writerow(LEDGER_COLUMNS)
                    writer.writerow(row)
            except OSError as e:
                log_exception(logger, "ledger.append.failure", backend="csv", path=str(self._path))
                raise LedgerError(f"Could not append to {self._path}: {e}") from e
        if is_new:
            log_event(logger, "ledger.csv.created", path=str(self._path))
        log_event(
            logger,
            "ledger.append.success",
            backend="csv",
            path=str(self._path),
            duration_ms=monotonic_ms(start),
        )


class GoogleSheetsLedger(Ledger):
    backend = "google_sheets"

    def __init__(
        self,
        *,
        spreadsheet_id: str,
        tab_name: str,
        service_account_info: dict[str, Any],
        token_url: str,
        timeout_seconds: float = 20.0,
    ) -> None:
        client_email = service_account_info.get("client_email")
        private_key = service_account_info.get("private_key")
        if not client_email or not private_key:
            raise LedgerError(
                "Service account credentials must include client_email and private_key"
            )
        info = dict(service_account_info)
        info["private_key"] = str(private_key).replace("\\n", "\n")
        info.setdefault("token_uri", token_url)
        try:
            self._credentials = service_account.Credentials.from_service_account_info(
                info, scopes=[_SHEETS_SCOPE]
            )
        except (ValueError, GoogleAuthError) as e:
            raise LedgerError(f"Service account credentials could not be loaded: {e}") from e
        self._spreadsheet_id = spreadsheet_id
        self._tab_name = tab_name or "Expenses"
        self._client_email = str(client_email)
        self._timeout = timeout_seconds
        self._lock = threading.Lock()

    def _access_token(self) -> str:
        with self._lock:
            if not self._credentials.valid:
                try:
                    self._credentials.refresh(GoogleAuthRequest())
                except GoogleAuthError as e:
                    raise LedgerError("Google service account token refresh failed") from e
                log_event(logger, "ledger.sheets.authenticated", client_email=self._client_email)
            return str(self._credentials.token)

    def append(self, record: ExpenseRecord, metadata: LedgerMetadata) -> None:
        start = time.monotonic()
        token = self._access_token()
        sheet_range = f"{self._tab_name}!A:K"
        url = f"{_SHEETS_API_URL}/{self._spreadsheet_id}/values/{quote(sheet_range)}:append"
        try:
            resp = httpx.post(
                url,
                params={"valueInputOption": "USER_ENTERED"},
                headers={"Authorization": f"Bearer {token}"},
                json={"values": [build_row(record, metadata)]},
                timeout=self._timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            log_exception(
                logger,
                "ledger.append.failure",
                backend="google_sheets",
                spreadsheet_id=self._spreadsheet_id,
                tab=self._tab_name,
            )
            raise LedgerError("Google Sheets append failed") from e
        log_event(
            logger,
            "ledger.append.success",
            backend="google_sheets",
            spreadsheet_id=self._spreadsheet_id,
            tab=self._tab_name,
            duration_ms=monotonic_ms(start),
        )


def load_service_account(raw: str | None) -> dict[str, Any] | None:
    """Service account from inline JSON or a path to a JSON file."""
    if not raw or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        path = Path(raw.strip())
        if not path.is_absolute():
            path = Path(os.getcwd()) / path
        if not path.exists():
            raise LedgerError(
                "GOOGLE_SERVICE_ACCOUNT_JSON must be a JSON string or a valid file path"
            ) from None
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise LedgerError(f"Service account file is not valid JSON: {path}") from e
    if not isinstance(parsed, dict):
        raise LedgerError("Service account JSON must be an object")
    return parsed


def _csv_path() -> Path:
    path = settings.local_csv_path
    if not path.is_absolute():
        path = Path(os.getcwd()) / path
    return path


_ledger: Ledger | None = None


def get_ledger() -> Ledger:
    global _ledger  # noqa: PLW0603
    if _ledger is not None:
        return _ledger

    service_account_info = load_service_account(settings.google_service_account_json)
    if settings.google_sheets_id and service_account_info:
        _ledger = GoogleSheetsLedger(
            spreadsheet_id=settings.google_sheets_id,
            tab_name=settings.google_sheets_tab,
            service_account_info=service_account_info,
            token_url=settings.google_token_url,
        )
        log_event(
            logger,
            "ledger.configured",
            backend="google_sheets",
            spreadsheet_id=settings.google_sheets_id,
            tab=settings.google_sheets_tab,
        )
    else:
        _ledger = CsvLedger(_csv_path())
        log_event(logger, "ledger.configured", backend="csv", path=str(_csv_path()))
    return _ledger


def diagnose_ledger() -> dict[str, Any]:
    try:
        ledger = get_ledger()
    except LedgerError as e:
        return {"ok": False, "error_type": type(e).__name__, "error": str(e)}
    result: dict[str, Any] = {"ok": True, "backend": ledger.backend}
    if isinstance(ledger, CsvLedger):
        result["path"] = str(ledger.path)
        result["exists"] = ledger.path.exists()
    elif isinstance(ledger, GoogleSheetsLedger):
        result["spreadsheet_id"] = settings.google_sheets_id
        result["tab"] = settings.google_sheets_tab
    return result
