from __future__ import annotations

import csv
import json
import os
from pathlib import Path


def _payload(**overrides) -> dict:
    data = {
        "id": "true_123@c.us_ABC",
        "chat_id": "123@c.us",
        "chat_name": "Notes",
        "from_me": True,
        "timestamp": 1710621000,
        "type": "chat",
        "body": "Taxi 20 EUR acc:cash",
    }
    data.update(overrides)
    return data


def test_healthz():
    from fastapi.testclient import TestClient

    from expense_relay.main import app

    client = TestClient(app)
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_ledger_health_reports_csv_backend():
    from fastapi.testclient import TestClient

    from expense_relay.main import app

    client = TestClient(app)
    resp = client.get("/healthz/ledger")
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["backend"] == "csv"


def test_ledger_health_fails_on_bad_service_account(monkeypatch):
    from fastapi.testclient import TestClient

    from expense_relay.core.config import settings
    from expense_relay.main import app

    monkeypatch.setattr(settings, "google_sheets_id", "sheet-1")
    monkeypatch.setattr(settings, "google_service_account_json", "missing/service-account.json")

    client = TestClient(app)
    resp = client.get("/healthz/ledger")
    assert resp.status_code == 503
    assert resp.json()["error_type"] == "LedgerError"


def test_session_ready_sets_self_id():
    from fastapi.testclient import TestClient

    from expense_relay.main import app

    client = TestClient(app)
    assert client.get("/api/session").json() == {"ready": False, "self_id": None}

    resp = client.post("/api/session/ready", json={"self_id": "me@c.us"})
    assert resp.status_code == 200
    assert resp.json() == {"ready": True, "self_id": "me@c.us"}
    assert client.get("/api/session").json()["self_id"] == "me@c.us"

    assert client.post("/api/session/ready", json={"self_id": ""}).status_code == 422


def test_message_webhook_records_expense(monkeypatch, stub_client_factory):
    from fastapi.testclient import TestClient

    import expense_relay.modules.extraction.ai as ai_mod
    from expense_relay.main import app

    monkeypatch.setattr(
        ai_mod,
        "_client",
        stub_client_factory(
            json.dumps(
                {
                    "date": "2024-03-16",
                    "description": "Taxi",
                    "category": "Travel",
                    "amount": 20,
                    "currency": "EUR",
                }
            )
        ),
    )

    client = TestClient(app)
    resp = client.post("/api/messages", json=_payload())
    assert resp.status_code == 202
    body = resp.json()
    assert body["status"] == "queued"
    assert body["task_id"]

    path = Path(os.environ["LOCAL_CSV_PATH"])
    with path.open(newline="", encoding="utf-8") as fh:
        (row,) = list(csv.DictReader(fh))
    assert row["description"] == "Taxi"
    assert row["category"] == "Travel"
    assert row["amount"] == "20"
    assert row["currency"] == "EUR"
    assert row["account"] == "cash"


def test_message_webhook_falls_back_to_regex_when_model_fails(monkeypatch, stub_client_factory):
    from fastapi.testclient import TestClient

    import expense_relay.modules.extraction.ai as ai_mod
    from expense_relay.main import app
    from expense_relay.modules.extraction.errors import ModelInvocationError

    monkeypatch.setattr(ai_mod, "_client", stub_client_factory(ModelInvocationError("quota")))

    client = TestClient(app)
    resp = client.post("/api/messages", json=_payload(body="Coffee 3,50 €"))
    assert resp.status_code == 202

    path = Path(os.environ["LOCAL_CSV_PATH"])
    with path.open(newline="", encoding="utf-8") as fh:
        (row,) = list(csv.DictReader(fh))
    assert row["description"] == "Coffee"
    assert row["amount"] == "3.50"
    assert row["currency"] == "EUR"
    assert row["category"] == "General"
    assert row["date"] == "2024-03-16"


def test_bridge_token_is_required_when_configured(monkeypatch):
    from fastapi.testclient import TestClient

    from expense_relay.core.config import settings
    from expense_relay.main import app

    monkeypatch.setattr(settings, "bridge_token", "s3cret")

    client = TestClient(app)
    assert client.get("/api/session").status_code == 401
    wrong = client.get("/api/session", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    ok = client.get("/api/session", headers={"Authorization": "Bearer s3cret"})
    assert ok.status_code == 200
    assert client.get("/healthz").status_code == 200
