from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

# Set env before any expense_relay imports (settings are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("GEMINI_API_KEY", "test-key")
os.environ.setdefault("LOCAL_CSV_PATH", ".tmp_ledger_test/expenses.csv")
os.environ.setdefault("DEFAULT_CURRENCY", "USD")
os.environ.setdefault("DEFAULT_TIMEZONE", "UTC")


class StubModelClient:
    def __init__(self, *responses: object) -> None:
        self.responses = list(responses)
        self.calls: list[list[dict]] = []

    def invoke(self, parts: list[dict]) -> str:
        self.calls.append(parts)
        response = self.responses.pop(0) if self.responses else ""
        if isinstance(response, Exception):
            raise response
        return str(response)


@pytest.fixture
def stub_client_factory():
    return StubModelClient


@pytest.fixture(autouse=True)
def _reset_singletons() -> None:
    import expense_relay.modules.extraction.ai as ai_mod
    import expense_relay.modules.ledger.service as ledger_mod
    import expense_relay.modules.messages.replies as replies_mod
    from expense_relay.modules.messages.session import self_identity

    ai_mod._client = None
    ledger_mod._ledger = None
    replies_mod._channel = None
    self_identity.reset()

    csv_dir = Path(os.environ["LOCAL_CSV_PATH"]).parent
    if csv_dir.exists():
        shutil.rmtree(csv_dir)

    yield

    if csv_dir.exists():
        shutil.rmtree(csv_dir)
