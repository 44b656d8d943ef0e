from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from expense_relay.modules.ledger.service import diagnose_ledger
from expense_relay.modules.messages.api import router as messages_router

router = APIRouter()

router.include_router(messages_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz/ledger")
def healthz_ledger() -> JSONResponse:
    result = diagnose_ledger()
    status_code = 200 if result.get("ok") else 503
    return JSONResponse(status_code=status_code, content=result)
