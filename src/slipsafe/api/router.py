from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from slipsafe.core.db import ping_database
from slipsafe.core.logging import get_logger, log_exception
from slipsafe.core.storage import diagnose_storage
from slipsafe.modules.audit.api import router as audit_router
from slipsafe.modules.claims.api import router as claims_router
from slipsafe.modules.identity.api import router as identity_router
from slipsafe.modules.policy.api import router as policy_router
from slipsafe.modules.receipts.api import router as receipts_router
from slipsafe.modules.verification.api import router as verification_router

logger = get_logger(__name__)

router = APIRouter()

for module_router in (
    identity_router,
    receipts_router,
    policy_router,
    claims_router,
    verification_router,
    audit_router,
):
    router.include_router(module_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz/db")
def healthz_db() -> JSONResponse:
    try:
        ping_database()
    except SQLAlchemyError as e:
        log_exception(logger, "healthz.db.failure")
        return JSONResponse(status_code=503, content={"ok": False, "error": type(e).__name__})
    return JSONResponse(status_code=200, content={"ok": True})


@router.get("/healthz/storage")
def healthz_storage(*, write_test: bool = False) -> JSONResponse:
    result = diagnose_storage(write_test=write_test)
    return JSONResponse(status_code=200 if result.get("ok") else 503, content=result)
