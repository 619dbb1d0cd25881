from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slipsafe.api.router import router as api_router
from slipsafe.bootstrap import bootstrap
from slipsafe.core.config import settings
from slipsafe.core.logging import (
    RequestContextMiddleware,
    configure_logging,
    get_logger,
    log_event,
)
from slipsafe.core.storage import StorageError

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    bootstrap()
    yield


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    log_event(
        logger,
        "storage.unavailable",
        level=logging.ERROR,
        path=request.url.path,
        error=str(exc),
    )
    return JSONResponse(
        status_code=503,
        content={
            "detail": {
                "error": "storage_unavailable",
                "message": "Receipt storage is temporarily unavailable",
            }
        },
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="SlipSafe", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
        expose_headers=["X-Request-Id"],
    )
    app.add_middleware(RequestContextMiddleware)
    app.add_exception_handler(StorageError, storage_error_handler)
    app.include_router(api_router)
    return app


app = create_app()
