"""
Structured JSON logging.

Each line is one JSON object carrying the event name, the request id and, once
a route has authenticated the caller, the acting user. Secrets that pass
through claim and receipt flows (PINs, tokens, passwords) are masked before a
line is written.
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

SERVICE_NAME = "slipsafe"
REDACTED = "***"
_SECRET_FIELDS = frozenset({"pin", "token", "preview_token", "access_token", "password"})


@dataclass
class RequestContext:
    request_id: str
    user_id: str | None = None
    user_role: str | None = None


_context: contextvars.ContextVar[RequestContext | None] = contextvars.ContextVar(
    "slipsafe_request_context", default=None
)
_configured = False


def redact(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: (REDACTED if k in _SECRET_FIELDS else v) for k, v in fields.items()}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": ts.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "event": getattr(record, "event", None) or record.getMessage(),
        }
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload.update(redact({k: v for k, v in fields.items() if v is not None}))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def configure_logging() -> None:
    global _configured  # noqa: PLW0603
    if _configured:
        return
    level = logging.getLevelNamesMapping().get(os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger(SERVICE_NAME)
    root.setLevel(level)
    root.handlers = [handler]
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def current_context() -> RequestContext | None:
    return _context.get()


def set_user_context(user_id: str | None, role: str | None = None) -> None:
    # The context object is shared with the middleware, so the request log line
    # picks up the user even when auth ran in a worker thread.
    ctx = _context.get()
    if ctx is not None:
        ctx.user_id = user_id
        ctx.user_role = role


def _with_context(fields: dict[str, Any]) -> dict[str, Any]:
    ctx = _context.get()
    if ctx is None:
        return fields
    return {
        "request_id": ctx.request_id,
        "user_id": ctx.user_id,
        "user_role": ctx.user_role,
        **fields,
    }


def log_event(
    logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any
) -> None:
    logger.log(level, event, extra={"event": event, "fields": _with_context(fields)})


def log_exception(logger: logging.Logger, event: str, **fields: Any) -> None:
    logger.exception(event, extra={"event": event, "fields": _with_context(fields)})


def monotonic_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class RequestContextMiddleware(BaseHTTPMiddleware):
    header = "x-request-id"

    async def dispatch(self, request: Request, call_next) -> Response:
        ctx = RequestContext(request_id=request.headers.get(self.header) or uuid.uuid4().hex)
        reset_token = _context.set(ctx)
        logger = get_logger(__name__)
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            log_exception(
                logger,
                "http.request.error",
                method=request.method,
                path=request.url.path,
                duration_ms=monotonic_ms(start),
            )
            raise
        else:
            response.headers[self.header] = ctx.request_id
            log_event(
                logger,
                "http.request",
                level=logging.WARNING if response.status_code >= 500 else logging.INFO,
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=monotonic_ms(start),
            )
            return response
        finally:
            _context.reset(reset_token)
