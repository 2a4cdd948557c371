from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from abaops.core.security import safe_decode_token

# Extra attributes copied into the JSON line when a log call passes them.
CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "path",
    "method",
    "status_code",
    "latency_ms",
    "job_type",
    "batch_id",
    "timesheet_id",
    "invoice_id",
    "queue_item_id",
    "payroll_run_id",
)

# Health checks hit these every few seconds; keep them out of INFO output.
QUIET_PATHS = frozenset({"/healthz", "/readyz", "/version"})

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "passlib")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)
    # Request lines come from RequestLoggingMiddleware instead.
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _bearer_user_id(request: Request) -> Optional[int]:
    scheme, _, token = (request.headers.get("authorization") or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    claims = safe_decode_token(token.strip()) or {}
    try:
        return int(claims["sub"])
    except (KeyError, ValueError, TypeError):
        return None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One structured line per request, tagged with an ``X-Request-Id``."""

    def __init__(self, app, logger_name: str = "request") -> None:
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)
        self.security_logger = logging.getLogger("security")

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        fields: dict[str, Any] = {
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "user_id": _bearer_user_id(request),
        }
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
            self.logger.exception("unhandled_exception", extra=fields)
            raise

        fields["status_code"] = response.status_code
        fields["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        self.logger.log(level, "request", extra=fields)

        if response.status_code == 401:
            self.security_logger.info("unauthenticated", extra=fields)
        elif response.status_code == 403:
            self.security_logger.info("forbidden", extra=fields)

        response.headers["X-Request-Id"] = request_id
        return response
