from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.crypto import mask_secret

REQUEST_ID_HEADER = "X-Request-ID"

# Fields that may carry broker tokens, OTPs or PANs; masked before emission.
SENSITIVE_FIELDS = frozenset(
    {
        "access_token",
        "request_token",
        "api_secret",
        "otp",
        "pan",
        "crypto_key",
        "cron_secret",
    }
)

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def current_correlation_id() -> Optional[str]:
    """Correlation id of the request being served, if any."""

    return _correlation_id.get()


def redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: mask_secret(str(value)) if key in SENSITIVE_FIELDS and value else value
        for key, value in fields.items()
    }


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        correlation_id = current_correlation_id()
        if correlation_id:
            payload["correlation_id"] = correlation_id
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            payload.update(redact(record.extra))  # type: ignore[arg-type]
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Send every record to stdout as one JSON object per line."""

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # Provider SDKs log full request URLs at INFO, tokens included.
    for noisy in ("httpx", "httpcore", "kiteconnect", "urllib3"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a correlation id to each request and log one line per call."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = _correlation_id.set(correlation_id)

        log = logging.getLogger("portfolio_blend.request")
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            log.exception(
                "HTTP request failed",
                extra={"extra": {"method": request.method, "path": request.url.path}},
            )
            raise
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            _correlation_id.reset(token)

        response.headers[REQUEST_ID_HEADER] = correlation_id
        log.info(
            "HTTP request",
            extra={
                "extra": {
                    "correlation_id": correlation_id,
                    "user_id": getattr(request.state, "user_id", None),
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                }
            },
        )
        return response


__all__ = [
    "REQUEST_ID_HEADER",
    "SENSITIVE_FIELDS",
    "JsonFormatter",
    "configure_logging",
    "current_correlation_id",
    "redact",
    "RequestContextMiddleware",
]
