"""JSON log lines for the API and its services.

Services log an event name as the message and attach fields through
``extra=``; every non-standard attribute on the record is emitted.
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request, Response
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware

from worktrack.core.security import decode_token

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

# Responses worth a line on the security logger.
REFUSAL_STATUSES = frozenset({401, 403, 423, 429})


class JsonFormatter(logging.Formatter):
    def __init__(self, *, service: str = "worktrack") -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "event": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", *, service: str = "worktrack") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(service=service))
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)
    # Our middleware already writes one line per request.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def actor_subject(request: Request) -> Optional[str]:
    """Best-effort ``client:{id}`` / ``staff:{id}`` for log lines; never raises."""
    scheme, _, token = (request.headers.get("authorization") or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        return decode_token(token.strip()).get("sub")
    except JWTError:
        return None


def security_event(event: str, request: Request, **fields: Any) -> None:
    """Write an authentication outcome to the ``security`` logger."""
    fields.setdefault("actor", actor_subject(request))
    logging.getLogger("security").info(
        event,
        extra={
            "request_id": getattr(request.state, "request_id", None) or request.headers.get("x-request-id"),
            "path": request.url.path,
            "method": request.method,
            **fields,
        },
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, logger_name: str = "worktrack.request") -> None:
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
            "actor": actor_subject(request),
        }
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
            self.logger.exception("request_crashed", extra=fields)
            raise

        fields["status_code"] = response.status_code
        fields["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
        self.logger.info("request", extra=fields)
        if response.status_code in REFUSAL_STATUSES:
            self.security_logger.info("request_refused", extra=fields)

        response.headers["X-Request-Id"] = request_id
        return response
