import json
import logging
import sys
import time
import traceback
import uuid
from datetime import datetime
from typing import Callable, Mapping

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from shared.utils import settings

REQUEST_ID_HEADER = "X-Request-ID"

# Credentials sent to the backend travel in both of the last two
SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key", "apikey"}

# Record attributes copied into the JSON payload when a log call sets them
EXTRA_FIELDS = (
    "request_id",
    "user_id",
    "client_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "headers",
    "collection",
    "record_id",
    "order_id",
    "payment_id",
)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, tagged with the emitting service."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "service": self.service_name,
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }
        entry.update(
            (name, getattr(record, name)) for name in EXTRA_FIELDS if hasattr(record, name)
        )
        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(entry, default=str)


def setup_logging(service_name: str, level: str = None) -> logging.Logger:
    """Route the root logger to stdout as JSON and return the service logger."""
    root = logging.getLogger()
    root.setLevel(level or settings.LOG_LEVEL)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(service_name))
    root.addHandler(handler)

    return logging.getLogger(service_name)


def mask_headers(headers: Mapping[str, str]) -> dict:
    return {k: "***" if k.lower() in SENSITIVE_HEADERS else v for k, v in headers.items()}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request once and echoes its correlation id back to the caller.

    The id comes from the incoming ``X-Request-ID`` header when the gateway
    set one, otherwise a fresh uuid4 is assigned. Handlers read it from
    ``request.state.request_id``.
    """

    def __init__(self, app: ASGIApp, service_name: str):
        super().__init__(app)
        self.logger = logging.getLogger(service_name)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            self.log_request(request, 500, started, request_id, exc_info=sys.exc_info())
            raise

        self.log_request(request, response.status_code, started, request_id)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    def log_request(self, request: Request, status_code: int, started: float, request_id: str, exc_info=None):
        # x-user-id is set by the gateway, x-client-id by the browser's cart
        extra = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            "headers": mask_headers(request.headers),
            "user_id": request.headers.get("x-user-id"),
            "client_id": request.headers.get("x-client-id"),
        }

        if status_code >= 500:
            self.logger.error("Request failed", extra=extra, exc_info=exc_info)
        elif status_code >= 400:
            self.logger.warning("Request rejected", extra=extra)
        else:
            self.logger.info("Request processed", extra=extra)
