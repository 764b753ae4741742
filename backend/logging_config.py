"""
Logging setup for the expense approval API.

Standard-library logging with a per-request id carried in a ContextVar, so
every record emitted while handling a request can be correlated.
"""

import json
import logging
import os
import sys
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

_request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

LOGGER_NAME = "expense_api"

_logging_initialized = False


def set_request_id(request_id: str) -> Token:
    return _request_id_var.set(request_id or "-")


def reset_request_id(token: Token) -> None:
    _request_id_var.reset(token)


def get_request_id() -> str:
    return _request_id_var.get()


class RequestIdFilter(logging.Filter):
    """Injects the current request id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line. Enabled with JSON_LOGS=true."""

    EXTRA_FIELDS = ("user_id", "expense_id", "approval_id", "decision")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-") or "-",
        }
        for key in self.EXTRA_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None, json_format: Optional[bool] = None) -> logging.Logger:
    """
    Configure the service loggers once. Later calls return the configured logger.

    Level defaults to LOG_LEVEL, format to JSON_LOGS.
    """
    global _logging_initialized

    if _logging_initialized:
        return logging.getLogger(LOGGER_NAME)

    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    if json_format is None:
        json_format = os.getenv("JSON_LOGS", "false").lower() in ("1", "true", "yes")

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    handler.setLevel(log_level)

    # Application modules log under their bare module names
    for name in (LOGGER_NAME, "workflow", "crud", "auth", "seed"):
        logger = logging.getLogger(name)
        logger.setLevel(log_level)
        logger.handlers = [handler]
        logger.propagate = False

    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.handlers = [handler]
    uvicorn_access.propagate = False

    _logging_initialized = True
    return logging.getLogger(LOGGER_NAME)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Takes X-Request-Id from the request (or generates one) and echoes it back."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        token = set_request_id(request_id)
        try:
            response = await call_next(request)
            response.headers["X-Request-Id"] = request_id
            return response
        finally:
            reset_request_id(token)
