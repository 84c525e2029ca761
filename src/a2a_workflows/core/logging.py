"""Structured logging configuration.

Uses standard library logging with a JSON formatter. Modules log through
``logging.getLogger(__name__)`` and attach structured fields via ``extra=``.

The request id of the HTTP request being served is bound to a context
variable by the request middleware, so engine and task logs emitted while
serving it carry the same ``request_id`` as the access line. ``request_id``,
``workflow`` and ``task`` are promoted to top-level keys of each JSON line;
all other ``extra`` fields are nested under ``extra``.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any

_RESERVED_LOG_RECORD_ATTRS: set[str] = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}

CORRELATION_FIELDS: tuple[str, ...] = ("request_id", "workflow", "task")

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_request_id: ContextVar[str | None] = ContextVar("a2a_request_id", default=None)


def bind_request_id(request_id: str | None) -> Token[str | None]:
    return _request_id.set(request_id)


def reset_request_id(token: Token[str | None]) -> None:
    _request_id.reset(token)


def current_request_id() -> str | None:
    return _request_id.get()


def _split_fields(record: logging.LogRecord) -> tuple[dict[str, Any], dict[str, Any]]:
    extra = {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_LOG_RECORD_ATTRS and not key.startswith("_")
    }
    popped = {key: extra.pop(key) for key in CORRELATION_FIELDS if key in extra}
    correlation = {key: value for key, value in popped.items() if value is not None}
    if "request_id" not in correlation:
        request_id = current_request_id()
        if request_id is not None:
            correlation["request_id"] = request_id
    return correlation, extra


class JsonFormatter(logging.Formatter):
    """JSON lines with correlation fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        correlation, extra = _split_fields(record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **correlation,
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # Context values may hold arbitrary objects; fall back to repr.
        return json.dumps(payload, ensure_ascii=False, default=repr)


class TextFormatter(logging.Formatter):
    """Plain text for local runs; correlation fields are appended in brackets."""

    def __init__(self) -> None:
        super().__init__(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        line = super().format(record)
        correlation, _ = _split_fields(record)
        if not correlation:
            return line
        fields = " ".join(f"{key}={value}" for key, value in correlation.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{fields}]{sep}{tail}"


def configure_logging(level: str, *, json_output: bool = True) -> None:
    """Configure root logging with structured JSON (or plain text) output."""

    root = logging.getLogger()

    # Remove any existing handlers to avoid duplicate logs when re-configuring.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter() if json_output else TextFormatter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    # Request lines are logged by our own middleware.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(max(root.level, logging.INFO))
