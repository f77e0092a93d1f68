from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from typing import Any, Dict, Optional, TextIO

from flask import Flask, g, request
from flask.signals import got_request_exception

# Structured fields passed via ``extra=`` by the storage modules and the
# request hooks below.
STRUCTURED_FIELDS = (
    "event",
    "group_id",
    "serial",
    "role",
    "path",
    "method",
    "status_code",
    "duration_ms",
)


class JsonFormatter(logging.Formatter):
    """Render log records as JSON lines with storage and request metadata when available."""

    default_time_format = "%Y-%m-%dT%H:%M:%S"
    default_msec_format = "%s.%03dZ"

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - base class contract
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.default_time_format),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id is None:
            request_id = current_request_id()
        if request_id:
            payload["request_id"] = request_id

        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> logging.Handler:
    """Send root logger output to ``stream`` (stderr by default) as JSON lines."""

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    return handler


def init_logging(app: Flask, level: str = "INFO") -> None:
    """Configure JSON logging and request ID middleware for the Flask app."""

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    # Reset Flask's default handlers to avoid duplicate logs.
    app.logger.handlers.clear()
    app.logger.addHandler(handler)
    app.logger.setLevel(log_level)
    app.logger.propagate = False

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.addHandler(handler)
        root_logger.setLevel(log_level)

    @app.before_request
    def _inject_request_id() -> None:  # pragma: no cover - flask runtime hook
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        g.request_started = time.time()

    @app.after_request
    def _log_request(response):  # pragma: no cover - flask runtime hook
        request_id = current_request_id()
        if request_id:
            response.headers["X-Request-ID"] = request_id

        extra: Dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.path,
            "status_code": response.status_code,
        }
        started = getattr(g, "request_started", None)
        if isinstance(started, (int, float)):
            extra["duration_ms"] = round((time.time() - started) * 1000, 2)

        app.logger.info("request complete", extra=extra)
        return response

    @got_request_exception.connect_via(app)
    def _log_exception(sender, exception, **kwargs):  # pragma: no cover - runtime hook
        extra = {
            "request_id": current_request_id(),
            "method": getattr(request, "method", None),
            "path": getattr(request, "path", None),
        }
        exc_info = (type(exception), exception, exception.__traceback__)
        app.logger.error("request error", exc_info=exc_info, extra=extra)


def current_request_id() -> str | None:
    """Return the request ID for the active request context if present."""

    try:
        return getattr(g, "request_id", None)
    except RuntimeError:
        return None
