"""
Structured logging for Story Quiz.

Every record emitted while a request is active carries the request id and
the signed-in user id (or "-" for visitors), so quiz generation, search and
admin jobs can be traced back to the call that triggered them. JSON lines in
production, plain text in development.
"""

from __future__ import annotations

import json
import logging
import time
import uuid

from flask import Flask, g, has_request_context, request
from flask_login import current_user

SLOW_REQUEST_MS = 3000


class RequestContextFilter(logging.Filter):
    """Copy the request id and the signed-in user id onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            record.request_id = getattr(g, "request_id", "-")
            record.user_id = _signed_in_user_id()
        else:
            record.request_id = "-"
            record.user_id = "-"
        return True


def _signed_in_user_id():
    # Resolving current_user may query the users table; records logged while
    # that load is in flight get "-" instead of re-entering the loader.
    if g.get("_log_resolving_user"):
        return "-"
    g._log_resolving_user = True
    try:
        user = current_user._get_current_object()
    finally:
        g._log_resolving_user = False
    if user is not None and user.is_authenticated:
        return user.id
    return "-"


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "user_id": getattr(record, "user_id", "-"),
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def init_logging(app: Flask) -> None:
    """Install the root handler and the per-request id hooks."""
    level = getattr(logging, app.config.get("LOG_LEVEL", "INFO").upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.addFilter(RequestContextFilter())
    if app.config.get("LOG_FORMAT", "text") == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s [req=%(request_id)s user=%(user_id)s]: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for noisy in ("werkzeug", "urllib3", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    @app.before_request
    def _start_request():
        incoming = request.headers.get("X-Request-ID", "").strip()
        g.request_id = incoming[:64] if incoming else uuid.uuid4().hex[:12]
        g.request_start = time.time()

    @app.after_request
    def _finish_request(response):
        response.headers["X-Request-ID"] = getattr(g, "request_id", "-")

        duration_ms = (time.time() - getattr(g, "request_start", time.time())) * 1000
        log = app.logger.warning if duration_ms >= SLOW_REQUEST_MS else app.logger.info
        log("%s %s %s %.0fms", request.method, request.path, response.status_code, duration_ms)
        return response
