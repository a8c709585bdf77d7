"""
Rate limiter and per-endpoint request logging for the function endpoints.

Limits are keyed by client IP and applied with a moving (sliding) window.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)

# Per-endpoint windows for the function endpoints
FUNCTION_LIMITS: dict[str, str] = {
    "generate-quiz": "20 per minute",
    "search-books": "30 per minute",
    "get-book-media": "20 per minute",
    "enrich-book-data": "20 per minute",
    "batch-generate-quizzes": "100 per hour",
}


def client_ip() -> str:
    """First X-Forwarded-For entry, then X-Real-IP, then the socket address."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return get_remote_address() or "unknown"


limiter = Limiter(
    key_func=client_ip,
    default_limits=["200 per hour"],
    strategy="moving-window",
)


def function_endpoint(name: str) -> Callable:
    """Apply the endpoint's rate limit and append accepted calls to request_logs."""
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def logged(*args: Any, **kwargs: Any) -> Any:
            from db_stores import RequestLogDB
            try:
                RequestLogDB.log(client_ip(), name)
            except Exception:
                logger.warning("Failed to log request for %s", name, exc_info=True)
            return f(*args, **kwargs)
        return limiter.limit(FUNCTION_LIMITS[name])(logged)
    return decorator
