"""
Shared helpers used across blueprints.

Role checks are re-derived from user_roles on every request; nothing about
the signed-in user's roles is cached on the client or the session.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import request
from flask_login import current_user

from auth import login_manager
from db_stores import RoleStoreDB
from errors import AccessDeniedError, ValidationFailedError

GUARDIAN_ROLES = ("parent", "teacher")


def current_user_id() -> int | None:
    """Return the current authenticated user's ID, or None for anonymous visitors."""
    if current_user.is_authenticated:
        return current_user.id
    return None


def admin_required(f: Callable) -> Callable:
    """Decorator that requires the admin role."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not RoleStoreDB.has_any(current_user.id, ("admin",)):
            raise AccessDeniedError("Admin access required.")
        return f(*args, **kwargs)
    return decorated


def guardian_required(f: Callable) -> Callable:
    """Decorator that requires a parent or teacher role."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not RoleStoreDB.has_any(current_user.id, GUARDIAN_ROLES):
            raise AccessDeniedError("Only parent or teacher accounts can do this.")
        return f(*args, **kwargs)
    return decorated


def json_body() -> dict:
    """Return the request's JSON object body, or raise a validation failure."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailedError("Request body must be a JSON object.")
    return data


def int_arg(data: dict, key: str, default: int, *, minimum: int | None = None,
            maximum: int | None = None) -> int:
    """Read an integer field, rejecting bools, non-integers and out-of-range values."""
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        try:
            value = int(str(value))
        except ValueError:
            raise ValidationFailedError(f"{key} must be an integer.")
    if minimum is not None and value < minimum:
        raise ValidationFailedError(f"{key} must be at least {minimum}.")
    if maximum is not None and value > maximum:
        raise ValidationFailedError(f"{key} must be at most {maximum}.")
    return value
