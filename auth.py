"""
User Authentication: Flask-Login JSON blueprint.

Provides register, login, logout and whoami endpoints.
Uses werkzeug.security for password hashing.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from flask import Blueprint, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from audit import log_event
from database import get_db
from db_stores import RoleStoreDB, UserStatsDB
from extensions import limiter

LOCKOUT_THRESHOLD = 5
LOCKOUT_MINUTES = 15

ACCOUNT_TYPES = ("student", "parent", "teacher")

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
login_manager = LoginManager()


class User(UserMixin):
    """Wraps a DB user row for Flask-Login. Roles are read fresh from user_roles."""

    def __init__(self, id: int, name: str, email: str):
        self.id = id
        self.name = name
        self.email = email

    @property
    def roles(self) -> list[str]:
        return RoleStoreDB.roles_for(self.id)

    @property
    def is_admin(self) -> bool:
        return RoleStoreDB.has_any(self.id, ("admin",))

    @property
    def is_guardian(self) -> bool:
        return RoleStoreDB.has_any(self.id, ("parent", "teacher"))

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "roles": self.roles}

    @staticmethod
    def get(user_id: int):
        db = get_db()
        row = db.execute("SELECT id, name, email FROM users WHERE id = ?", (user_id,)).fetchone()
        if row:
            return User(row["id"], row["name"], row["email"])
        return None

    @staticmethod
    def get_by_email(email: str):
        db = get_db()
        return db.execute(
            "SELECT id, name, email, password_hash, login_attempts, locked_until "
            "FROM users WHERE email = ?", (email,),
        ).fetchone()


@login_manager.user_loader
def load_user(user_id):
    return User.get(int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "unauthorized", "message": "Please sign in.", "retryable": False}), 401


def _validate_password(password: str) -> str | None:
    """Return an error message if password is too weak, else None."""
    if len(password) < 8:
        return "Password must be at least 8 characters."
    if not any(c.isupper() for c in password):
        return "Password must contain at least one uppercase letter."
    if not any(c.islower() for c in password):
        return "Password must contain at least one lowercase letter."
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one digit."
    return None


def _bad_request(message: str, status: int = 400):
    return jsonify({"error": "validation_failed", "message": message, "retryable": False}), status


@auth_bp.route("/register", methods=["POST"])
@limiter.limit("3 per hour")
def register():
    data = request.get_json(silent=True) or {}
    name = str(data.get("name", "")).strip()
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", ""))
    account_type = str(data.get("account_type", "student")).strip().lower()

    if not name or not email or not password:
        return _bad_request("Name, email and password are required.")
    if account_type not in ACCOUNT_TYPES:
        return _bad_request(f"account_type must be one of: {', '.join(ACCOUNT_TYPES)}.")

    pw_error = _validate_password(password)
    if pw_error:
        return _bad_request(pw_error)

    if User.get_by_email(email):
        return _bad_request("An account with this email already exists.", 409)

    db = get_db()
    cur = db.execute(
        "INSERT INTO users (name, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
        (name, email, generate_password_hash(password), datetime.now().isoformat()),
    )
    user_id = cur.lastrowid
    db.commit()
    RoleStoreDB.grant(user_id, account_type)
    UserStatsDB(user_id).ensure()

    log_event("register", user_id, f"email={email} account_type={account_type}")
    user = User(user_id, name, email)
    login_user(user, remember=True)
    return jsonify({"user": user.to_dict()}), 201


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per 15 minutes")
def login():
    data = request.get_json(silent=True) or {}
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", ""))

    if not email or not password:
        return _bad_request("Email and password are required.")

    row = User.get_by_email(email)
    if not row:
        return jsonify({"error": "invalid_credentials", "message": "Invalid email or password.",
                        "retryable": False}), 401

    if row["locked_until"]:
        try:
            remaining = (datetime.fromisoformat(row["locked_until"]) - datetime.now()).total_seconds()
        except ValueError:
            remaining = 0
        if remaining > 0:
            mins = math.ceil(remaining / 60)
            log_event("login_locked", row["id"], f"email={email}")
            return jsonify({"error": "account_locked",
                            "message": f"Account temporarily locked. Try again in {mins} minute(s).",
                            "retryable": True}), 423

    db = get_db()
    if not row["password_hash"] or not check_password_hash(row["password_hash"], password):
        attempts = row["login_attempts"] + 1
        if attempts >= LOCKOUT_THRESHOLD:
            db.execute(
                "UPDATE users SET login_attempts=?, locked_until=? WHERE id=?",
                (attempts, (datetime.now() + timedelta(minutes=LOCKOUT_MINUTES)).isoformat(), row["id"]),
            )
        else:
            db.execute("UPDATE users SET login_attempts=? WHERE id=?", (attempts, row["id"]))
        db.commit()
        log_event("login_failed", row["id"], f"email={email} attempts={attempts}")
        return jsonify({"error": "invalid_credentials", "message": "Invalid email or password.",
                        "retryable": False}), 401

    db.execute("UPDATE users SET login_attempts=0, locked_until='' WHERE id=?", (row["id"],))
    db.commit()

    user = User(row["id"], row["name"], row["email"])
    login_user(user, remember=True)
    log_event("login_success", row["id"])
    return jsonify({"user": user.to_dict()})


@auth_bp.route("/logout", methods=["POST"])
def logout():
    uid = current_user.id if current_user.is_authenticated else None
    log_event("logout", uid)
    logout_user()
    return jsonify({"success": True})


@auth_bp.route("/me")
@login_required
def me():
    return jsonify({"user": current_user.to_dict()})
