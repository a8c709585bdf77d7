"""Admin routes: analytics, catalogue maintenance, roles and content moderation."""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from admin_analytics import platform_stats, visitor_activity
from audit import log_event
from contributions import approve_content, pending_contributions, settle
from db_stores import BookContentStoreDB, BookStoreDB, QuizTemplateStoreDB, RoleStoreDB, UserStoreDB
from enrichment import BATCH_DEFAULT_LIMIT, batch_generate_quizzes, enrich_books
from errors import BookNotFoundError, InvalidActionError, NotFoundError, ValidationFailedError
from extensions import function_endpoint
from helpers import admin_required, current_user_id, int_arg, json_body

bp = Blueprint("admin", __name__)

ROLES = ("admin", "parent", "teacher", "student")


@bp.route("/api/admin/stats")
@admin_required
def api_admin_stats():
    return jsonify(platform_stats())


@bp.route("/api/admin/visitors")
@admin_required
def api_admin_visitors():
    days = int_arg(request.args, "days", 7, minimum=1, maximum=90)
    return jsonify(visitor_activity(days))


# ── Catalogue ───────────────────────────────────────────────

@bp.route("/api/admin/books/<book_id>/quizzes", methods=["DELETE"])
@admin_required
def api_admin_delete_quizzes(book_id):
    """Drop every cached quiz for a book so the next request regenerates."""
    if not BookStoreDB.get(book_id):
        raise BookNotFoundError(book_id)
    deleted = QuizTemplateStoreDB.delete_for_book(book_id)
    log_event("quiz_templates_delete", current_user_id(), f"book={book_id} deleted={deleted}")
    return jsonify({"deleted": deleted})


@bp.route("/api/admin/books/<book_id>", methods=["DELETE"])
@admin_required
def api_admin_delete_book(book_id):
    book = BookStoreDB.get(book_id)
    if not book:
        raise BookNotFoundError(book_id)
    BookStoreDB.delete(book_id)
    log_event("book_delete", current_user_id(), f"book={book_id} title={book['title']}")
    return jsonify({"success": True})


@bp.route("/api/admin/content/pending")
@admin_required
def api_admin_pending_content():
    limit = int_arg(request.args, "limit", 50, minimum=1, maximum=200)
    return jsonify({"content": BookContentStoreDB.pending(limit)})


@bp.route("/api/admin/content/<int:content_id>/approve", methods=["POST"])
@admin_required
def api_admin_approve_content(content_id):
    approve_content(content_id, current_user_id())
    return jsonify({"success": True})


@bp.route("/api/admin/contributions/pending")
@admin_required
def api_admin_pending_contributions():
    limit = int_arg(request.args, "limit", 50, minimum=1, maximum=200)
    return jsonify({"contributions": pending_contributions(limit)})


@bp.route("/api/admin/contributions/<int:contribution_id>/approve", methods=["POST"])
@admin_required
def api_admin_approve_contribution(contribution_id):
    return jsonify({"contribution": settle(contribution_id, "approved", current_user_id())})


@bp.route("/api/admin/contributions/<int:contribution_id>/reject", methods=["POST"])
@admin_required
def api_admin_reject_contribution(contribution_id):
    return jsonify({"contribution": settle(contribution_id, "rejected", current_user_id())})


# ── Roles ───────────────────────────────────────────────────

def _role_request() -> tuple[int, str]:
    data = json_body()
    user_id = int_arg(data, "user_id", 0, minimum=1)
    role = str(data.get("role", "")).strip().lower()
    if role not in ROLES:
        raise ValidationFailedError(f"role must be one of: {', '.join(ROLES)}")
    if not UserStoreDB.get(user_id):
        raise NotFoundError("User not found")
    return user_id, role


@bp.route("/api/admin/roles", methods=["POST"])
@admin_required
def api_admin_grant_role():
    user_id, role = _role_request()
    granted = RoleStoreDB.grant(user_id, role)
    if granted:
        log_event("role_grant", current_user_id(), f"user={user_id} role={role}")
    return jsonify({"granted": granted, "roles": RoleStoreDB.roles_for(user_id)})


@bp.route("/api/admin/roles", methods=["DELETE"])
@admin_required
def api_admin_revoke_role():
    user_id, role = _role_request()
    if user_id == current_user_id() and role == "admin":
        raise InvalidActionError("You cannot remove your own admin role.")
    revoked = RoleStoreDB.revoke(user_id, role)
    if revoked:
        log_event("role_revoke", current_user_id(), f"user={user_id} role={role}")
    return jsonify({"revoked": revoked, "roles": RoleStoreDB.roles_for(user_id)})


# ── Maintenance functions ───────────────────────────────────

@bp.route("/api/functions/enrich-book-data", methods=["POST"])
@function_endpoint("enrich-book-data")
@admin_required
def fn_enrich_book_data():
    data = json_body()
    return jsonify(enrich_books(
        book_id=data.get("book_id"),
        book_ids=data.get("book_ids"),
        admin_id=current_user_id(),
    ))


@bp.route("/api/functions/batch-generate-quizzes", methods=["POST"])
@function_endpoint("batch-generate-quizzes")
@admin_required
def fn_batch_generate_quizzes():
    data = json_body()
    limit = int_arg(data, "limit", BATCH_DEFAULT_LIMIT, minimum=1, maximum=100)
    return jsonify(batch_generate_quizzes(limit))
