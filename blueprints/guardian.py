"""Guardian routes: invitations and children's progress."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

import guardian
from db_stores import GuardianRelationshipDB
from errors import ValidationFailedError
from helpers import current_user_id, guardian_required, json_body

bp = Blueprint("guardian", __name__)

STATUSES = ("pending", "approved", "rejected")


def _public_invitation(rel: dict) -> dict:
    return {
        "invitation_code": rel["invitation_code"],
        "guardian_name": rel.get("guardian_name"),
        "relationship_type": rel["relationship_type"],
        "status": rel["status"],
        "created_at": rel["created_at"],
    }


@bp.route("/api/guardian/invitations", methods=["POST"])
@guardian_required
def api_create_invitation():
    data = json_body()
    rel = guardian.create_invitation(current_user_id(), data.get("relationship_type"))
    return jsonify({"invitation": rel}), 201


@bp.route("/api/guardian/invitations")
@guardian_required
def api_list_invitations():
    status = request.args.get("status")
    if status is not None and status not in STATUSES:
        raise ValidationFailedError(f"status must be one of: {', '.join(STATUSES)}")
    return jsonify({"invitations": GuardianRelationshipDB.for_guardian(current_user_id(), status)})


@bp.route("/api/invitations/<code>")
@login_required
def api_get_invitation(code):
    return jsonify({"invitation": _public_invitation(guardian.get_invitation(code))})


@bp.route("/api/invitations/<code>/accept", methods=["POST"])
@login_required
def api_accept_invitation(code):
    rel = guardian.accept_invitation(code, current_user_id())
    return jsonify({"invitation": _public_invitation(rel)})


@bp.route("/api/invitations/<code>/reject", methods=["POST"])
@login_required
def api_reject_invitation(code):
    rel = guardian.reject_invitation(code, current_user_id())
    return jsonify({"invitation": _public_invitation(rel)})


@bp.route("/api/guardian/children")
@guardian_required
def api_children():
    return jsonify({"children": guardian.list_children(current_user_id())})


@bp.route("/api/guardian/children/<int:student_id>/progress")
@login_required
def api_child_progress(student_id):
    return jsonify(guardian.student_progress(current_user_id(), student_id))
