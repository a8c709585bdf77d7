"""Guardian invitations and progress access.

A parent or teacher creates an invitation; the student signs in and accepts
(or rejects) it by code. Relationships move pending -> approved or
pending -> rejected and never change afterwards. The student is unknown
until acceptance, so student_id stays NULL while pending.

Progress access is re-checked against an approved relationship on every call.
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
import string
import time

from audit import log_event
from db_stores import (
    AchievementStoreDB,
    GuardianRelationshipDB,
    QuizHistoryDB,
    RoleStoreDB,
    UserStatsDB,
    UserStoreDB,
)
from errors import AccessDeniedError, InvalidActionError, InvitationNotFoundError, NotFoundError

logger = logging.getLogger(__name__)

GUARDIAN_ROLES = ("parent", "teacher")
CODE_ATTEMPTS = 3
PROGRESS_HISTORY_LIMIT = 20

_BASE36 = string.digits + string.ascii_uppercase


def _base36(n: int) -> str:
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
    return out or "0"


def generate_invitation_code(now_ms: int | None = None) -> str:
    """Millisecond timestamp in base36 plus a random suffix, e.g. 'LZ3K9Q1A-7F3A9C'."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{_base36(now_ms)}-{secrets.token_hex(3).upper()}"


def create_invitation(guardian_id: int, relationship_type: str | None = None) -> dict:
    roles = RoleStoreDB.roles_for(guardian_id)
    guardian_roles = [r for r in roles if r in GUARDIAN_ROLES]
    if not guardian_roles:
        raise AccessDeniedError("Only parent or teacher accounts can invite students.")
    if relationship_type is None:
        relationship_type = guardian_roles[0]
    if relationship_type not in GUARDIAN_ROLES:
        raise InvalidActionError(f"relationship_type must be one of: {', '.join(GUARDIAN_ROLES)}")

    for _ in range(CODE_ATTEMPTS):
        code = generate_invitation_code()
        try:
            rel = GuardianRelationshipDB.create(guardian_id, code, relationship_type)
        except sqlite3.IntegrityError:
            logger.info("Invitation code collision, regenerating")
            continue
        log_event("invitation_create", guardian_id, f"code={code} type={relationship_type}")
        return rel
    raise InvalidActionError("Could not allocate an invitation code, please try again.")


def get_invitation(code: str) -> dict:
    rel = GuardianRelationshipDB.get_by_code(code.strip().upper())
    if not rel:
        raise InvitationNotFoundError(code)
    return rel


def _check_respondable(rel: dict, user_id: int) -> None:
    if rel["status"] != "pending":
        raise InvalidActionError(f"This invitation has already been {rel['status']}.")
    if rel["guardian_id"] == user_id:
        raise InvalidActionError("You cannot respond to your own invitation.")


def accept_invitation(code: str, user_id: int) -> dict:
    rel = get_invitation(code)
    _check_respondable(rel, user_id)
    if not GuardianRelationshipDB.approve(rel["id"], user_id):
        # Another request changed it between our read and write
        raise InvalidActionError("This invitation is no longer pending.")
    log_event("invitation_accept", user_id, f"code={rel['invitation_code']} guardian={rel['guardian_id']}")
    return GuardianRelationshipDB.get_by_code(rel["invitation_code"])


def reject_invitation(code: str, user_id: int) -> dict:
    rel = get_invitation(code)
    _check_respondable(rel, user_id)
    if not GuardianRelationshipDB.reject(rel["id"]):
        raise InvalidActionError("This invitation is no longer pending.")
    log_event("invitation_reject", user_id, f"code={rel['invitation_code']} guardian={rel['guardian_id']}")
    return GuardianRelationshipDB.get_by_code(rel["invitation_code"])


def can_view_progress(guardian_id: int, student_id: int) -> bool:
    return GuardianRelationshipDB.is_approved(guardian_id, student_id)


def list_children(guardian_id: int) -> list[dict]:
    children = []
    for rel in GuardianRelationshipDB.for_guardian(guardian_id, status="approved"):
        stats = UserStatsDB(rel["student_id"]).get()
        children.append({
            "student_id": rel["student_id"],
            "name": rel["student_name"],
            "relationship_type": rel["relationship_type"],
            "approved_at": rel["approved_at"],
            "stats": stats,
        })
    return children


def student_progress(guardian_id: int, student_id: int) -> dict:
    """Progress view for an approved guardian. Everything else is denied."""
    if not can_view_progress(guardian_id, student_id):
        logger.info("Guardian %s denied progress for student %s", guardian_id, student_id)
        raise AccessDeniedError("You do not have access to this student's progress.")
    student = UserStoreDB.get(student_id)
    if not student:
        raise NotFoundError("Student not found")
    return {
        "student": {"id": student["id"], "name": student["name"]},
        "stats": UserStatsDB(student_id).get(),
        "recent_quizzes": QuizHistoryDB(student_id).recent(PROGRESS_HISTORY_LIMIT),
        "achievements": AchievementStoreDB.for_user(student_id),
    }
