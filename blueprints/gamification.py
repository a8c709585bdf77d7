"""Reader progress routes: stats, quiz history and achievements."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from db_stores import AchievementStoreDB, QuizHistoryDB, UserStatsDB
from helpers import current_user_id, int_arg

bp = Blueprint("gamification", __name__)


@bp.route("/api/me/stats")
@login_required
def api_my_stats():
    uid = current_user_id()
    return jsonify({"stats": UserStatsDB(uid).ensure()})


@bp.route("/api/me/history")
@login_required
def api_my_history():
    uid = current_user_id()
    limit = int_arg(request.args, "limit", 20, minimum=1, maximum=100)
    history = QuizHistoryDB(uid)
    return jsonify({"history": history.recent(limit), "total": history.count()})


@bp.route("/api/me/achievements")
@login_required
def api_my_achievements():
    return jsonify({"achievements": AchievementStoreDB.for_user(current_user_id())})


@bp.route("/api/achievements")
def api_achievement_catalog():
    return jsonify({"achievements": AchievementStoreDB.catalog()})
