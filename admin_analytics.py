"""
Admin analytics: platform totals and daily visitor activity.
"""

from __future__ import annotations

from datetime import date, timedelta

from database import get_db
from db_stores import BookStoreDB, EventLogDB, QuizTemplateStoreDB, RequestLogDB, UserStoreDB

MAX_VISITOR_DAYS = 90


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 1) if whole else 0


def platform_stats() -> dict:
    """Return aggregate platform statistics for the admin dashboard."""
    db = get_db()

    total_users = UserStoreDB.count()
    total_quizzes = db.execute("SELECT COUNT(*) as c FROM quiz_history").fetchone()["c"]
    total_books = BookStoreDB.count()
    avg_score = db.execute(
        "SELECT AVG(score * 100.0 / total_questions) as avg FROM quiz_history WHERE total_questions > 0"
    ).fetchone()["avg"]

    today = date.today().isoformat()
    active_today = db.execute(
        "SELECT COUNT(DISTINCT user_id) as c FROM quiz_history WHERE completed_at >= ?",
        (today,),
    ).fetchone()["c"]
    active_users = db.execute(
        "SELECT COUNT(DISTINCT user_id) as c FROM quiz_history"
    ).fetchone()["c"]

    books_with_quizzes = QuizTemplateStoreDB.books_with_quizzes()

    return {
        "totalUsers": total_users,
        "totalQuizzes": total_quizzes,
        "totalBooks": total_books,
        "activeToday": active_today,
        "avgQuizScore": round(avg_score, 1) if avg_score else 0,
        "booksWithQuizzes": books_with_quizzes,
        "bookUtilizationPercentage": _pct(books_with_quizzes, total_books),
        "activeUsersRate": _pct(active_users, total_users),
        "avgQuizzesPerUser": round(total_quizzes / total_users, 1) if total_users else 0,
        "requestsByEndpoint": RequestLogDB.counts_by_endpoint(),
    }


def visitor_activity(days: int = 7) -> dict:
    """Daily quiz_started / quiz_completed counts over the last N days, oldest first."""
    days = max(1, min(days, MAX_VISITOR_DAYS))
    start = date.today() - timedelta(days=days - 1)
    daily = {
        (start + timedelta(days=i)).isoformat(): {"started": 0, "completed": 0, "anonymous": 0, "signed_in": 0}
        for i in range(days)
    }

    for event in EventLogDB.since(days):
        bucket = daily.get(event["timestamp"][:10])
        if bucket is None:
            continue
        if event["event_type"] == "quiz_started":
            bucket["started"] += 1
        else:
            bucket["completed"] += 1
        if event["user_id"] is None:
            bucket["anonymous"] += 1
        else:
            bucket["signed_in"] += 1

    started = sum(d["started"] for d in daily.values())
    completed = sum(d["completed"] for d in daily.values())
    return {
        "days": days,
        "daily": [{"date": day, **counts} for day, counts in daily.items()],
        "totals": {
            "started": started,
            "completed": completed,
            "anonymous": sum(d["anonymous"] for d in daily.values()),
            "signed_in": sum(d["signed_in"] for d in daily.values()),
        },
        "completionRate": _pct(completed, started),
    }
