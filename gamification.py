"""Points, streaks and achievements.

record_quiz_completion() is the single write path for a finished quiz by a
signed-in user. It appends quiz_history, updates user_stats, awards any newly
qualifying achievements and returns the stats including the achievement bonus.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date

from db_stores import AchievementStoreDB, QuizHistoryDB, UserStatsDB
from errors import ValidationFailedError

logger = logging.getLogger(__name__)

POINTS_PER_CORRECT_ANSWER = 10

CRITERIA_TYPES = ("quizzes_completed", "books_read", "total_points", "current_streak", "perfect_score")


def points_for_score(score: int) -> int:
    """Points earned for a completed quiz: 10 per correct answer."""
    return score * POINTS_PER_CORRECT_ANSWER


def star_rating(score: int, total_questions: int) -> int:
    """Stars shown on the results page: 3 at 90%+, 2 at 70%+, 1 at 50%+."""
    pct = score / total_questions * 100 if total_questions else 0
    if pct >= 90:
        return 3
    if pct >= 70:
        return 2
    if pct >= 50:
        return 1
    return 0


def next_streak(current_streak: int, last_quiz_date: str | None, today: date) -> int:
    """Calendar-day streak: same day keeps it, next day extends it, any gap resets to 1."""
    if not last_quiz_date:
        return 1
    gap = (today - date.fromisoformat(last_quiz_date[:10])).days
    if gap == 0:
        return max(current_streak, 1)
    if gap == 1:
        return current_streak + 1
    return 1


def qualifies(achievement: dict, stats: dict, perfect_score: bool) -> bool:
    kind = achievement["criteria_type"]
    if kind == "perfect_score":
        return perfect_score
    if kind in CRITERIA_TYPES:
        return stats[kind] >= achievement["criteria_value"]
    logger.warning("Unknown achievement criteria type %r on %s", kind, achievement["id"])
    return False


@dataclass
class CompletionResult:
    stats: dict
    new_achievements: list[dict] = field(default_factory=list)
    points_earned: int = 0
    is_new_book: bool = False

    def to_dict(self) -> dict:
        return {
            "stats": self.stats,
            "new_achievements": self.new_achievements,
            "points_earned": self.points_earned,
            "is_new_book": self.is_new_book,
        }


def validate_score(score: int, total_questions: int) -> None:
    for name, value in (("score", score), ("total_questions", total_questions)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationFailedError(f"{name} must be an integer")
    if total_questions < 1:
        raise ValidationFailedError("total_questions must be at least 1")
    if not 0 <= score <= total_questions:
        raise ValidationFailedError("score must be between 0 and total_questions")


def check_and_award_achievements(user_id: int, stats: dict, perfect_score: bool) -> list[dict]:
    """Award every catalog achievement the user now qualifies for and has not yet earned."""
    earned = AchievementStoreDB.earned_ids(user_id)
    new = [
        a for a in AchievementStoreDB.catalog()
        if a["id"] not in earned and qualifies(a, stats, perfect_score)
    ]
    if not new:
        return []
    AchievementStoreDB.award(user_id, [a["id"] for a in new])
    logger.info("User %s earned achievements: %s", user_id, ", ".join(a["id"] for a in new))
    return new


def record_quiz_completion(user_id: int, book_id: str, score: int, total_questions: int,
                           difficulty: str, points_earned: int | None = None,
                           today: date | None = None) -> CompletionResult:
    validate_score(score, total_questions)
    if points_earned is None:
        points_earned = points_for_score(score)
    today = today or date.today()

    stats_store = UserStatsDB(user_id)
    history = QuizHistoryDB(user_id)
    stats = stats_store.ensure()

    streak = next_streak(stats["current_streak"], stats["last_quiz_date"], today)
    is_new_book = not history.has_book(book_id)

    # History first: a rejected row (unknown book) must not leave stats bumped.
    history.add(book_id, score, total_questions, difficulty, points_earned)
    updated = stats_store.update(
        total_points=stats["total_points"] + points_earned,
        quizzes_completed=stats["quizzes_completed"] + 1,
        books_read=stats["books_read"] + (1 if is_new_book else 0),
        current_streak=streak,
        longest_streak=max(stats["longest_streak"], streak),
        last_quiz_date=today.isoformat(),
    )

    new_achievements = check_and_award_achievements(user_id, updated, score == total_questions)
    bonus = sum(a["points_reward"] for a in new_achievements)
    if bonus:
        try:
            updated = stats_store.add_points(bonus)
        except sqlite3.Error as exc:
            # The completion itself is stored; the bonus rollup is best effort.
            logger.warning("Achievement bonus of %d for user %s not applied: %s", bonus, user_id, exc)

    return CompletionResult(
        stats=updated,
        new_achievements=new_achievements,
        points_earned=points_earned,
        is_new_book=is_new_book,
    )
