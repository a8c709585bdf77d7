"""Tests for gamification.py: points, streaks, achievements and the reader progress routes."""

import sqlite3
from datetime import date, timedelta

import pytest

from conftest import GRUFFALO_ID, OWL_BABIES_ID, WILD_THINGS_ID
from db_stores import AchievementStoreDB, QuizHistoryDB, UserStatsDB
from errors import ValidationFailedError
from gamification import (
    next_streak,
    points_for_score,
    qualifies,
    record_quiz_completion,
    star_rating,
    validate_score,
)

DAY_ONE = date(2026, 3, 2)


class TestScoring:
    @pytest.mark.parametrize("score", [0, 1, 7, 10])
    def test_points_are_ten_per_correct_answer(self, score):
        assert points_for_score(score) == score * 10

    @pytest.mark.parametrize("score, total, stars", [(10, 10, 3), (9, 10, 3), (7, 10, 2), (5, 10, 1), (4, 10, 0)])
    def test_star_rating(self, score, total, stars):
        assert star_rating(score, total) == stars

    @pytest.mark.parametrize("score, total", [(-1, 5), (6, 5), (1, 0), ("3", 5), (True, 5), (3, None)])
    def test_invalid_scores(self, score, total):
        with pytest.raises(ValidationFailedError):
            validate_score(score, total)


class TestNextStreak:
    def test_first_quiz(self):
        assert next_streak(0, None, DAY_ONE) == 1

    def test_same_day_keeps_streak(self):
        assert next_streak(3, DAY_ONE.isoformat(), DAY_ONE) == 3

    def test_next_day_extends(self):
        assert next_streak(3, DAY_ONE.isoformat(), DAY_ONE + timedelta(days=1)) == 4

    def test_gap_resets(self):
        assert next_streak(3, DAY_ONE.isoformat(), DAY_ONE + timedelta(days=2)) == 1


class TestQualifies:
    STATS = {"quizzes_completed": 5, "books_read": 2, "total_points": 120, "current_streak": 1}

    def test_threshold_criteria(self):
        assert qualifies({"id": "q", "criteria_type": "quizzes_completed", "criteria_value": 5}, self.STATS, False)
        assert not qualifies({"id": "b", "criteria_type": "books_read", "criteria_value": 3}, self.STATS, False)

    def test_perfect_score(self):
        achievement = {"id": "p", "criteria_type": "perfect_score", "criteria_value": 1}
        assert qualifies(achievement, self.STATS, True)
        assert not qualifies(achievement, self.STATS, False)

    def test_unknown_criteria_never_qualifies(self):
        assert not qualifies({"id": "x", "criteria_type": "moon_phase", "criteria_value": 0}, self.STATS, True)


class TestRecordQuizCompletion:
    def test_first_quiz_scenario(self, app):
        with app.app_context():
            result = record_quiz_completion(1, GRUFFALO_ID, 8, 10, "medium", today=DAY_ONE)
            stats = result.stats
            assert stats["quizzes_completed"] == 1
            assert stats["books_read"] == 1
            assert stats["current_streak"] == 1
            assert stats["longest_streak"] == 1
            assert stats["last_quiz_date"] == DAY_ONE.isoformat()

            history = QuizHistoryDB(1).recent()
            assert len(history) == 1
            assert history[0]["score"] == 8
            assert history[0]["total_questions"] == 10

    def test_second_day_different_book(self, app):
        with app.app_context():
            record_quiz_completion(1, GRUFFALO_ID, 8, 10, "medium", today=DAY_ONE)
            stats = record_quiz_completion(1, OWL_BABIES_ID, 6, 10, "medium",
                                           today=DAY_ONE + timedelta(days=1)).stats
            assert stats["current_streak"] == 2
            assert stats["books_read"] == 2

    def test_gap_resets_streak_but_keeps_longest(self, app):
        with app.app_context():
            record_quiz_completion(1, GRUFFALO_ID, 8, 10, "medium", today=DAY_ONE)
            record_quiz_completion(1, OWL_BABIES_ID, 6, 10, "medium", today=DAY_ONE + timedelta(days=1))
            stats = record_quiz_completion(1, WILD_THINGS_ID, 5, 10, "hard",
                                           today=DAY_ONE + timedelta(days=3)).stats
            assert stats["current_streak"] == 1
            assert stats["longest_streak"] == 2

    def test_same_book_twice_counts_once(self, app):
        with app.app_context():
            record_quiz_completion(1, GRUFFALO_ID, 3, 5, "easy", today=DAY_ONE)
            result = record_quiz_completion(1, GRUFFALO_ID, 4, 5, "easy", today=DAY_ONE)
            assert result.is_new_book is False
            assert result.stats["books_read"] == 1
            assert result.stats["quizzes_completed"] == 2

    def test_streak_invariant_over_many_transitions(self, app):
        offsets = [0, 1, 2, 2, 5, 6, 7, 8, 20, 21]
        with app.app_context():
            before = UserStatsDB(1).ensure()
            for i, offset in enumerate(offsets):
                book = (GRUFFALO_ID, OWL_BABIES_ID, WILD_THINGS_ID)[i % 3]
                after = record_quiz_completion(1, book, 2, 5, "easy",
                                               today=DAY_ONE + timedelta(days=offset)).stats
                assert after["longest_streak"] >= before["longest_streak"]
                assert after["longest_streak"] >= after["current_streak"]
                before = after
            assert before["longest_streak"] == 4

    def test_returned_stats_include_achievement_bonus(self, app):
        with app.app_context():
            result = record_quiz_completion(1, GRUFFALO_ID, 8, 10, "medium", today=DAY_ONE)
            assert [a["id"] for a in result.new_achievements] == ["first_quiz"]
            assert result.points_earned == 80
            # 80 for the answers plus the 10-point first_quiz bonus
            assert result.stats["total_points"] == 90
            assert UserStatsDB(1).get()["total_points"] == 90

    def test_bonus_write_failure_keeps_completion(self, app, monkeypatch):
        def broken(self, points):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(UserStatsDB, "add_points", broken)
        with app.app_context():
            result = record_quiz_completion(1, GRUFFALO_ID, 8, 10, "medium", today=DAY_ONE)
            assert [a["id"] for a in result.new_achievements] == ["first_quiz"]
            assert result.stats["total_points"] == 80
            assert UserStatsDB(1).get()["total_points"] == 80
            assert QuizHistoryDB(1).count() == 1

    def test_unknown_book_leaves_stats_untouched(self, app):
        with app.app_context():
            with pytest.raises(sqlite3.IntegrityError):
                record_quiz_completion(1, "00000000-0000-4000-8000-000000000000", 5, 5, "easy",
                                       today=DAY_ONE)
            stats = UserStatsDB(1).get()
            assert stats["quizzes_completed"] == 0
            assert stats["total_points"] == 0
            assert QuizHistoryDB(1).count() == 0

    def test_perfect_score_awarded(self, app):
        with app.app_context():
            result = record_quiz_completion(1, GRUFFALO_ID, 5, 5, "easy", today=DAY_ONE)
            assert {a["id"] for a in result.new_achievements} == {"first_quiz", "perfect_score"}

    def test_achievement_never_awarded_twice(self, app):
        with app.app_context():
            for i in range(8):
                record_quiz_completion(1, GRUFFALO_ID, 5, 5, "easy", today=DAY_ONE + timedelta(days=i))
            ids = [a["id"] for a in AchievementStoreDB.for_user(1)]
            assert len(ids) == len(set(ids))
            assert {"first_quiz", "quizzes_5", "perfect_score", "streak_3", "streak_7", "points_100"} <= set(ids)

    def test_history_points_match_results_points(self, app):
        with app.app_context():
            result = record_quiz_completion(1, GRUFFALO_ID, 7, 10, "hard", today=DAY_ONE)
            assert QuizHistoryDB(1).recent()[0]["points_earned"] == result.points_earned == points_for_score(7)

    def test_invalid_score_writes_nothing(self, app):
        with app.app_context():
            with pytest.raises(ValidationFailedError):
                record_quiz_completion(1, GRUFFALO_ID, 11, 10, "easy")
            assert QuizHistoryDB(1).count() == 0


class TestProgressRoutes:
    def test_stats_requires_login(self, client):
        assert client.get("/api/me/stats").status_code == 401

    def test_my_stats_history_and_achievements(self, app, auth_client):
        with app.app_context():
            record_quiz_completion(1, GRUFFALO_ID, 8, 10, "medium")

        stats = auth_client.get("/api/me/stats").get_json()["stats"]
        assert stats["quizzes_completed"] == 1

        history = auth_client.get("/api/me/history?limit=5").get_json()
        assert history["total"] == 1
        assert history["history"][0]["book_title"] == "The Gruffalo"

        achievements = auth_client.get("/api/me/achievements").get_json()["achievements"]
        assert [a["id"] for a in achievements] == ["first_quiz"]

    def test_catalog_is_public(self, client):
        catalog = client.get("/api/achievements").get_json()["achievements"]
        assert len(catalog) == 10

    def test_history_limit_validated(self, auth_client):
        assert auth_client.get("/api/me/history?limit=abc").status_code == 400
