"""Tests for database.py: schema, seeding, migrations and constraints."""

import sqlite3

import pytest

from conftest import GRUFFALO_ID


EXPECTED_TABLES = {
    "schema_version", "users", "user_roles", "books", "book_content", "quiz_templates",
    "quiz_history", "user_stats", "achievements", "user_achievements",
    "guardian_relationships", "events", "request_logs", "youtube_videos", "audit_log",
    "user_contributions", "user_quiz_questions", "user_books",
}


class TestSchema:
    def test_all_tables_exist(self, db):
        rows = db.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        assert EXPECTED_TABLES <= {r["name"] for r in rows}

    def test_foreign_keys_enabled(self, db):
        assert db.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_migrations_recorded(self, db):
        from database import MIGRATIONS
        versions = {r["version"] for r in db.execute("SELECT version FROM schema_version").fetchall()}
        assert versions == {1} | {v for v, _ in MIGRATIONS}

    def test_init_db_is_idempotent(self, app):
        with app.app_context():
            from database import ACHIEVEMENT_CATALOG, get_db, init_db, run_migrations
            init_db()
            run_migrations()
            db = get_db()
            assert db.execute("SELECT COUNT(*) FROM achievements").fetchone()[0] == len(ACHIEVEMENT_CATALOG)
            assert db.execute("SELECT COUNT(*) FROM schema_version WHERE version = 1").fetchone()[0] == 1


class TestAchievementCatalog:
    def test_every_criteria_type_seeded(self, db):
        from gamification import CRITERIA_TYPES
        kinds = {r["criteria_type"] for r in db.execute("SELECT criteria_type FROM achievements")}
        assert kinds == set(CRITERIA_TYPES)

    def test_rewards_positive(self, db):
        rows = db.execute("SELECT points_reward FROM achievements").fetchall()
        assert all(r["points_reward"] > 0 for r in rows)


class TestConstraints:
    def test_quiz_template_unique_per_book_band_count(self, db):
        sql = (
            "INSERT INTO quiz_templates (book_id, age_band, difficulty, num_questions, questions_json) "
            "VALUES (?, '7-8', 'medium', 5, '[]')"
        )
        db.execute(sql, (GRUFFALO_ID,))
        db.commit()
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(sql, (GRUFFALO_ID,))
        db.rollback()

    def test_user_achievement_unique(self, db):
        sql = "INSERT INTO user_achievements (user_id, achievement_id, earned_at) VALUES (1, 'first_quiz', '')"
        db.execute(sql)
        db.commit()
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(sql)
        db.rollback()

    def test_invalid_role_rejected(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            db.execute("INSERT INTO user_roles (user_id, role) VALUES (1, 'wizard')")
        db.rollback()

    def test_longest_streak_never_below_current(self, db):
        db.execute("INSERT OR IGNORE INTO user_stats (user_id) VALUES (1)")
        db.commit()
        with pytest.raises(sqlite3.IntegrityError):
            db.execute("UPDATE user_stats SET current_streak = 3, longest_streak = 2 WHERE user_id = 1")
        db.rollback()

    def test_invitation_status_checked(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(
                "INSERT INTO guardian_relationships (guardian_id, status, invitation_code) "
                "VALUES (2, 'maybe', 'ABC-123456')"
            )
        db.rollback()

    def test_pending_invitation_has_no_student(self, db):
        db.execute(
            "INSERT INTO guardian_relationships (guardian_id, invitation_code) VALUES (2, 'ABC-123456')"
        )
        db.commit()
        row = db.execute("SELECT * FROM guardian_relationships WHERE invitation_code = 'ABC-123456'").fetchone()
        assert row["student_id"] is None
        assert row["status"] == "pending"

    def test_book_delete_cascades(self, db):
        db.execute(
            "INSERT INTO quiz_history (user_id, book_id, score, total_questions, difficulty) "
            "VALUES (1, ?, 3, 5, 'easy')",
            (GRUFFALO_ID,),
        )
        db.commit()
        db.execute("DELETE FROM books WHERE id = ?", (GRUFFALO_ID,))
        db.commit()
        for table in ("book_content", "quiz_history"):
            count = db.execute(f"SELECT COUNT(*) FROM {table} WHERE book_id = ?", (GRUFFALO_ID,)).fetchone()[0]
            assert count == 0
