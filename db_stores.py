"""
DB-backed store classes for Story Quiz.

Every SQL statement the services need lives here; rows are returned as plain
dicts so blueprints can jsonify them directly.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, date, timedelta
from typing import Optional

from database import get_db


def _dict(row) -> Optional[dict]:
    return dict(row) if row else None


# ── Books ────────────────────────────────────────────────────────────


class BookStoreDB:
    """Catalogue of books. Ids are uuid4 strings."""

    UPDATABLE = ("title", "author", "cover_url", "age_min", "age_max",
                 "open_library_id", "isbn", "source", "enrichment_status")

    @staticmethod
    def get(book_id: str) -> Optional[dict]:
        db = get_db()
        return _dict(db.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone())

    @staticmethod
    def create(title: str, author: str = "", *, cover_url: str = "", age_min: int | None = None,
               age_max: int | None = None, open_library_id: str = "", isbn: str = "",
               source: str = "manual", enrichment_status: str = "pending") -> dict:
        book_id = str(uuid.uuid4())
        db = get_db()
        db.execute(
            "INSERT INTO books (id, title, author, cover_url, age_min, age_max, open_library_id, "
            "isbn, source, enrichment_status, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (book_id, title, author or "", cover_url or "", age_min, age_max,
             open_library_id or "", isbn or "", source, enrichment_status,
             datetime.now().isoformat()),
        )
        db.commit()
        return BookStoreDB.get(book_id)

    @staticmethod
    def update(book_id: str, **fields) -> None:
        sets = []
        vals = []
        for f in BookStoreDB.UPDATABLE:
            if f in fields:
                sets.append(f"{f}=?")
                vals.append(fields[f])
        if not sets:
            return
        vals.append(book_id)
        db = get_db()
        db.execute(f"UPDATE books SET {', '.join(sets)} WHERE id=?", vals)
        db.commit()

    @staticmethod
    def delete(book_id: str) -> bool:
        db = get_db()
        cur = db.execute("DELETE FROM books WHERE id = ?", (book_id,))
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def search(query: str, limit: int = 10) -> list[dict]:
        pattern = f"%{query}%"
        db = get_db()
        rows = db.execute(
            "SELECT * FROM books WHERE title LIKE ? OR author LIKE ? ORDER BY title LIMIT ?",
            (pattern, pattern, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def find_similar(title: str, author: str = "") -> Optional[dict]:
        """Match an existing book by case-insensitive title and (when given) author."""
        db = get_db()
        if author:
            row = db.execute(
                "SELECT * FROM books WHERE lower(trim(title)) = lower(trim(?)) "
                "AND lower(trim(author)) = lower(trim(?)) LIMIT 1",
                (title, author),
            ).fetchone()
        else:
            row = db.execute(
                "SELECT * FROM books WHERE lower(trim(title)) = lower(trim(?)) LIMIT 1",
                (title,),
            ).fetchone()
        return _dict(row)

    @staticmethod
    def for_age(age: int | None = None, limit: int = 50) -> list[dict]:
        db = get_db()
        if age is None:
            rows = db.execute("SELECT * FROM books ORDER BY title LIMIT ?", (limit,)).fetchall()
        else:
            rows = db.execute(
                "SELECT * FROM books WHERE (age_min IS NULL OR age_min <= ?) "
                "AND (age_max IS NULL OR age_max >= ?) ORDER BY title LIMIT ?",
                (age, age, limit),
            ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def popular(limit: int = 10) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT b.*, COUNT(h.id) AS times_completed FROM books b "
            "JOIN quiz_history h ON h.book_id = b.id "
            "GROUP BY b.id ORDER BY times_completed DESC, b.title LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def needing_enrichment(limit: int = 50) -> list[dict]:
        """Books missing a cover or any approved content."""
        db = get_db()
        rows = db.execute(
            "SELECT * FROM books b WHERE b.cover_url = '' OR NOT EXISTS "
            "(SELECT 1 FROM book_content c WHERE c.book_id = b.id AND c.approved = 1) "
            "ORDER BY b.created_at LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def with_approved_content(limit: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM books b WHERE EXISTS "
            "(SELECT 1 FROM book_content c WHERE c.book_id = b.id AND c.approved = 1) "
            "ORDER BY b.created_at LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def count() -> int:
        return get_db().execute("SELECT COUNT(*) FROM books").fetchone()[0]


class BookContentStoreDB:
    """Descriptive content used as quiz source material."""

    @staticmethod
    def _decode(row) -> Optional[dict]:
        if not row:
            return None
        d = dict(row)
        d["subjects"] = json.loads(d["subjects"] or "[]")
        d["approved"] = bool(d["approved"])
        return d

    @staticmethod
    def get(content_id: int) -> Optional[dict]:
        db = get_db()
        return BookContentStoreDB._decode(
            db.execute("SELECT * FROM book_content WHERE id = ?", (content_id,)).fetchone()
        )

    @staticmethod
    def latest_approved(book_id: str) -> Optional[dict]:
        db = get_db()
        row = db.execute(
            "SELECT * FROM book_content WHERE book_id = ? AND approved = 1 "
            "ORDER BY created_at DESC, id DESC LIMIT 1",
            (book_id,),
        ).fetchone()
        return BookContentStoreDB._decode(row)

    @staticmethod
    def add(book_id: str, description: str, subjects: list[str] | None = None, *,
            source: str = "user", submitted_by: int | None = None, approved: bool = False) -> int:
        db = get_db()
        cur = db.execute(
            "INSERT INTO book_content (book_id, description, subjects, source, submitted_by, "
            "approved, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (book_id, description, json.dumps(subjects or []), source, submitted_by,
             1 if approved else 0, datetime.now().isoformat()),
        )
        db.commit()
        return cur.lastrowid

    @staticmethod
    def approve(content_id: int) -> bool:
        db = get_db()
        cur = db.execute("UPDATE book_content SET approved = 1 WHERE id = ?", (content_id,))
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def pending(limit: int = 50) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM book_content WHERE approved = 0 ORDER BY created_at LIMIT ?", (limit,),
        ).fetchall()
        return [BookContentStoreDB._decode(r) for r in rows]


# ── Contributions ────────────────────────────────────────────────────


class ContributionStoreDB:
    """Ledger of user submissions. Status moves pending -> approved | rejected once."""

    @staticmethod
    def create(user_id: int, contribution_type: str, reference_id: int | None = None) -> int:
        db = get_db()
        cur = db.execute(
            "INSERT INTO user_contributions (user_id, contribution_type, reference_id, status, created_at) "
            "VALUES (?, ?, ?, 'pending', ?)",
            (user_id, contribution_type, reference_id, datetime.now().isoformat()),
        )
        db.commit()
        return cur.lastrowid

    @staticmethod
    def get(contribution_id: int) -> Optional[dict]:
        db = get_db()
        return _dict(db.execute(
            "SELECT * FROM user_contributions WHERE id = ?", (contribution_id,)
        ).fetchone())

    @staticmethod
    def find(contribution_type: str, reference_id: int) -> Optional[dict]:
        db = get_db()
        return _dict(db.execute(
            "SELECT * FROM user_contributions WHERE contribution_type = ? AND reference_id = ?",
            (contribution_type, reference_id),
        ).fetchone())

    @staticmethod
    def review(contribution_id: int, status: str, reviewer_id: int | None) -> bool:
        """Settle a pending contribution. False when it was already reviewed."""
        db = get_db()
        cur = db.execute(
            "UPDATE user_contributions SET status = ?, reviewed_by = ?, reviewed_at = ? "
            "WHERE id = ? AND status = 'pending'",
            (status, reviewer_id, datetime.now().isoformat(), contribution_id),
        )
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def pending(limit: int = 50) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT c.*, u.name AS user_name FROM user_contributions c "
            "JOIN users u ON u.id = c.user_id "
            "WHERE c.status = 'pending' ORDER BY c.created_at, c.id LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def for_user(user_id: int, limit: int = 50) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM user_contributions WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]


class UserQuestionStoreDB:
    """Quiz questions written by readers, grouped by the contribution that submitted them."""

    @staticmethod
    def _decode(row) -> dict:
        d = dict(row)
        d["options"] = json.loads(d["options"])
        return d

    @staticmethod
    def add_many(contribution_id: int, book_id: str, created_by: int, questions: list[dict]) -> list[int]:
        db = get_db()
        now = datetime.now().isoformat()
        ids = []
        try:
            for q in questions:
                cur = db.execute(
                    "INSERT INTO user_quiz_questions (contribution_id, book_id, created_by, question_text, "
                    "options, correct_index, difficulty, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (contribution_id, book_id, created_by, q["text"], json.dumps(q["options"]),
                     q["correct_index"], q["difficulty"], now),
                )
                ids.append(cur.lastrowid)
            db.commit()
        except Exception:
            db.rollback()
            raise
        return ids

    @staticmethod
    def for_contribution(contribution_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM user_quiz_questions WHERE contribution_id = ? ORDER BY id", (contribution_id,),
        ).fetchall()
        return [UserQuestionStoreDB._decode(r) for r in rows]

    @staticmethod
    def approved_for_book(book_id: str) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT q.* FROM user_quiz_questions q "
            "JOIN user_contributions c ON c.id = q.contribution_id "
            "WHERE q.book_id = ? AND c.status = 'approved' ORDER BY q.id",
            (book_id,),
        ).fetchall()
        return [UserQuestionStoreDB._decode(r) for r in rows]


class UserBookStoreDB:
    """Books suggested by readers, waiting to be merged into the catalogue."""

    @staticmethod
    def add(title: str, author: str = "", *, cover_url: str = "", age_min: int | None = None,
            age_max: int | None = None, added_by: int | None = None) -> int:
        db = get_db()
        cur = db.execute(
            "INSERT INTO user_books (title, author, cover_url, age_min, age_max, added_by, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (title, author or "", cover_url or "", age_min, age_max, added_by, datetime.now().isoformat()),
        )
        db.commit()
        return cur.lastrowid

    @staticmethod
    def get(user_book_id: int) -> Optional[dict]:
        db = get_db()
        return _dict(db.execute("SELECT * FROM user_books WHERE id = ?", (user_book_id,)).fetchone())

    @staticmethod
    def mark_merged(user_book_id: int, book_id: str) -> None:
        db = get_db()
        db.execute("UPDATE user_books SET merged_to_book_id = ? WHERE id = ?", (book_id, user_book_id))
        db.commit()


# ── Quizzes ──────────────────────────────────────────────────────────


class QuizTemplateStoreDB:
    """Cached question sets, unique per (book, age band, question count)."""

    @staticmethod
    def get(book_id: str, age_band: str, num_questions: int) -> Optional[dict]:
        db = get_db()
        row = db.execute(
            "SELECT * FROM quiz_templates WHERE book_id = ? AND age_band = ? AND num_questions = ?",
            (book_id, age_band, num_questions),
        ).fetchone()
        if not row:
            return None
        d = dict(row)
        d["questions"] = json.loads(d.pop("questions_json"))
        return d

    @staticmethod
    def save(book_id: str, age_band: str, difficulty: str, num_questions: int,
             questions: list[dict], content_source: str = "",
             source: str = "ai_generated_with_content") -> int:
        """Insert a template. Raises sqlite3.IntegrityError if one already exists."""
        db = get_db()
        try:
            cur = db.execute(
                "INSERT INTO quiz_templates (book_id, age_band, difficulty, num_questions, "
                "questions_json, source, content_source, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (book_id, age_band, difficulty, num_questions, json.dumps(questions),
                 source, content_source, datetime.now().isoformat()),
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        return cur.lastrowid

    @staticmethod
    def difficulties_for(book_id: str, num_questions: int) -> set[str]:
        db = get_db()
        rows = db.execute(
            "SELECT difficulty FROM quiz_templates WHERE book_id = ? AND num_questions = ?",
            (book_id, num_questions),
        ).fetchall()
        return {r["difficulty"] for r in rows}

    @staticmethod
    def delete_for_book(book_id: str) -> int:
        db = get_db()
        cur = db.execute("DELETE FROM quiz_templates WHERE book_id = ?", (book_id,))
        db.commit()
        return cur.rowcount

    @staticmethod
    def books_with_quizzes() -> int:
        return get_db().execute("SELECT COUNT(DISTINCT book_id) FROM quiz_templates").fetchone()[0]


class QuizHistoryDB:
    """Append-only log of completed quizzes for one user."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def add(self, book_id: str, score: int, total_questions: int, difficulty: str,
            points_earned: int) -> int:
        db = get_db()
        cur = db.execute(
            "INSERT INTO quiz_history (user_id, book_id, score, total_questions, difficulty, "
            "points_earned, completed_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (self.user_id, book_id, score, total_questions, difficulty, points_earned,
             datetime.now().isoformat()),
        )
        db.commit()
        return cur.lastrowid

    def has_book(self, book_id: str) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT 1 FROM quiz_history WHERE user_id = ? AND book_id = ? LIMIT 1",
            (self.user_id, book_id),
        ).fetchone()
        return row is not None

    def recent(self, limit: int = 20) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT h.*, b.title AS book_title, b.cover_url AS book_cover_url "
            "FROM quiz_history h LEFT JOIN books b ON b.id = h.book_id "
            "WHERE h.user_id = ? ORDER BY h.completed_at DESC, h.id DESC LIMIT ?",
            (self.user_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def count(self) -> int:
        return get_db().execute(
            "SELECT COUNT(*) FROM quiz_history WHERE user_id = ?", (self.user_id,)
        ).fetchone()[0]


# ── Gamification ─────────────────────────────────────────────────────


class UserStatsDB:
    """One stats row per user."""

    FIELDS = ("total_points", "quizzes_completed", "books_read",
              "current_streak", "longest_streak", "last_quiz_date")

    def __init__(self, user_id: int):
        self.user_id = user_id

    def get(self) -> Optional[dict]:
        db = get_db()
        return _dict(db.execute("SELECT * FROM user_stats WHERE user_id = ?", (self.user_id,)).fetchone())

    def ensure(self) -> dict:
        """Return the stats row, creating a zeroed one if absent."""
        db = get_db()
        db.execute("INSERT OR IGNORE INTO user_stats (user_id) VALUES (?)", (self.user_id,))
        db.commit()
        return self.get()

    def update(self, **fields) -> dict:
        sets = []
        vals = []
        for f in self.FIELDS:
            if f in fields:
                sets.append(f"{f}=?")
                vals.append(fields[f])
        if sets:
            vals.append(self.user_id)
            db = get_db()
            db.execute(f"UPDATE user_stats SET {', '.join(sets)} WHERE user_id=?", vals)
            db.commit()
        return self.get()

    def add_points(self, points: int) -> dict:
        db = get_db()
        db.execute(
            "UPDATE user_stats SET total_points = total_points + ? WHERE user_id = ?",
            (points, self.user_id),
        )
        db.commit()
        return self.get()


class AchievementStoreDB:
    """Achievement catalog plus per-user earned rows."""

    @staticmethod
    def catalog() -> list[dict]:
        db = get_db()
        rows = db.execute("SELECT * FROM achievements ORDER BY category, criteria_value").fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def earned_ids(user_id: int) -> set[str]:
        db = get_db()
        rows = db.execute(
            "SELECT achievement_id FROM user_achievements WHERE user_id = ?", (user_id,)
        ).fetchall()
        return {r["achievement_id"] for r in rows}

    @staticmethod
    def award(user_id: int, achievement_ids: list[str]) -> None:
        """Insert earned rows in one batch. Duplicates violate UNIQUE(user_id, achievement_id)."""
        if not achievement_ids:
            return
        now = datetime.now().isoformat()
        db = get_db()
        try:
            db.executemany(
                "INSERT INTO user_achievements (user_id, achievement_id, earned_at) VALUES (?, ?, ?)",
                [(user_id, aid, now) for aid in achievement_ids],
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

    @staticmethod
    def for_user(user_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT a.*, ua.earned_at FROM user_achievements ua "
            "JOIN achievements a ON a.id = ua.achievement_id "
            "WHERE ua.user_id = ? ORDER BY ua.earned_at, a.id",
            (user_id,),
        ).fetchall()
        return [dict(r) for r in rows]


# ── Guardianship ─────────────────────────────────────────────────────


class GuardianRelationshipDB:
    """Guardian invitations and the relationships they create."""

    @staticmethod
    def create(guardian_id: int, invitation_code: str, relationship_type: str = "parent") -> dict:
        db = get_db()
        cur = db.execute(
            "INSERT INTO guardian_relationships (guardian_id, student_id, relationship_type, "
            "status, invitation_code, created_at) VALUES (?, NULL, ?, 'pending', ?, ?)",
            (guardian_id, relationship_type, invitation_code, datetime.now().isoformat()),
        )
        db.commit()
        return GuardianRelationshipDB.get(cur.lastrowid)

    @staticmethod
    def get(rel_id: int) -> Optional[dict]:
        db = get_db()
        return _dict(db.execute("SELECT * FROM guardian_relationships WHERE id = ?", (rel_id,)).fetchone())

    @staticmethod
    def get_by_code(code: str) -> Optional[dict]:
        db = get_db()
        row = db.execute(
            "SELECT r.*, u.name AS guardian_name FROM guardian_relationships r "
            "JOIN users u ON u.id = r.guardian_id WHERE r.invitation_code = ?",
            (code,),
        ).fetchone()
        return _dict(row)

    @staticmethod
    def approve(rel_id: int, student_id: int) -> bool:
        """Approve a pending relationship. Returns False if it was no longer pending."""
        db = get_db()
        cur = db.execute(
            "UPDATE guardian_relationships SET status = 'approved', student_id = ?, approved_at = ? "
            "WHERE id = ? AND status = 'pending'",
            (student_id, datetime.now().isoformat(), rel_id),
        )
        db.commit()
        return cur.rowcount == 1

    @staticmethod
    def reject(rel_id: int) -> bool:
        db = get_db()
        cur = db.execute(
            "UPDATE guardian_relationships SET status = 'rejected' WHERE id = ? AND status = 'pending'",
            (rel_id,),
        )
        db.commit()
        return cur.rowcount == 1

    @staticmethod
    def for_guardian(guardian_id: int, status: str | None = None) -> list[dict]:
        db = get_db()
        sql = (
            "SELECT r.*, s.name AS student_name FROM guardian_relationships r "
            "LEFT JOIN users s ON s.id = r.student_id WHERE r.guardian_id = ?"
        )
        params: list = [guardian_id]
        if status:
            sql += " AND r.status = ?"
            params.append(status)
        sql += " ORDER BY r.created_at DESC, r.id DESC"
        return [dict(r) for r in db.execute(sql, params).fetchall()]

    @staticmethod
    def is_approved(guardian_id: int, student_id: int) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT 1 FROM guardian_relationships WHERE guardian_id = ? AND student_id = ? "
            "AND status = 'approved' LIMIT 1",
            (guardian_id, student_id),
        ).fetchone()
        return row is not None


# ── Analytics & logs ─────────────────────────────────────────────────


class EventLogDB:
    """Append-only analytics events."""

    @staticmethod
    def record(event_type: str, book_id: str, age_band: str | None = None,
               score: int | None = None, user_id: int | None = None) -> int:
        db = get_db()
        cur = db.execute(
            "INSERT INTO events (event_type, book_id, age_band, score, user_id, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (event_type, book_id, age_band, score, user_id, datetime.now().isoformat()),
        )
        db.commit()
        return cur.lastrowid

    @staticmethod
    def since(days: int) -> list[dict]:
        cutoff = (date.today() - timedelta(days=days - 1)).isoformat()
        db = get_db()
        rows = db.execute(
            "SELECT * FROM events WHERE timestamp >= ? ORDER BY timestamp", (cutoff,),
        ).fetchall()
        return [dict(r) for r in rows]


class RequestLogDB:
    """Per-IP request log for the function endpoints."""

    @staticmethod
    def log(ip_address: str, endpoint: str) -> None:
        db = get_db()
        db.execute(
            "INSERT INTO request_logs (ip_address, endpoint, created_at) VALUES (?, ?, ?)",
            (ip_address, endpoint, datetime.now().isoformat()),
        )
        db.commit()

    @staticmethod
    def counts_by_endpoint() -> dict[str, int]:
        db = get_db()
        rows = db.execute(
            "SELECT endpoint, COUNT(*) AS n FROM request_logs GROUP BY endpoint ORDER BY endpoint"
        ).fetchall()
        return {r["endpoint"]: r["n"] for r in rows}


class VideoCacheDB:
    """Cached read-aloud video lookups, one per book."""

    @staticmethod
    def get(book_id: str) -> Optional[dict]:
        db = get_db()
        return _dict(db.execute("SELECT * FROM youtube_videos WHERE book_id = ?", (book_id,)).fetchone())

    @staticmethod
    def upsert(book_id: str, video_id: str, title: str = "", channel_title: str = "",
               thumbnail_url: str = "") -> None:
        db = get_db()
        db.execute(
            "INSERT INTO youtube_videos (book_id, video_id, title, channel_title, thumbnail_url, fetched_at) "
            "VALUES (?, ?, ?, ?, ?, ?) ON CONFLICT(book_id) DO UPDATE SET "
            "video_id=excluded.video_id, title=excluded.title, channel_title=excluded.channel_title, "
            "thumbnail_url=excluded.thumbnail_url, fetched_at=excluded.fetched_at",
            (book_id, video_id, title, channel_title, thumbnail_url, datetime.now().isoformat()),
        )
        db.commit()


# ── Users & roles ────────────────────────────────────────────────────


class RoleStoreDB:
    """Role grants. A user may hold several roles."""

    @staticmethod
    def roles_for(user_id: int) -> list[str]:
        db = get_db()
        rows = db.execute(
            "SELECT role FROM user_roles WHERE user_id = ? ORDER BY role", (user_id,)
        ).fetchall()
        return [r["role"] for r in rows]

    @staticmethod
    def has_any(user_id: int, roles: tuple[str, ...]) -> bool:
        placeholders = ", ".join("?" for _ in roles)
        row = get_db().execute(
            f"SELECT 1 FROM user_roles WHERE user_id = ? AND role IN ({placeholders}) LIMIT 1",
            (user_id, *roles),
        ).fetchone()
        return row is not None

    @staticmethod
    def grant(user_id: int, role: str) -> bool:
        """Grant a role. Returns False if the user already had it."""
        db = get_db()
        cur = db.execute(
            "INSERT OR IGNORE INTO user_roles (user_id, role, created_at) VALUES (?, ?, ?)",
            (user_id, role, datetime.now().isoformat()),
        )
        db.commit()
        return cur.rowcount == 1

    @staticmethod
    def revoke(user_id: int, role: str) -> bool:
        db = get_db()
        cur = db.execute("DELETE FROM user_roles WHERE user_id = ? AND role = ?", (user_id, role))
        db.commit()
        return cur.rowcount == 1


class UserStoreDB:
    @staticmethod
    def get(user_id: int) -> Optional[dict]:
        db = get_db()
        return _dict(db.execute(
            "SELECT id, name, email, created_at FROM users WHERE id = ?", (user_id,)
        ).fetchone())

    @staticmethod
    def count() -> int:
        return get_db().execute("SELECT COUNT(*) FROM users").fetchone()[0]
