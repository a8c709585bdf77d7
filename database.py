"""
SQLite database layer for Story Quiz.

Uses raw sqlite3 with WAL mode and parameterized queries.
A schema_version table handles migrations.
"""

from __future__ import annotations

import fcntl
import sqlite3
from datetime import datetime
from pathlib import Path

from flask import current_app, g

DEFAULT_DB_PATH = str(Path(__file__).parent / "story_quiz.db")


SCHEMA = """
-- Migration tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL,
    applied_at TEXT NOT NULL
);

-- Users
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT UNIQUE,
    password_hash TEXT,
    login_attempts INTEGER NOT NULL DEFAULT 0,
    locked_until TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS user_roles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK (role IN ('admin', 'parent', 'teacher', 'student')),
    created_at TEXT NOT NULL DEFAULT '',
    UNIQUE(user_id, role)
);

-- Books
CREATE TABLE IF NOT EXISTS books (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    author TEXT NOT NULL DEFAULT '',
    cover_url TEXT NOT NULL DEFAULT '',
    age_min INTEGER,
    age_max INTEGER,
    open_library_id TEXT NOT NULL DEFAULT '',
    isbn TEXT NOT NULL DEFAULT '',
    source TEXT NOT NULL DEFAULT 'manual',
    enrichment_status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_books_title ON books(title);

CREATE TABLE IF NOT EXISTS book_content (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    description TEXT NOT NULL,
    subjects TEXT NOT NULL DEFAULT '[]',
    source TEXT NOT NULL DEFAULT 'user',
    submitted_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
    approved INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_book_content_book ON book_content(book_id, approved);

-- Cached quizzes
CREATE TABLE IF NOT EXISTS quiz_templates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    age_band TEXT NOT NULL,
    difficulty TEXT NOT NULL,
    num_questions INTEGER NOT NULL,
    questions_json TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT 'ai_generated_with_content',
    content_source TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT '',
    UNIQUE(book_id, age_band, num_questions)
);

-- Completed quizzes (append-only)
CREATE TABLE IF NOT EXISTS quiz_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    score INTEGER NOT NULL,
    total_questions INTEGER NOT NULL,
    difficulty TEXT NOT NULL,
    points_earned INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_quiz_history_user ON quiz_history(user_id, completed_at);
CREATE INDEX IF NOT EXISTS idx_quiz_history_user_book ON quiz_history(user_id, book_id);

-- Gamification
CREATE TABLE IF NOT EXISTS user_stats (
    user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
    total_points INTEGER NOT NULL DEFAULT 0,
    quizzes_completed INTEGER NOT NULL DEFAULT 0,
    books_read INTEGER NOT NULL DEFAULT 0,
    current_streak INTEGER NOT NULL DEFAULT 0,
    longest_streak INTEGER NOT NULL DEFAULT 0,
    last_quiz_date TEXT,
    CHECK (longest_streak >= current_streak)
);

CREATE TABLE IF NOT EXISTS achievements (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    icon TEXT NOT NULL DEFAULT '',
    criteria_type TEXT NOT NULL,
    criteria_value INTEGER NOT NULL DEFAULT 0,
    points_reward INTEGER NOT NULL DEFAULT 0,
    category TEXT NOT NULL DEFAULT 'general'
);

CREATE TABLE IF NOT EXISTS user_achievements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    achievement_id TEXT NOT NULL REFERENCES achievements(id) ON DELETE CASCADE,
    earned_at TEXT NOT NULL DEFAULT '',
    UNIQUE(user_id, achievement_id)
);

-- Guardianship
CREATE TABLE IF NOT EXISTS guardian_relationships (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    guardian_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    student_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
    relationship_type TEXT NOT NULL DEFAULT 'parent',
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'approved', 'rejected')),
    invitation_code TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL DEFAULT '',
    approved_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_guardian_pair ON guardian_relationships(guardian_id, student_id, status);

-- Analytics
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    book_id TEXT NOT NULL,
    age_band TEXT,
    score INTEGER,
    user_id INTEGER,
    timestamp TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_events_type_ts ON events(event_type, timestamp);

CREATE TABLE IF NOT EXISTS request_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ip_address TEXT NOT NULL,
    endpoint TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_request_logs_ip ON request_logs(ip_address, endpoint, created_at);

-- Read-aloud video cache
CREATE TABLE IF NOT EXISTS youtube_videos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id TEXT NOT NULL UNIQUE REFERENCES books(id) ON DELETE CASCADE,
    video_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    channel_title TEXT NOT NULL DEFAULT '',
    thumbnail_url TEXT NOT NULL DEFAULT '',
    fetched_at TEXT NOT NULL DEFAULT ''
);

-- Security audit trail
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    action TEXT NOT NULL,
    detail TEXT NOT NULL DEFAULT '',
    ip_address TEXT NOT NULL DEFAULT '',
    user_agent TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT ''
);
"""


# (id, name, description, icon, criteria_type, criteria_value, points_reward, category)
ACHIEVEMENT_CATALOG: list[tuple[str, str, str, str, str, int, int, str]] = [
    ("first_quiz", "First Steps", "Complete your first quiz", "🌱", "quizzes_completed", 1, 10, "quizzes"),
    ("quizzes_5", "Quiz Explorer", "Complete 5 quizzes", "🧭", "quizzes_completed", 5, 25, "quizzes"),
    ("quizzes_25", "Quiz Champion", "Complete 25 quizzes", "🏆", "quizzes_completed", 25, 100, "quizzes"),
    ("bookworm_3", "Bookworm", "Take quizzes on 3 different books", "🐛", "books_read", 3, 20, "reading"),
    ("bookworm_10", "Library Legend", "Take quizzes on 10 different books", "📚", "books_read", 10, 75, "reading"),
    ("points_100", "Point Collector", "Earn 100 points", "⭐", "total_points", 100, 10, "points"),
    ("points_500", "Star Reader", "Earn 500 points", "🌟", "total_points", 500, 50, "points"),
    ("streak_3", "On a Roll", "Complete quizzes 3 days in a row", "🔥", "current_streak", 3, 15, "streaks"),
    ("streak_7", "Week Warrior", "Complete quizzes 7 days in a row", "⚡", "current_streak", 7, 50, "streaks"),
    ("perfect_score", "Perfect!", "Answer every question correctly", "💯", "perfect_score", 1, 20, "mastery"),
]


# Versioned migrations applied after SCHEMA. Each entry is (version, sql).
MIGRATIONS: list[tuple[int, str]] = [
    (2, """
CREATE INDEX IF NOT EXISTS idx_quiz_history_book ON quiz_history(book_id);
"""),
    (3, """
CREATE INDEX IF NOT EXISTS idx_guardian_code_status ON guardian_relationships(invitation_code, status);
"""),
    (4, """
CREATE TABLE IF NOT EXISTS user_contributions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    contribution_type TEXT NOT NULL
        CHECK (contribution_type IN ('book_content', 'quiz_question', 'book_added')),
    reference_id INTEGER,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'approved', 'rejected')),
    reviewed_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
    reviewed_at TEXT,
    created_at TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_user_contributions_status ON user_contributions(status, created_at);
CREATE INDEX IF NOT EXISTS idx_user_contributions_user ON user_contributions(user_id);

CREATE TABLE IF NOT EXISTS user_quiz_questions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    contribution_id INTEGER NOT NULL REFERENCES user_contributions(id) ON DELETE CASCADE,
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    created_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
    question_text TEXT NOT NULL,
    options TEXT NOT NULL,
    correct_index INTEGER NOT NULL,
    difficulty TEXT NOT NULL DEFAULT 'medium',
    created_at TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_user_quiz_questions_book ON user_quiz_questions(book_id);

CREATE TABLE IF NOT EXISTS user_books (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    author TEXT NOT NULL DEFAULT '',
    cover_url TEXT NOT NULL DEFAULT '',
    age_min INTEGER,
    age_max INTEGER,
    added_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
    merged_to_book_id TEXT REFERENCES books(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL DEFAULT ''
);
"""),
]


def get_db():
    """Return a DB connection from Flask g, creating if needed."""
    if "db" not in g:
        db_path = current_app.config.get("DATABASE", DEFAULT_DB_PATH)
        g.db = sqlite3.connect(db_path)
        g.db.row_factory = sqlite3.Row
        g.db.execute("PRAGMA journal_mode=WAL")
        g.db.execute("PRAGMA foreign_keys=ON")
    return g.db


def close_db(e=None) -> None:
    """Teardown handler: close DB connection."""
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db() -> None:
    """Execute schema DDL and seed the achievement catalog."""
    db = get_db()
    db.executescript(SCHEMA)
    db.executemany(
        "INSERT OR IGNORE INTO achievements "
        "(id, name, description, icon, criteria_type, criteria_value, points_reward, category) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        ACHIEVEMENT_CATALOG,
    )
    row = db.execute("SELECT version FROM schema_version WHERE version = 1").fetchone()
    if not row:
        db.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (1, ?)",
            (datetime.now().isoformat(),),
        )
    db.commit()


def run_migrations() -> None:
    """Apply any unapplied versioned migrations.

    Uses file-based locking to prevent race conditions when multiple
    Gunicorn workers start simultaneously.
    """
    db_path = current_app.config.get("DATABASE", DEFAULT_DB_PATH)
    lock_file = None
    if db_path != ":memory:":
        lock_path = Path(db_path).with_suffix(".migration.lock")
        try:
            lock_file = open(lock_path, "w")
            fcntl.flock(lock_file, fcntl.LOCK_EX)
        except OSError:
            lock_file = None

    try:
        db = get_db()
        applied = {
            row["version"]
            for row in db.execute("SELECT version FROM schema_version").fetchall()
        }
        for version, sql in MIGRATIONS:
            if version not in applied:
                try:
                    db.executescript(sql)
                except sqlite3.OperationalError as e:
                    err_msg = str(e).lower()
                    if "duplicate column" not in err_msg and "already exists" not in err_msg:
                        raise
                db.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now().isoformat()),
                )
                db.commit()
    finally:
        if lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_UN)
            lock_file.close()


def init_app(app) -> None:
    """Register teardown and auto-init on first request."""
    app.teardown_appcontext(close_db)

    @app.before_request
    def _ensure_db():
        if not getattr(app, "_db_initialized", False):
            init_db()
            run_migrations()
            app._db_initialized = True
