"""
Test fixtures for Story Quiz.

Provides app, client, role-specific clients and db fixtures with file-based
SQLite. The AI provider call and every external HTTP source are stubbed for
every test; tests opt in to canned AI output through the fake_llm fixture.
"""

from __future__ import annotations

import json
import pytest
from datetime import datetime

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

GRUFFALO_ID = "6f1c2a52-8a4e-4f0b-9c55-0d7f3e0f2a11"
OWL_BABIES_ID = "2b7d9e1a-3c4f-4a5b-8d6e-7f8091a2b3c4"
WILD_THINGS_ID = "9a8b7c6d-5e4f-4321-8765-43210fedcba9"

GRUFFALO_DESCRIPTION = (
    "A mouse took a stroll through the deep dark wood. A fox saw the mouse and the mouse looked good. "
    "The clever mouse invents a monster called the Gruffalo to scare away the fox, the owl and the snake. "
    "Then the mouse meets a real Gruffalo and has to outwit him too."
)

PASSWORD = "ReadMore123"


class FakeLLM:
    """Stands in for the provider call. Queue strings, exceptions or callables."""

    def __init__(self):
        self.calls: list[dict] = []
        self.responses: list = []
        self.default = None

    def queue(self, *responses) -> "FakeLLM":
        self.responses.extend(responses)
        return self

    def __call__(self, provider, model, prompt, system, api_key):
        self.calls.append({"provider": provider, "model": model, "prompt": prompt, "system": system})
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt, system)
        if response is None:
            raise ValueError("no fake AI response queued")
        return response


def quiz_json(count: int = 3, correct_index: int = 0, text: str = "What did the mouse meet in the wood?") -> str:
    """A well-formed AI quiz response with `count` questions."""
    return json.dumps({
        "questions": [
            {
                "text": f"{text} ({i + 1})",
                "options": ["A fox", "A whale", "A robot"],
                "correct_index": correct_index,
            }
            for i in range(count)
        ]
    })


@pytest.fixture(autouse=True)
def offline(monkeypatch):
    """No test talks to a real AI provider or book API."""
    import ai_resilience
    import book_sources

    def _no_ai(*args, **kwargs):
        raise ValueError("AI provider disabled in tests")

    monkeypatch.setattr(ai_resilience, "_do_call", _no_ai)
    monkeypatch.setattr(book_sources, "google_books_search", lambda query, max_results=5: [])
    monkeypatch.setattr(book_sources, "open_library_record", lambda olid: {})
    monkeypatch.setattr(book_sources, "open_library_search", lambda query, limit=10: [])
    monkeypatch.setattr(book_sources, "wikipedia_intro", lambda query: "")
    monkeypatch.setattr(book_sources, "youtube_search", lambda query, api_key, max_results=3: [])

    ai_resilience.get_circuit_breaker().reset()
    ai_resilience.get_cache().clear()
    yield
    ai_resilience.get_circuit_breaker().reset()
    ai_resilience.get_cache().clear()


@pytest.fixture
def fake_llm(monkeypatch):
    import ai_resilience

    fake = FakeLLM()
    monkeypatch.setattr(ai_resilience, "_do_call", fake)
    return fake


def _add_user(db, user_id: int, name: str, email: str, roles: tuple[str, ...]) -> None:
    from werkzeug.security import generate_password_hash

    db.execute(
        "INSERT INTO users (id, name, email, password_hash, created_at) VALUES (?, ?, ?, ?, ?)",
        (user_id, name, email, generate_password_hash(PASSWORD, method="pbkdf2:sha256:1000"),
         datetime.now().isoformat()),
    )
    for role in roles:
        db.execute(
            "INSERT INTO user_roles (user_id, role, created_at) VALUES (?, ?, ?)",
            (user_id, role, datetime.now().isoformat()),
        )


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "GOOGLE_API_KEY": "test-key",
        "YOUTUBE_API_KEY": "",
        "BATCH_GENERATION_DELAY": 0,
    })

    with app.app_context():
        from database import init_db, run_migrations, get_db

        init_db()
        run_migrations()

        # Seed users: 1 student, 2 parent, 3 admin, 4 second student
        db = get_db()
        _add_user(db, 1, "Test Student", "student@example.com", ("student",))
        _add_user(db, 2, "Test Parent", "parent@example.com", ("parent",))
        _add_user(db, 3, "Test Admin", "admin@example.com", ("admin",))
        _add_user(db, 4, "Other Student", "other@example.com", ("student",))

        # Seed books
        now = datetime.now().isoformat()
        db.executemany(
            "INSERT INTO books (id, title, author, age_min, age_max, open_library_id, source, "
            "enrichment_status, created_at) VALUES (?, ?, ?, ?, ?, ?, 'manual', 'enriched', ?)",
            [
                (GRUFFALO_ID, "The Gruffalo", "Julia Donaldson", 3, 7, "/works/OL2713346W", now),
                (OWL_BABIES_ID, "Owl Babies", "Martin Waddell", 3, 6, "", now),
                (WILD_THINGS_ID, "Where the Wild Things Are", "Maurice Sendak", 4, 8, "", now),
            ],
        )
        db.execute(
            "INSERT INTO book_content (book_id, description, subjects, source, approved, created_at) "
            "VALUES (?, ?, ?, 'user_curated', 1, ?)",
            (GRUFFALO_ID, GRUFFALO_DESCRIPTION, json.dumps(["Mice", "Monsters", "Cleverness"]), now),
        )
        db.commit()

    yield app


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


def _login(app, email: str):
    client = app.test_client()
    resp = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def auth_client(app):
    """Authenticated test client (logged in as the student, user 1)."""
    return _login(app, "student@example.com")


@pytest.fixture
def guardian_client(app):
    """Authenticated test client logged in as the parent, user 2."""
    return _login(app, "parent@example.com")


@pytest.fixture
def admin_client(app):
    """Authenticated test client logged in as the admin, user 3."""
    return _login(app, "admin@example.com")


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()
