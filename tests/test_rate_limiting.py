"""Tests for extensions.py: client IP keying, request logs and per-endpoint windows."""

import pytest

from conftest import GRUFFALO_ID
from extensions import FUNCTION_LIMITS, client_ip


@pytest.fixture
def limited_app(tmp_path):
    """App with the rate limiter switched on and in-memory counters."""
    from app import create_app

    app = create_app({
        "TESTING": True,
        "DATABASE": str(tmp_path / "limited.db"),
        "SECRET_KEY": "test-secret-key",
        "RATELIMIT_ENABLED": True,
        "RATELIMIT_STORAGE_URI": "memory://",
    })
    yield app

    from extensions import limiter
    limiter.reset()
    limiter.enabled = False


class TestClientIp:
    def test_forwarded_for_first_entry(self, app):
        with app.test_request_context(headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}):
            assert client_ip() == "203.0.113.7"

    def test_real_ip(self, app):
        with app.test_request_context(headers={"X-Real-IP": "198.51.100.4"}):
            assert client_ip() == "198.51.100.4"

    def test_remote_addr_fallback(self, app):
        with app.test_request_context(environ_base={"REMOTE_ADDR": "192.0.2.9"}):
            assert client_ip() == "192.0.2.9"


class TestWindows:
    def test_configured_windows(self):
        assert FUNCTION_LIMITS == {
            "generate-quiz": "20 per minute",
            "search-books": "30 per minute",
            "get-book-media": "20 per minute",
            "enrich-book-data": "20 per minute",
            "batch-generate-quizzes": "100 per hour",
        }

    def test_search_limit_returns_429(self, limited_app):
        client = limited_app.test_client()
        headers = {"X-Forwarded-For": "203.0.113.50"}
        for _ in range(30):
            assert client.post("/api/functions/search-books", json={"query": "a"}, headers=headers).status_code == 200
        resp = client.post("/api/functions/search-books", json={"query": "a"}, headers=headers)
        assert resp.status_code == 429
        assert resp.get_json()["error"] == "rate_limited"

    def test_limits_are_per_ip(self, limited_app):
        client = limited_app.test_client()
        for _ in range(20):
            client.post("/api/functions/get-book-media", json={"bookId": GRUFFALO_ID},
                        headers={"X-Forwarded-For": "203.0.113.60"})
        blocked = client.post("/api/functions/get-book-media", json={"bookId": GRUFFALO_ID},
                              headers={"X-Forwarded-For": "203.0.113.60"})
        other = client.post("/api/functions/get-book-media", json={"bookId": GRUFFALO_ID},
                            headers={"X-Forwarded-For": "203.0.113.61"})
        assert blocked.status_code == 429
        assert other.status_code == 404

    def test_disabled_in_testing(self, client):
        for _ in range(35):
            assert client.post("/api/functions/search-books", json={"query": "a"}).status_code == 200


class TestRequestLog:
    def test_each_function_call_logged_with_ip(self, app, client):
        client.post("/api/functions/search-books", json={"query": "gruffalo"},
                    headers={"X-Forwarded-For": "203.0.113.70"})
        client.post("/api/functions/get-book-media", json={"bookId": GRUFFALO_ID},
                    headers={"X-Forwarded-For": "203.0.113.70"})
        with app.app_context():
            from database import get_db
            rows = get_db().execute("SELECT ip_address, endpoint FROM request_logs ORDER BY id").fetchall()
            assert [tuple(r) for r in rows] == [
                ("203.0.113.70", "search-books"),
                ("203.0.113.70", "get-book-media"),
            ]
