"""Tests for events.py: analytics event schema and the events endpoint."""

import sqlite3
from unittest.mock import patch

import pytest

from conftest import GRUFFALO_ID
from db_stores import EventLogDB
from errors import EventValidationError
from events import record_event, score_percentage, track, validate_event


class TestValidateEvent:
    def test_minimal_event(self):
        event = validate_event({"event_type": "quiz_started", "book_id": GRUFFALO_ID})
        assert event.score is None and event.user_id is None

    def test_full_event(self):
        event = validate_event({
            "event_type": "quiz_completed", "book_id": GRUFFALO_ID,
            "age_band": "hard", "score": 100, "user_id": 3,
        })
        assert event.score == 100

    @pytest.mark.parametrize("payload", [
        {"event_type": "quiz_abandoned", "book_id": GRUFFALO_ID},
        {"event_type": "quiz_started", "book_id": "not-a-uuid"},
        {"event_type": "quiz_started"},
        {"event_type": "quiz_started", "book_id": GRUFFALO_ID, "age_band": "7-8"},
        {"event_type": "quiz_completed", "book_id": GRUFFALO_ID, "score": 101},
        {"event_type": "quiz_completed", "book_id": GRUFFALO_ID, "score": -1},
        {"event_type": "quiz_completed", "book_id": GRUFFALO_ID, "score": "80"},
        {"event_type": "quiz_started", "book_id": GRUFFALO_ID, "user_id": "abc"},
        {"event_type": "quiz_started", "book_id": GRUFFALO_ID, "user_id": 0},
        {"event_type": "quiz_started", "book_id": GRUFFALO_ID, "referrer": "ads"},
    ])
    def test_rejected(self, payload):
        with pytest.raises(EventValidationError):
            validate_event(payload)

    def test_error_names_field(self):
        with pytest.raises(EventValidationError) as exc_info:
            validate_event({"event_type": "quiz_completed", "book_id": GRUFFALO_ID, "score": 150})
        assert "score" in exc_info.value.message


class TestRecordEvent:
    def test_track_writes_row(self, app):
        with app.app_context():
            assert track({"event_type": "quiz_started", "book_id": GRUFFALO_ID, "age_band": "easy"})
            row = EventLogDB.since(1)[0]
            assert row["book_id"] == GRUFFALO_ID
            assert row["age_band"] == "easy"

    def test_storage_failure_is_swallowed(self, app):
        event = validate_event({"event_type": "quiz_started", "book_id": GRUFFALO_ID})
        with app.app_context():
            with patch("events.EventLogDB.record", side_effect=sqlite3.OperationalError("disk full")):
                assert record_event(event) is False

    def test_score_percentage(self):
        assert score_percentage(2, 3) == 67
        assert score_percentage(0, 0) == 0


class TestEventsEndpoint:
    def test_anonymous_event(self, app, client):
        resp = client.post("/api/events", json={"event_type": "quiz_started", "book_id": GRUFFALO_ID})
        assert resp.status_code == 201
        assert resp.get_json() == {"recorded": True}
        with app.app_context():
            assert [e["event_type"] for e in EventLogDB.since(1)] == ["quiz_started"]

    def test_session_user_overrides_payload(self, app, auth_client):
        auth_client.post("/api/events", json={
            "event_type": "quiz_started", "book_id": GRUFFALO_ID, "user_id": 4,
        })
        with app.app_context():
            assert EventLogDB.since(1)[0]["user_id"] == 1

    def test_invalid_event_is_400(self, app, client):
        resp = client.post("/api/events", json={"event_type": "quiz_started", "book_id": "nope"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "validation_failed"
        with app.app_context():
            assert EventLogDB.since(1) == []

    def test_non_object_body(self, client):
        resp = client.post("/api/events", json=["quiz_started"])
        assert resp.status_code == 400
