"""Analytics events (quiz started / completed).

Payloads are validated against QuizEvent before anything is written. Writing
is fire-and-forget: a storage failure is logged and never reaches the user.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Annotated, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from db_stores import EventLogDB
from errors import EventValidationError

logger = logging.getLogger(__name__)


class QuizEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_type: Literal["quiz_started", "quiz_completed"]
    book_id: UUID
    age_band: Optional[Literal["easy", "medium", "hard"]] = None
    score: Optional[Annotated[StrictInt, Field(ge=0, le=100)]] = None
    user_id: Optional[Annotated[StrictInt, Field(ge=1)]] = None


def validate_event(payload: dict) -> QuizEvent:
    try:
        return QuizEvent.model_validate(payload)
    except ValidationError as exc:
        errors = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
        raise EventValidationError(f"Invalid event: {errors}") from exc


def record_event(event: QuizEvent) -> bool:
    """Write a validated event. Returns False (and logs) when storage fails."""
    try:
        EventLogDB.record(
            event.event_type,
            str(event.book_id),
            age_band=event.age_band,
            score=event.score,
            user_id=event.user_id,
        )
    except sqlite3.Error:
        logger.warning("Failed to record %s event for book %s", event.event_type, event.book_id,
                       exc_info=True)
        return False
    return True


def track(payload: dict) -> bool:
    """Validate then record. Raises EventValidationError for a malformed payload."""
    return record_event(validate_event(payload))


def score_percentage(score: int, total_questions: int) -> int:
    return round(score / total_questions * 100) if total_questions else 0
