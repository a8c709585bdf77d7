"""Quiz player state machine and the quiz-finished side effects.

    loading -> presenting(i) -> feedback(i) -> presenting(i+1) -> ... -> finished
    loading -> failed              (question set could not be loaded)
    any non-terminal -> cancelled  (abandoned; progress discarded)

Each question accepts exactly one answer. Feedback auto-advances after a
fixed delay on a cancellable timer, so nothing blocks while it is shown.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_fixed

from db_stores import BookStoreDB
from errors import BookNotFoundError, InvalidActionError, ValidationFailedError
from events import record_event, score_percentage, validate_event
from gamification import points_for_score, record_quiz_completion, star_rating, validate_score
from quiz_generation import AGE_BANDS

logger = logging.getLogger(__name__)

LOADING = "loading"
PRESENTING = "presenting"
FEEDBACK = "feedback"
FINISHED = "finished"
FAILED = "failed"
CANCELLED = "cancelled"

LOAD_ATTEMPTS = 2


def _is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


class QuizPlayer:
    """Walks one attempt through a question set.

    loader returns the question list (dicts with text, options, correct_index).
    on_started(total) runs once after the question set loads.
    on_finished(score, total) runs once when the last feedback advances.
    """

    def __init__(
        self,
        loader: Callable[[], list[dict]],
        on_finished: Callable[[int, int], Any] | None = None,
        auto_advance_seconds: float = 2.0,
        timer_factory: Callable[..., Any] = threading.Timer,
        retry_wait: float = 1.0,
        on_started: Callable[[int], Any] | None = None,
    ):
        self._loader = loader
        self._on_started = on_started
        self._on_finished = on_finished
        self._auto_advance_seconds = auto_advance_seconds
        self._timer_factory = timer_factory
        self._retry_wait = retry_wait
        self._lock = threading.Lock()
        self._timer = None

        self.state = LOADING
        self.questions: list[dict] = []
        self.index = 0
        self.score = 0
        self.answers: list[int] = []
        self.error: Exception | None = None
        self.result: Any = None

    # ── Loading ──

    def load(self) -> None:
        """Fetch the question set, retrying once for retryable failures only."""
        if self.state != LOADING:
            raise InvalidActionError(f"Cannot load a quiz in state {self.state}")
        try:
            for attempt in Retrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(LOAD_ATTEMPTS),
                wait=wait_fixed(self._retry_wait),
                reraise=True,
            ):
                with attempt:
                    questions = self._loader()
        except Exception as exc:
            with self._lock:
                if self.state == LOADING:
                    self.state = FAILED
                    self.error = exc
            logger.warning("Quiz failed to load: %s", exc)
            raise

        if not questions:
            with self._lock:
                self.state = FAILED
                self.error = ValidationFailedError("Quiz has no questions")
            raise self.error

        with self._lock:
            if self.state != LOADING:
                return  # cancelled while loading
            self.questions = list(questions)
            self.state = PRESENTING
        if self._on_started:
            self._on_started(self.total)

    # ── Answering ──

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> dict | None:
        if self.state in (PRESENTING, FEEDBACK):
            return self.questions[self.index]
        return None

    def answer(self, option_index: int) -> bool:
        """Lock in an answer for the current question. Returns whether it was correct."""
        with self._lock:
            if self.state != PRESENTING:
                raise InvalidActionError(f"Cannot answer in state {self.state}")
            question = self.questions[self.index]
            if not 0 <= option_index < len(question["options"]):
                raise ValidationFailedError("Answer option out of range")
            correct = option_index == question["correct_index"]
            self.answers.append(option_index)
            if correct:
                self.score += 1
            self.state = FEEDBACK
            self._timer = self._timer_factory(self._auto_advance_seconds, self.advance)
            self._timer.daemon = True
            self._timer.start()
        return correct

    def advance(self) -> None:
        """Leave feedback for the next question, or finish after the last one."""
        finished = False
        with self._lock:
            if self.state != FEEDBACK:
                return
            self._timer = None
            if self.index + 1 >= len(self.questions):
                self.state = FINISHED
                finished = True
            else:
                self.index += 1
                self.state = PRESENTING
        if finished and self._on_finished:
            self.result = self._on_finished(self.score, self.total)

    # ── Abandoning ──

    def cancel(self) -> None:
        """Abandon the attempt. No completion event, no stats update."""
        with self._lock:
            if self.state in (FINISHED, FAILED, CANCELLED):
                return
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self.state = CANCELLED
            self.answers = []
            self.score = 0


def start_quiz(user_id: int | None, book_id: str, difficulty: str) -> bool:
    """Record the quiz_started analytics event for a loaded quiz."""
    return record_event(validate_event({
        "event_type": "quiz_started",
        "book_id": book_id,
        "age_band": difficulty,
        "user_id": user_id,
    }))


def complete_quiz(user_id: int | None, book_id: str, difficulty: str, score: int,
                  total_questions: int) -> dict:
    """Side effects of a finished quiz.

    Everyone produces a quiz_completed analytics event; only signed-in users
    accrue stats, history and achievements.
    """
    validate_score(score, total_questions)
    if difficulty not in AGE_BANDS:
        raise ValidationFailedError(f"difficulty must be one of: {', '.join(AGE_BANDS)}")
    if BookStoreDB.get(book_id) is None:
        raise BookNotFoundError(book_id)
    points = points_for_score(score)

    record_event(validate_event({
        "event_type": "quiz_completed",
        "book_id": book_id,
        "age_band": difficulty,
        "score": score_percentage(score, total_questions),
        "user_id": user_id,
    }))

    result = {
        "score": score,
        "total_questions": total_questions,
        "percentage": score_percentage(score, total_questions),
        "stars": star_rating(score, total_questions),
        "points_earned": points,
        "stats": None,
        "new_achievements": [],
    }
    if user_id is not None:
        completion = record_quiz_completion(user_id, book_id, score, total_questions, difficulty, points)
        result["stats"] = completion.stats
        result["new_achievements"] = completion.new_achievements
    return result
