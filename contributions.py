"""Reader contributions: book descriptions, quiz questions and new books.

Every submission gets a user_contributions ledger row that moves
pending -> approved or pending -> rejected exactly once. Nothing a reader
submits is used until an admin approves it; admin submissions are approved
on the spot through the same path.

Approval effects:
    book_content   the book_content row becomes the book's approved description
    quiz_question  the questions show up under the book's community questions
    book_added     a catalogue book is created (source "user_submitted") and
                   picked up by the next enrichment run
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, field_validator, model_validator

from audit import log_event
from db_stores import (
    BookContentStoreDB,
    BookStoreDB,
    ContributionStoreDB,
    RoleStoreDB,
    UserBookStoreDB,
    UserQuestionStoreDB,
)
from errors import BookNotFoundError, InvalidActionError, NotFoundError, ValidationFailedError
from quiz_generation import QuizQuestion

logger = logging.getLogger(__name__)

CONTENT = "book_content"
QUESTIONS = "quiz_question"
NEW_BOOK = "book_added"

NONE_OF_THE_ABOVE = "None of the above"
MAX_QUESTIONS_PER_SUBMISSION = 10
MIN_DESCRIPTION_LENGTH = 50
MAX_SUBJECTS = 20


# ── Submission schemas ──────────────────────────────────────

class QuestionSubmission(QuizQuestion):
    model_config = ConfigDict(extra="forbid")

    # 3 selects the "None of the above" option appended on save
    correct_index: Annotated[StrictInt, Field(ge=0, le=3)]
    difficulty: Literal["easy", "medium", "hard"] = "medium"


class QuestionBatch(BaseModel):
    questions: list[QuestionSubmission] = Field(min_length=1, max_length=MAX_QUESTIONS_PER_SUBMISSION)


class BookSubmission(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(max_length=300)
    author: str = Field(default="", max_length=200)
    cover_url: str = Field(default="", max_length=500)
    age_min: Optional[Annotated[StrictInt, Field(ge=0, le=18)]] = None
    age_max: Optional[Annotated[StrictInt, Field(ge=0, le=18)]] = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title is required")
        return v

    @field_validator("author")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()

    @field_validator("cover_url")
    @classmethod
    def _https_cover(cls, v: str) -> str:
        v = v.strip()
        if v and not v.startswith(("https://", "http://")):
            raise ValueError("cover_url must be an http(s) URL")
        return v

    @model_validator(mode="after")
    def _age_range(self) -> "BookSubmission":
        if self.age_min is not None and self.age_max is not None and self.age_min > self.age_max:
            raise ValueError("age_min must not be greater than age_max")
        return self


def _parse(model: type[BaseModel], payload: dict) -> BaseModel:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in e['loc']) or 'body'}: {e['msg']}" for e in exc.errors()
        )
        raise ValidationFailedError(f"Invalid submission: {errors}") from exc


def _require_book(book_id: str) -> dict:
    book = BookStoreDB.get(book_id)
    if not book:
        raise BookNotFoundError(book_id)
    return book


def _is_admin(user_id: int) -> bool:
    return RoleStoreDB.has_any(user_id, ("admin",))


def _submitted(user_id: int, contribution_id: int, **extra) -> dict:
    """Auto-approve admin submissions and build the response body."""
    approved = _is_admin(user_id)
    if approved:
        settle(contribution_id, "approved", user_id)
    return {"contribution_id": contribution_id, "approved": approved, **extra}


# ── Submitting ──────────────────────────────────────────────

def submit_content(user_id: int, book_id: str, description, subjects) -> dict:
    _require_book(book_id)
    description = str(description or "").strip()
    if len(description) < MIN_DESCRIPTION_LENGTH:
        raise ValidationFailedError(f"description must be at least {MIN_DESCRIPTION_LENGTH} characters.")
    subjects = subjects or []
    if not isinstance(subjects, list) or not all(isinstance(s, str) for s in subjects):
        raise ValidationFailedError("subjects must be a list of strings.")

    content_id = BookContentStoreDB.add(
        book_id, description, [s.strip() for s in subjects if s.strip()][:MAX_SUBJECTS],
        source="user_curated", submitted_by=user_id,
    )
    contribution_id = ContributionStoreDB.create(user_id, CONTENT, content_id)
    return _submitted(user_id, contribution_id, id=content_id)


def submit_questions(user_id: int, book_id: str, payload: dict) -> dict:
    _require_book(book_id)
    batch = _parse(QuestionBatch, payload)
    questions = [
        {
            "text": q.text,
            "options": [*q.options, NONE_OF_THE_ABOVE],
            "correct_index": q.correct_index,
            "difficulty": q.difficulty,
        }
        for q in batch.questions
    ]
    contribution_id = ContributionStoreDB.create(user_id, QUESTIONS)
    UserQuestionStoreDB.add_many(contribution_id, book_id, user_id, questions)
    logger.info("User %s submitted %d questions for book %s", user_id, len(questions), book_id)
    return _submitted(user_id, contribution_id, question_count=len(questions))


def submit_book(user_id: int, payload: dict) -> dict:
    book = _parse(BookSubmission, payload)
    user_book_id = UserBookStoreDB.add(
        book.title, book.author, cover_url=book.cover_url,
        age_min=book.age_min, age_max=book.age_max, added_by=user_id,
    )
    contribution_id = ContributionStoreDB.create(user_id, NEW_BOOK, user_book_id)
    result = _submitted(user_id, contribution_id, id=user_book_id)
    if result["approved"]:
        result["book_id"] = UserBookStoreDB.get(user_book_id)["merged_to_book_id"]
    return result


# ── Reviewing ───────────────────────────────────────────────

def _apply_approval(entry: dict) -> None:
    kind = entry["contribution_type"]
    if kind == CONTENT:
        BookContentStoreDB.approve(entry["reference_id"])
    elif kind == NEW_BOOK:
        submitted = UserBookStoreDB.get(entry["reference_id"])
        book = BookStoreDB.create(
            submitted["title"], submitted["author"], cover_url=submitted["cover_url"],
            age_min=submitted["age_min"], age_max=submitted["age_max"], source="user_submitted",
        )
        UserBookStoreDB.mark_merged(submitted["id"], book["id"])
        logger.info("Added %r to the catalogue from contribution %s", book["title"], entry["id"])


def settle(contribution_id: int, status: str, reviewer_id: int) -> dict:
    """Approve or reject a pending contribution and apply its effects."""
    if status not in ("approved", "rejected"):
        raise ValidationFailedError("status must be approved or rejected.")
    entry = ContributionStoreDB.get(contribution_id)
    if not entry:
        raise NotFoundError("Contribution not found")
    if not ContributionStoreDB.review(contribution_id, status, reviewer_id):
        raise InvalidActionError(f"This contribution is already {entry['status']}.")
    if status == "approved":
        _apply_approval(entry)
    action = "contribution_approve" if status == "approved" else "contribution_reject"
    log_event(action, reviewer_id, f"contribution={contribution_id} type={entry['contribution_type']}")
    return ContributionStoreDB.get(contribution_id)


def approve_content(content_id: int, reviewer_id: int) -> None:
    """Approve a book_content row directly, settling its ledger entry when there is one."""
    content = BookContentStoreDB.get(content_id)
    if not content:
        raise NotFoundError("Content not found")
    if content["approved"]:
        raise InvalidActionError("This content is already approved.")
    BookContentStoreDB.approve(content_id)
    entry = ContributionStoreDB.find(CONTENT, content_id)
    if entry:
        ContributionStoreDB.review(entry["id"], "approved", reviewer_id)
    log_event("content_approve", reviewer_id, f"content={content_id} book={content['book_id']}")


def _details(entry: dict):
    kind = entry["contribution_type"]
    if kind == CONTENT:
        return BookContentStoreDB.get(entry["reference_id"])
    if kind == QUESTIONS:
        return UserQuestionStoreDB.for_contribution(entry["id"])
    return UserBookStoreDB.get(entry["reference_id"])


def pending_contributions(limit: int = 50) -> list[dict]:
    entries = ContributionStoreDB.pending(limit)
    for entry in entries:
        entry["details"] = _details(entry)
    return entries
