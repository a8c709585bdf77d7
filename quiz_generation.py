"""Quiz generation and caching.

QuizService.get_quiz() returns the cached question set for a
(book, age band, question count) when one exists, and otherwise builds one
from the book's source material with the configured AI provider. Generated
output is untrusted: it must parse, match the question schema exactly, and
stay about the story rather than the physical book, or the whole quiz is
rejected.
"""

from __future__ import annotations

import json
import logging
import random
import re
import sqlite3
from dataclasses import dataclass
from typing import Annotated

from pydantic import BaseModel, Field, StrictInt, ValidationError, field_validator

import ai_resilience
from book_content import BookContent, resolve_content
from db_stores import BookStoreDB, QuizTemplateStoreDB
from errors import BookNotFoundError, QuizGenerationError, UpstreamServiceError, ValidationFailedError

logger = logging.getLogger(__name__)

AGE_BANDS = {
    "easy": "5-6",
    "medium": "7-8",
    "hard": "9-10",
}

MIN_QUESTIONS = 1
MAX_QUESTIONS = 20
OPTIONS_PER_QUESTION = 3

DIFFICULTY_INSTRUCTIONS = {
    "easy": (
        "Ages 5-6: Prioritize concrete WHO/WHAT questions: character names/types (What animal?), "
        "colors (What color?), simple actions (What did they do?), and obvious story events. "
        "Keep questions 8-12 words, use simple vocabulary."
    ),
    "medium": (
        "Ages 7-8: Mix concrete facts (characters, colors, visual details, actions) with simple WHY "
        "questions about clear motivations. Ask 'What happened when...?' and 'Why did [character] "
        "feel...?' Use 12-18 words per question."
    ),
    "hard": (
        "Ages 9-10: Ask deeper questions about story themes, character development, the story's "
        "message, and how events connect. Include inference questions. Use 18-20 words per question."
    ),
}

PHYSICAL_BOOK_PATTERNS = [
    re.compile(r"\b(pop-?up|lift|flap|pull|tab|wheel|slider|sticker|touch|texture)\b", re.I),
    re.compile(r"what (can you|do you) (lift|pull|touch|feel|see|find) (in|on) the book", re.I),
    re.compile(r"what kind of (surprise|feature|element) (is|are) in the book", re.I),
    re.compile(r"how many (pages|flaps|pop-?ups)", re.I),
    re.compile(r"what (is|are) (in|on|under) the (flap|tab|page)", re.I),
    re.compile(r"interactive", re.I),
]

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


# ── Schema for generated output ─────────────────────────────

class QuizQuestion(BaseModel):
    text: str
    options: list[str] = Field(min_length=OPTIONS_PER_QUESTION, max_length=OPTIONS_PER_QUESTION)
    correct_index: Annotated[StrictInt, Field(ge=0, le=OPTIONS_PER_QUESTION - 1)]

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("question text is empty")
        return v

    @field_validator("options")
    @classmethod
    def _options_not_blank(cls, v: list[str]) -> list[str]:
        cleaned = [o.strip() for o in v]
        if any(not o for o in cleaned):
            raise ValueError("answer options must be non-empty")
        return cleaned


class GeneratedQuiz(BaseModel):
    questions: list[QuizQuestion]


@dataclass
class QuizResult:
    questions: list[dict]
    source: str  # "cached" | "ai_generated"

    def to_dict(self) -> dict:
        return {"questions": self.questions, "source": self.source}


# ── Helpers ─────────────────────────────────────────────────

def age_band_for(difficulty: str) -> str:
    try:
        return AGE_BANDS[difficulty]
    except KeyError:
        raise ValidationFailedError(
            f"difficulty must be one of: {', '.join(AGE_BANDS)}"
        ) from None


def build_prompt(book: dict, content: BookContent, question_count: int, difficulty: str) -> tuple[str, str]:
    """Return (system, prompt) for the generation call."""
    themes = ""
    if content.subjects:
        themes = "STORY THEMES: " + ", ".join(content.subjects[:10]) + "\n"
    system = (
        "You are an expert reading comprehension test creator for children's books. Your only job "
        "is to test whether a child understood the STORY: the narrative, characters, plot, settings, "
        "emotions and themes.\n\n"
        "NEVER ask about physical book features (pop-ups, flaps, stickers, touch-and-feel, number of "
        "pages), awards or reviews, other books by the same author, or generic vocabulary."
    )
    prompt = (
        f'BOOK: "{book["title"]}" by {book.get("author") or "unknown author"}\n\n'
        f"BOOK CONTENT (YOUR ONLY SOURCE):\n{content.description}\n\n"
        f"{themes}\n"
        f"{DIFFICULTY_INSTRUCTIONS[difficulty]}\n\n"
        "REQUIREMENTS:\n"
        f"- Generate EXACTLY {question_count} questions\n"
        "- Question text: at most 20 words, child-friendly language\n"
        f"- Each question has exactly {OPTIONS_PER_QUESTION} answer options, each at most 10 words\n"
        "- Use only details from the content above; never invent characters or events\n"
        "- Mix characters, plot events, sequence, emotions, themes and settings\n\n"
        "Return ONLY valid JSON in this exact format:\n"
        '{"questions": [{"text": "Question?", "options": ["A", "B", "C"], "correct_index": 0}]}'
    )
    return system, prompt


def parse_quiz_response(text: str, question_count: int) -> list[dict]:
    """Validate raw model output. Any violation rejects the whole quiz."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise QuizGenerationError("AI response did not contain a JSON object", retryable=False)
    try:
        data = json.loads(match.group(0))
        quiz = GeneratedQuiz.model_validate(data)
    except (ValueError, ValidationError) as exc:
        raise QuizGenerationError(f"AI response failed validation: {exc}", retryable=False) from exc

    if len(quiz.questions) != question_count:
        raise QuizGenerationError(
            f"Expected {question_count} questions, got {len(quiz.questions)}", retryable=False
        )

    questions = [q.model_dump() for q in quiz.questions]
    physical = [q for q in questions if is_physical_book_question(q)]
    if physical:
        for q in physical:
            logger.error("Rejected physical-book question: %s", q["text"])
        raise QuizGenerationError(
            "Quiz included questions about physical book features instead of the story",
            retryable=False,
        )
    return questions


def is_physical_book_question(question: dict) -> bool:
    all_text = question["text"] + " " + " ".join(question["options"])
    return any(p.search(all_text) for p in PHYSICAL_BOOK_PATTERNS)


def shuffle_options(questions: list[dict], rng: random.Random | None = None) -> list[dict]:
    """Shuffle each question's options, remapping correct_index to follow the answer."""
    rng = rng or random.Random()
    shuffled = []
    for q in questions:
        order = list(range(len(q["options"])))
        rng.shuffle(order)
        shuffled.append({
            "text": q["text"],
            "options": [q["options"][i] for i in order],
            "correct_index": order.index(q["correct_index"]),
        })
    return shuffled


# ── Service ─────────────────────────────────────────────────

class QuizService:
    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def get_quiz(self, book_id: str, question_count: int, difficulty: str) -> QuizResult:
        age_band = age_band_for(difficulty)
        if isinstance(question_count, bool) or not isinstance(question_count, int) \
                or not MIN_QUESTIONS <= question_count <= MAX_QUESTIONS:
            raise ValidationFailedError(
                f"numQuestions must be an integer between {MIN_QUESTIONS} and {MAX_QUESTIONS}"
            )

        book = BookStoreDB.get(book_id)
        if not book:
            raise BookNotFoundError(book_id)

        cached = QuizTemplateStoreDB.get(book_id, age_band, question_count)
        if cached:
            logger.info("Quiz cache hit for %s (%s, %d)", book_id, age_band, question_count)
            return QuizResult(cached["questions"], "cached")

        questions, content = self.generate(book, question_count, difficulty)
        self.persist(book_id, age_band, difficulty, question_count, questions, content.source)
        return QuizResult(questions, "ai_generated")

    def generate(self, book: dict, question_count: int, difficulty: str) -> tuple[list[dict], BookContent]:
        """Generate a validated, shuffled question set. Does not touch the cache."""
        content = resolve_content(book)
        system, prompt = build_prompt(book, content, question_count, difficulty)
        try:
            raw = ai_resilience.generate_text(prompt, system=system)
        except UpstreamServiceError as exc:
            raise QuizGenerationError(str(exc), retryable=exc.retryable) from exc
        questions = parse_quiz_response(raw, question_count)
        logger.info("Generated %d questions for %r from %s", len(questions), book["title"], content.source)
        return shuffle_options(questions, self.rng), content

    @staticmethod
    def persist(book_id: str, age_band: str, difficulty: str, question_count: int,
                 questions: list[dict], content_source: str) -> bool:
        """Best-effort save. A concurrent first request may already have stored one."""
        try:
            QuizTemplateStoreDB.save(book_id, age_band, difficulty, question_count, questions, content_source)
        except sqlite3.IntegrityError:
            logger.info("Quiz template for %s (%s, %d) already stored", book_id, age_band, question_count)
            return False
        except sqlite3.Error:
            logger.exception("Failed to save quiz template for %s", book_id)
            return False
        return True
