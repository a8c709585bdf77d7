"""Source material for quiz generation.

resolve_content() walks the content sources in priority order and returns
the first description that plausibly belongs to the book:

    1. approved book_content (curated by users/admins)
    2. Google Books (best scored match)
    3. Open Library work record
    4. Wikipedia intro
    5. AI plot summary

A book with no usable description raises InsufficientContentError; quizzes
for it would be guesswork.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import ai_resilience
import book_sources
from db_stores import BookContentStoreDB
from errors import InsufficientContentError, UpstreamServiceError

logger = logging.getLogger(__name__)

MIN_TITLE_WORD_RATIO = 0.4
GOOGLE_MATCH_THRESHOLD = 50
NO_INFO_MARKER = "NO_INFO_FOUND"

_PROMO_PATTERNS = [
    re.compile(r"From the creators? of[^.!?]*[.!?]", re.I),
    re.compile(r"Also by[^.!?]*[.!?]", re.I),
    re.compile(r"Other books[^.!?]*[.!?]", re.I),
]


@dataclass
class BookContent:
    description: str
    subjects: list[str] = field(default_factory=list)
    source: str = "none"


def clean_book_description(description: str) -> str:
    """Strip promotional sentences that talk about other books."""
    cleaned = description
    for pattern in _PROMO_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def matches_title(description: str, title: str) -> bool:
    """True when at least 40% of the title's significant (>3 char) words occur in the text."""
    words = [w for w in re.findall(r"[a-z0-9']+", title.lower()) if len(w) > 3]
    if not words:
        return True
    text = description.lower()
    found = sum(1 for w in words if w in text)
    return found / len(words) >= MIN_TITLE_WORD_RATIO


def _norm(s: str, pattern: str = r"[^a-z0-9]") -> str:
    return re.sub(pattern, "", s.lower())


def score_google_match(book: dict, volume: dict) -> int:
    """Score a Google Books volume against our book: title 50, author 20, description 10, both 20."""
    book_title = book["title"].lower().strip()
    vol_title = (volume.get("title") or "").lower().strip()
    title_match = bool(vol_title) and (
        book_title in vol_title or vol_title in book_title or _norm(vol_title) == _norm(book_title)
    )

    author_match = False
    author = (book.get("author") or "").lower().strip()
    if author and volume.get("authors"):
        for a in (x.lower().strip() for x in volume["authors"]):
            if author in a or a in author or _norm(a, r"[^a-z]") == _norm(author, r"[^a-z]"):
                author_match = True
                break

    score = 0
    if title_match:
        score += 50
    if author_match:
        score += 20
    if volume.get("description"):
        score += 10
    if title_match and author_match:
        score += 20
    return score


# ── Individual sources ──────────────────────────────────────

def from_curated(book: dict) -> BookContent | None:
    row = BookContentStoreDB.latest_approved(book["id"])
    if row and row["description"]:
        return BookContent(row["description"], row["subjects"], "user_curated")
    return None


def from_google_books(book: dict) -> BookContent | None:
    query = f"{book['title']} {book['author']}".strip() if book.get("author") else book["title"]
    best, best_score = None, -1
    for volume in book_sources.google_books_search(query, max_results=5):
        if not volume.get("description"):
            continue
        score = score_google_match(book, volume)
        if score > best_score:
            best, best_score = volume, score
    if best and best_score >= GOOGLE_MATCH_THRESHOLD:
        return BookContent(best["description"], best.get("categories") or [], "google_books")
    logger.info("Google Books: no confident match for %r (best score %d)", book["title"], best_score)
    return None


def from_open_library(book: dict) -> BookContent | None:
    if not book.get("open_library_id"):
        return None
    data = book_sources.open_library_record(book["open_library_id"])
    desc = data.get("description")
    if isinstance(desc, dict):
        desc = desc.get("value")
    if not desc:
        return None
    first = data.get("first_sentence")
    if isinstance(first, dict) and first.get("value"):
        desc = f"{first['value']}\n\n{desc}"
    return BookContent(desc, data.get("subjects") or [], "open_library")


def from_wikipedia(book: dict) -> BookContent | None:
    extract = book_sources.wikipedia_intro(f"{book['title']} {book.get('author') or ''} children's book")
    return BookContent(extract, [], "wikipedia") if extract else None


def from_ai_summary(book: dict) -> BookContent | None:
    prompt = (
        f'Write a detailed plot summary of the children\'s book "{book["title"]}" '
        f'by {book.get("author") or "unknown author"}.\n\n'
        "Return a factual 200-300 word plot summary that includes:\n"
        "- Main characters and their names\n"
        "- Key plot events in sequence\n"
        "- Important details like objects, locations, and what happens\n"
        "- How the story resolves\n\n"
        f"CRITICAL: If you do not have reliable information about this specific book, "
        f"respond with exactly: {NO_INFO_MARKER}"
    )
    summary = ai_resilience.generate_text(
        prompt, system="You are a research assistant who knows children's literature well."
    )
    if summary and NO_INFO_MARKER not in summary:
        return BookContent(summary.strip(), [], "ai_summary")
    return None


CONTENT_SOURCES = (from_curated, from_google_books, from_open_library, from_wikipedia, from_ai_summary)


def first_available(book: dict, sources=CONTENT_SOURCES) -> BookContent | None:
    """Return the first source's content, skipping sources that fail upstream."""
    for source in sources:
        try:
            content = source(book)
        except UpstreamServiceError as exc:
            logger.warning("%s failed for %r: %s", source.__name__, book["title"], exc)
            continue
        if content:
            return content
    return None


def resolve_content(book: dict) -> BookContent:
    """Find usable source material for the book or raise InsufficientContentError."""
    content = first_available(book)
    if content and not matches_title(content.description, book["title"]):
        logger.warning(
            "Description from %s does not mention %r; treating as insufficient",
            content.source, book["title"],
        )
        content = None
    if content:
        content.description = clean_book_description(content.description)
    if not content or not content.description:
        raise InsufficientContentError(
            "This book doesn't have detailed content available. Quiz accuracy cannot be guaranteed."
        )
    logger.info("Content for %r from %s (%d chars)", book["title"], content.source, len(content.description))
    return content
