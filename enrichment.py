"""Admin maintenance jobs: metadata enrichment and quiz pre-generation."""

from __future__ import annotations

import logging
import sqlite3
import time

from flask import current_app

import ai_resilience
import book_sources
from book_content import from_open_library
from db_stores import BookContentStoreDB, BookStoreDB, QuizTemplateStoreDB
from errors import StoryQuizError, UpstreamServiceError, ValidationFailedError
from quiz_generation import AGE_BANDS, QuizService

logger = logging.getLogger(__name__)

ENRICH_DEFAULT_LIMIT = 50
BATCH_DEFAULT_LIMIT = 10
BATCH_QUESTION_COUNT = 10


# ── Enrichment ──────────────────────────────────────────────

def _find_cover(book: dict, result: dict) -> str:
    if book.get("open_library_id"):
        try:
            record = book_sources.open_library_record(book["open_library_id"])
            covers = [c for c in record.get("covers") or [] if isinstance(c, int) and c > 0]
            if covers:
                result["sources_used"].append("open_library_works")
                return book_sources.open_library_cover_url(covers[0])
        except UpstreamServiceError as exc:
            result["errors"].append(f"open_library_cover: {exc}")

    try:
        volumes = book_sources.google_books_search(_query(book), max_results=1)
    except UpstreamServiceError as exc:
        result["errors"].append(f"google_books_cover: {exc}")
        return ""
    links = (volumes[0].get("imageLinks") or {}) if volumes else {}
    thumbnail = links.get("thumbnail") or links.get("smallThumbnail")
    if thumbnail:
        result["sources_used"].append("google_books")
        return thumbnail.replace("http://", "https://")
    return ""


def _query(book: dict) -> str:
    return f"{book['title']} {book['author']}".strip() if book.get("author") else book["title"]


def _find_description(book: dict, result: dict) -> str:
    try:
        volumes = book_sources.google_books_search(_query(book), max_results=1)
        if volumes and volumes[0].get("description"):
            if "google_books" not in result["sources_used"]:
                result["sources_used"].append("google_books")
            return volumes[0]["description"]
    except UpstreamServiceError as exc:
        result["errors"].append(f"google_books_description: {exc}")

    try:
        content = from_open_library(book)
        if content:
            if "open_library_works" not in result["sources_used"]:
                result["sources_used"].append("open_library_works")
            return content.description
    except UpstreamServiceError as exc:
        result["errors"].append(f"open_library_description: {exc}")

    by = f" by {book['author']}" if book.get("author") else ""
    try:
        text = ai_resilience.generate_text(
            f'Write a plot summary and description of the children\'s book "{book["title"]}"{by}. '
            "Include key themes, characters, and age appropriateness. Be comprehensive but "
            "concise (200-300 words). If you do not know this book, respond with exactly: NO_INFO_FOUND",
            system="You are a children's book research assistant. Provide accurate, educational summaries.",
        )
        if text and "NO_INFO_FOUND" not in text:
            result["sources_used"].append("ai_summary")
            return text.strip()
    except UpstreamServiceError as exc:
        result["errors"].append(f"ai_summary: {exc}")
    return ""


def enrich_book(book: dict, admin_id: int | None = None) -> dict:
    """Fill in the cover and an approved description for one book."""
    result = {"book_id": book["id"], "title": book["title"], "success": False,
              "sources_used": [], "errors": []}

    cover_url = ""
    if not book.get("cover_url"):
        cover_url = _find_cover(book, result)
        if cover_url:
            BookStoreDB.update(book["id"], cover_url=cover_url)
            result["cover_url"] = cover_url

    description = ""
    if not BookContentStoreDB.latest_approved(book["id"]):
        description = _find_description(book, result)
        if description:
            try:
                BookContentStoreDB.add(book["id"], description, source="enrichment",
                                       submitted_by=admin_id, approved=True)
                result["description"] = description
            except sqlite3.Error as exc:
                result["errors"].append(f"store_description: {exc}")
                description = ""

    result["success"] = bool(cover_url or description)
    BookStoreDB.update(book["id"], enrichment_status="enriched" if result["success"] else "failed")
    logger.info("Enriched %r: success=%s sources=%s", book["title"], result["success"], result["sources_used"])
    return result


def enrich_books(book_id: str | None = None, book_ids: list[str] | None = None,
                 admin_id: int | None = None) -> dict:
    if book_id:
        books = [b for b in [BookStoreDB.get(book_id)] if b]
    elif book_ids is not None:
        if not isinstance(book_ids, list):
            raise ValidationFailedError("book_ids must be a list")
        books = [b for b in (BookStoreDB.get(str(i)) for i in book_ids) if b]
    else:
        books = BookStoreDB.needing_enrichment(ENRICH_DEFAULT_LIMIT)

    results = [enrich_book(b, admin_id) for b in books]
    enriched = sum(1 for r in results if r["success"])
    return {
        "success": True,
        "enriched_count": enriched,
        "failed_count": len(results) - enriched,
        "results": results,
    }


# ── Batch pre-generation ────────────────────────────────────

def batch_generate_quizzes(limit: int = BATCH_DEFAULT_LIMIT, service: QuizService | None = None) -> dict:
    """Generate a 10-question quiz for every difficulty a curated book is missing."""
    service = service or QuizService()
    delay = current_app.config.get("BATCH_GENERATION_DELAY", 2.0)
    books = BookStoreDB.with_approved_content(limit)

    results = []
    generated_total = 0
    for book in books:
        have = QuizTemplateStoreDB.difficulties_for(book["id"], BATCH_QUESTION_COUNT)
        missing = [d for d in AGE_BANDS if d not in have]
        entry = {"book_id": book["id"], "title": book["title"], "quizzes_generated": 0,
                 "difficulties": [], "errors": []}
        for difficulty in missing:
            try:
                questions, content = service.generate(book, BATCH_QUESTION_COUNT, difficulty)
                if service.persist(book["id"], AGE_BANDS[difficulty], difficulty,
                                    BATCH_QUESTION_COUNT, questions, content.source):
                    entry["quizzes_generated"] += 1
                    entry["difficulties"].append(difficulty)
            except StoryQuizError as exc:
                logger.warning("Batch generation failed for %r (%s): %s", book["title"], difficulty, exc)
                entry["errors"].append(f"{difficulty}: {exc.message}")
            if delay:
                time.sleep(delay)
        generated_total += entry["quizzes_generated"]
        results.append(entry)

    return {
        "success": True,
        "books_processed": len(results),
        "quizzes_generated": generated_total,
        "books_with_new_quizzes": sum(1 for r in results if r["quizzes_generated"]),
        "books_with_errors": sum(1 for r in results if r["errors"]),
        "results": results,
    }
