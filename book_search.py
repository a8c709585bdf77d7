"""Book search: local catalogue first, Open Library to fill the gaps.

New titles found remotely are classified by the AI as children's books or
not. Kids' books (max age 12 or under) join the catalogue with enrichment
pending; anything else is shown as unavailable under a temporary id and is
never stored.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Optional

from flask import current_app
from pydantic import BaseModel, ConfigDict, Field, ValidationError

import ai_resilience
import book_sources
from db_stores import BookStoreDB
from errors import UpstreamServiceError

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
MAX_RESULTS = 10
KIDS_MAX_AGE = 12
CLASSIFICATION_CACHE_TTL = 86400


class KidsBookVerdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_kids_book: bool = Field(False, alias="isKidsBook")
    age_min: Optional[int] = Field(None, alias="ageMin")
    age_max: Optional[int] = Field(None, alias="ageMax")


NOT_KIDS = KidsBookVerdict(isKidsBook=False)


def public_book(book: dict, available: bool = True) -> dict:
    return {
        "id": book["id"],
        "title": book["title"],
        "author": book.get("author") or None,
        "cover_url": book.get("cover_url") or None,
        "age_min": book.get("age_min"),
        "age_max": book.get("age_max"),
        "available": available,
    }


def classify_kids_book(title: str, author: str | None) -> KidsBookVerdict:
    """Ask the AI whether a title is a children's book. Any failure counts as 'no'."""
    by = f" by {author}" if author else ""
    prompt = (
        f'Is "{title}"{by} a children\'s book appropriate for kids aged 12 or under?\n\n'
        "Respond with ONLY a JSON object in this exact format:\n"
        '{"isKidsBook": true/false, "ageMin": <number or null>, "ageMax": <number or null>}\n\n'
        "Rules:\n"
        "- isKidsBook: true if the book is appropriate for children aged 12 or under\n"
        "- ageMin/ageMax: estimated age range in 2-year bands (e.g. 5-6, 7-8, 9-10, 11-12)\n"
        "- If NOT a kids book, set isKidsBook to false and both ages to null"
    )
    try:
        raw = ai_resilience.generate_text(
            prompt,
            system="You are a children's book expert. Respond only with valid JSON.",
            cache_ttl=CLASSIFICATION_CACHE_TTL,
        )
        match = re.search(r"\{[\s\S]*\}", raw)
        if not match:
            return NOT_KIDS
        return KidsBookVerdict.model_validate(json.loads(match.group(0)))
    except (UpstreamServiceError, ValueError, ValidationError) as exc:
        logger.warning("Kids-book classification failed for %r: %s", title, exc)
        return NOT_KIDS


def _import_remote(doc: dict) -> dict | None:
    title = (doc.get("title") or "").strip()
    if not title:
        return None
    author = (doc.get("author_name") or [None])[0]

    existing = BookStoreDB.find_similar(title, author or "")
    if existing:
        return public_book(existing)

    cover_url = book_sources.open_library_cover_url(doc.get("cover_i"))
    verdict = classify_kids_book(title, author)
    if verdict.is_kids_book and verdict.age_max is not None and verdict.age_max <= KIDS_MAX_AGE:
        book = BookStoreDB.create(
            title,
            author or "",
            cover_url=cover_url,
            age_min=verdict.age_min,
            age_max=verdict.age_max,
            open_library_id=doc.get("key") or "",
            source="open_library",
            enrichment_status="pending",
        )
        logger.info("Imported kids' book %r (ages %s-%s)", title, verdict.age_min, verdict.age_max)
        return public_book(book)

    return {
        "id": f"temp-{doc.get('key') or title}",
        "title": title,
        "author": author,
        "cover_url": cover_url or None,
        "age_min": None,
        "age_max": None,
        "available": False,
    }


def search_books(query: str) -> list[dict]:
    query = (query or "").strip()
    if len(query) < MIN_QUERY_LENGTH:
        return []

    results = [public_book(b) for b in BookStoreDB.search(query, limit=MAX_RESULTS)]
    if len(results) >= current_app.config.get("SEARCH_LOCAL_THRESHOLD", 5):
        return results

    try:
        docs = book_sources.open_library_search(query, limit=MAX_RESULTS)
    except UpstreamServiceError as exc:
        logger.warning("Open Library search failed for %r: %s", query, exc)
        return results

    seen = {b["id"] for b in results}
    for doc in docs:
        if len(results) >= MAX_RESULTS:
            break
        book = _import_remote(doc)
        if book and book["id"] not in seen:
            results.append(book)
            seen.add(book["id"])
    return results[:MAX_RESULTS]
