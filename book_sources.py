"""HTTP clients for the public book-metadata and video APIs.

Google Books, Open Library, Wikipedia and YouTube Data. Every call raises
UpstreamServiceError on network failure or a non-2xx status so callers can
decide whether to fall through to the next source.
"""

from __future__ import annotations

import logging

import requests
from flask import current_app

from errors import UpstreamServiceError

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
OPEN_LIBRARY_URL = "https://openlibrary.org"
OPEN_LIBRARY_COVER_URL = "https://covers.openlibrary.org/b/id/{cover_id}-L.jpg"
WIKIPEDIA_API_URL = "https://en.wikipedia.org/w/api.php"
YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"

HEADERS = {
    "User-Agent": "StoryQuiz/1.0 (children's reading quizzes)",
    "Accept": "application/json",
}


class SourceNotFound(UpstreamServiceError):
    """The upstream answered 404."""

    retryable = False


def _get_json(url: str, params: dict | None = None) -> dict:
    timeout = current_app.config.get("HTTP_TIMEOUT", 10)
    try:
        resp = requests.get(url, params=params, headers=HEADERS, timeout=timeout)
    except requests.RequestException as exc:
        raise UpstreamServiceError(f"Request to {url} failed: {exc}") from exc
    if resp.status_code == 404:
        raise SourceNotFound(f"Not found: {url}")
    if resp.status_code != 200:
        raise UpstreamServiceError(f"{url} returned HTTP {resp.status_code}")
    try:
        return resp.json()
    except ValueError as exc:
        raise UpstreamServiceError(f"{url} returned invalid JSON") from exc


# ── Google Books ────────────────────────────────────────────

def google_books_search(query: str, max_results: int = 5) -> list[dict]:
    """Return the volumeInfo dicts of the top matches."""
    data = _get_json(GOOGLE_BOOKS_URL, {"q": query, "maxResults": max_results})
    return [item.get("volumeInfo") or {} for item in data.get("items") or []]


# ── Open Library ────────────────────────────────────────────

def open_library_record(open_library_id: str) -> dict:
    """Fetch a work record, retrying as an edition when the /works/ lookup fails."""
    try:
        return _get_json(f"{OPEN_LIBRARY_URL}{open_library_id}.json")
    except UpstreamServiceError:
        if "/works/" not in open_library_id:
            raise
        alt = open_library_id.replace("/works/", "/books/")
        logger.info("Open Library work lookup failed, trying %s", alt)
        return _get_json(f"{OPEN_LIBRARY_URL}{alt}.json")


def open_library_search(query: str, limit: int = 10) -> list[dict]:
    data = _get_json(
        f"{OPEN_LIBRARY_URL}/search.json",
        {"q": query, "limit": limit, "fields": "key,title,author_name,cover_i,first_publish_year,isbn"},
    )
    return data.get("docs") or []


def open_library_cover_url(cover_id: int | str | None) -> str:
    return OPEN_LIBRARY_COVER_URL.format(cover_id=cover_id) if cover_id else ""


# ── Wikipedia ───────────────────────────────────────────────

def wikipedia_intro(query: str) -> str:
    """Return the plain-text intro of the page titled `query`, or '' when missing."""
    data = _get_json(WIKIPEDIA_API_URL, {
        "action": "query",
        "format": "json",
        "prop": "extracts",
        "exintro": "true",
        "explaintext": "true",
        "titles": query,
    })
    pages = (data.get("query") or {}).get("pages") or {}
    for page in pages.values():
        if page.get("pageid", -1) != -1 and page.get("extract"):
            return page["extract"]
    return ""


# ── YouTube ─────────────────────────────────────────────────

def youtube_search(query: str, api_key: str, max_results: int = 3) -> list[dict]:
    """Strict safe-search video lookup. Returns the raw search items."""
    data = _get_json(YOUTUBE_SEARCH_URL, {
        "part": "snippet",
        "q": query,
        "type": "video",
        "safeSearch": "strict",
        "maxResults": max_results,
        "key": api_key,
    })
    return data.get("items") or []
