"""Read-aloud video lookup for a book, cached per book for MEDIA_CACHE_DAYS."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta

from flask import current_app

import book_sources
from db_stores import BookStoreDB, VideoCacheDB
from errors import BookNotFoundError, UpstreamServiceError

logger = logging.getLogger(__name__)

QUERY_TEMPLATES = (
    "{title} read aloud for kids",
    "{title} story for children",
    "{title} book for kids",
)

NO_VIDEO = {"hasVideo": False}


def _video_response(video_id: str, title: str, channel_title: str) -> dict:
    return {"hasVideo": True, "videoId": video_id, "title": title, "channelTitle": channel_title}


def _is_fresh(fetched_at: str, max_age_days: int) -> bool:
    try:
        return datetime.now() - datetime.fromisoformat(fetched_at) < timedelta(days=max_age_days)
    except ValueError:
        return False


def get_book_media(book_id: str) -> dict:
    book = BookStoreDB.get(book_id)
    if not book:
        raise BookNotFoundError(book_id)

    cached = VideoCacheDB.get(book_id)
    if cached and _is_fresh(cached["fetched_at"], current_app.config.get("MEDIA_CACHE_DAYS", 7)):
        return _video_response(cached["video_id"], cached["title"], cached["channel_title"])

    api_key = current_app.config.get("YOUTUBE_API_KEY", "")
    if not api_key:
        return dict(NO_VIDEO)

    best = None
    for template in QUERY_TEMPLATES:
        try:
            items = book_sources.youtube_search(template.format(title=book["title"]), api_key, max_results=3)
        except UpstreamServiceError as exc:
            logger.warning("YouTube search failed for %r: %s", book["title"], exc)
            continue
        if items:
            best = items[0]
            break

    if not best:
        return dict(NO_VIDEO)

    snippet = best.get("snippet") or {}
    video_id = (best.get("id") or {}).get("videoId", "")
    if not video_id:
        return dict(NO_VIDEO)
    title = snippet.get("title", "")
    channel = snippet.get("channelTitle", "")
    thumbnail = ((snippet.get("thumbnails") or {}).get("medium") or {}).get("url", "")
    try:
        VideoCacheDB.upsert(book_id, video_id, title, channel, thumbnail)
    except sqlite3.Error:
        logger.warning("Failed to cache video for %s", book_id, exc_info=True)
    return _video_response(video_id, title, channel)
