"""
Posts service: listing and retention for ingested articles.

Handles:
- Cursor-paginated listing of recent articles with their posts
- Cleanup of articles (and posts) older than the time window
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ..database import Database
from ..database.models import DBArticleWithPost
from ..exceptions import InvalidCursorError
from ..operational_params import resolve_window_days
from .refresh_service import ensure_aware

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50
CURSOR_SEPARATOR = "::"


@dataclass
class CleanupResult:
    removed_articles: int
    removed_posts: int


@dataclass
class ArticlePage:
    items: list[DBArticleWithPost]
    next_cursor: str | None
    limit: int


def encode_cursor(published_at: datetime, article_id: int) -> str:
    payload = f"{ensure_aware(published_at).astimezone(timezone.utc).isoformat()}{CURSOR_SEPARATOR}{article_id}"
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple[datetime, int]:
    """
    Decode an opaque page cursor into (published_at, article_id).

    Raises:
        InvalidCursorError: The cursor is not one produced by encode_cursor()
    """
    try:
        decoded = base64.b64decode(cursor.encode("ascii"), validate=True).decode("utf-8")
        iso_string, _, id_part = decoded.partition(CURSOR_SEPARATOR)
        if not iso_string or not id_part:
            raise ValueError("Invalid cursor payload")
        published_at = ensure_aware(datetime.fromisoformat(iso_string))
        article_id = int(id_part)
    except (binascii.Error, UnicodeError, ValueError, AttributeError) as e:
        raise InvalidCursorError() from e

    if article_id <= 0:
        raise InvalidCursorError()
    return published_at, article_id


def clamp_page_size(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_PAGE_SIZE
    return min(max(int(limit), 1), MAX_PAGE_SIZE)


class PostsService:
    """Service for article listing and cleanup."""

    def __init__(self, db: Database):
        self.db = db

    def list_recent_articles(
        self,
        owner_key: str,
        cursor: str | None = None,
        limit: int | None = None,
        feed_id: int | None = None,
        now: datetime | None = None,
        window_days: int | None = None,
    ) -> ArticlePage:
        """
        List an owner's articles within the time window, newest first.

        Raises:
            ValueError: owner_key is empty
            InvalidCursorError: cursor cannot be decoded
        """
        if not owner_key:
            raise ValueError("owner_key is required")

        current_time = ensure_aware(now)
        window_start = current_time - _window(self.db, window_days)
        page_size = clamp_page_size(limit)
        cursor_filter = decode_cursor(cursor) if cursor else None

        rows = self.db.articles.find_recent_for_owner(
            owner_key,
            window_start=window_start,
            limit=page_size + 1,
            cursor=cursor_filter,
            feed_id=feed_id,
            until=current_time,
        )

        has_more = len(rows) > page_size
        items = rows[:page_size]
        next_cursor = None
        if has_more and items:
            last = items[-1].article
            next_cursor = encode_cursor(last.published_at, last.id)

        return ArticlePage(items=items, next_cursor=next_cursor, limit=page_size)

    def cleanup_old_articles(
        self,
        owner_key: str,
        now: datetime | None = None,
        window_days: int | None = None,
    ) -> CleanupResult:
        """Delete an owner's articles published before the window start, posts first."""
        if not owner_key:
            raise ValueError("owner_key is required")

        threshold = ensure_aware(now) - _window(self.db, window_days)
        article_ids = self.db.articles.find_ids_for_cleanup(owner_key, threshold)
        if not article_ids:
            return CleanupResult(removed_articles=0, removed_posts=0)

        removed_posts = self.db.posts.delete_many_by_article_ids(article_ids)
        removed_articles = self.db.articles.delete_many_by_ids(article_ids)
        logger.info(
            f"Cleanup for owner {owner_key}: removed {removed_articles} articles, {removed_posts} posts"
        )
        return CleanupResult(removed_articles=removed_articles, removed_posts=removed_posts)


def _window(db: Database, window_days: int | None) -> timedelta:
    return timedelta(days=resolve_window_days(db, window_days))
