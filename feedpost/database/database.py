"""
Database facade - provides unified access to all repositories.

Services use the repositories directly (db.feeds, db.articles, db.posts,
db.app_params); the delegating methods cover the common feed operations.
"""

from datetime import datetime
from pathlib import Path

from .connection import DatabaseConnection
from .app_params_repository import AppParamsRepository
from .article_repository import ArticleRepository
from .feed_repository import FeedRepository
from .post_repository import PostRepository
from .models import DBFeed


class Database:
    """Unified database access facade."""

    def __init__(self, db_path: Path):
        self._connection = DatabaseConnection(db_path)

        # Initialize repositories
        self.feeds = FeedRepository(self._connection)
        self.articles = ArticleRepository(self._connection)
        self.posts = PostRepository(self._connection)
        self.app_params = AppParamsRepository(self._connection)

    @property
    def db_path(self) -> Path:
        return self._connection.db_path

    # ─────────────────────────────────────────────────────────────
    # Feed operations (delegated to FeedRepository)
    # ─────────────────────────────────────────────────────────────

    def add_feed(self, owner_key: str, url: str, title: str | None = None) -> int | None:
        return self.feeds.add(owner_key, url, title)

    def get_feed(self, feed_id: int) -> DBFeed | None:
        return self.feeds.find_by_id(feed_id)

    def get_feeds_for_owner(self, owner_key: str) -> list[DBFeed]:
        return self.feeds.find_all_by_owner(owner_key)

    def mark_feed_fetched(self, feed_id: int, fetched_at: datetime, title: str | None = None):
        return self.feeds.update_by_id(feed_id, last_fetched_at=fetched_at, title=title)

    def delete_feed(self, feed_id: int):
        return self.feeds.delete(feed_id)

    # ─────────────────────────────────────────────────────────────
    # App params (delegated to AppParamsRepository)
    # ─────────────────────────────────────────────────────────────

    def get_app_param(self, key: str, default: str | None = None) -> str | None:
        return self.app_params.get(key, default)

    def set_app_param(self, key: str, value):
        return self.app_params.set(key, value)
