"""
Feed repository - registration and refresh state for feeds.
"""

import sqlite3
from datetime import datetime

from .connection import DatabaseConnection
from .converters import row_to_feed, to_db_timestamp
from .models import DBFeed


class FeedRepository:
    """Repository for feed operations."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def add(self, owner_key: str, url: str, title: str | None = None) -> int | None:
        """Register a feed for an owner. Returns feed ID or None if already registered."""
        with self._db.conn() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO feeds (owner_key, url, title) VALUES (?, ?, ?)",
                    (owner_key, url, title)
                )
                return cursor.lastrowid
            except sqlite3.IntegrityError:
                return None

    def find_all_by_owner(self, owner_key: str) -> list[DBFeed]:
        """Feeds of one owner in registration order."""
        with self._db.conn() as conn:
            rows = conn.execute(
                "SELECT * FROM feeds WHERE owner_key = ? ORDER BY id",
                (owner_key,)
            ).fetchall()
            return [row_to_feed(row) for row in rows]

    def find_by_id(self, feed_id: int) -> DBFeed | None:
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT * FROM feeds WHERE id = ?", (feed_id,)
            ).fetchone()
            return row_to_feed(row) if row else None

    def find_by_owner_and_url(self, owner_key: str, url: str) -> DBFeed | None:
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT * FROM feeds WHERE owner_key = ? AND url = ?",
                (owner_key, url)
            ).fetchone()
            return row_to_feed(row) if row else None

    def update_by_id(
        self,
        feed_id: int,
        last_fetched_at: datetime | None = None,
        title: str | None = None,
    ):
        """
        Update feed refresh state.

        last_fetched_at never moves backwards: an older timestamp than the
        stored one is ignored.
        """
        with self._db.conn() as conn:
            if last_fetched_at is not None:
                stamp = to_db_timestamp(last_fetched_at)
                conn.execute(
                    """UPDATE feeds SET last_fetched_at = ?
                       WHERE id = ? AND (last_fetched_at IS NULL OR last_fetched_at < ?)""",
                    (stamp, feed_id, stamp)
                )
            if title is not None:
                conn.execute("UPDATE feeds SET title = ? WHERE id = ?", (title, feed_id))

    def delete(self, feed_id: int):
        """Delete feed and its articles (posts cascade with them)."""
        with self._db.conn() as conn:
            conn.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
