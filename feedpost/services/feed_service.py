"""
Feed service: registration of feeds per owner.
"""

import logging
from urllib.parse import urlsplit

from fastapi import HTTPException

from ..database import Database
from ..database.models import DBFeed
from ..exceptions import require_feed

logger = logging.getLogger(__name__)


class FeedService:
    """Service for feed-related business logic."""

    def __init__(self, db: Database):
        self.db = db

    def list_feeds(self, owner_key: str) -> list[DBFeed]:
        return self.db.get_feeds_for_owner(owner_key)

    def register(self, owner_key: str, url: str, title: str | None = None) -> DBFeed:
        """
        Register a feed URL for an owner.

        Raises:
            HTTPException: 400 for a non-HTTP(S) URL, 409 when already registered
        """
        url = url.strip()
        parts = urlsplit(url)
        if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
            raise HTTPException(status_code=400, detail="Feed URL must be an http(s) URL")

        feed_id = self.db.add_feed(owner_key, url, title)
        if feed_id is None:
            raise HTTPException(status_code=409, detail="Feed already registered")

        logger.info(f"Registered feed {feed_id} for owner {owner_key}: {url}")
        return require_feed(self.db.get_feed(feed_id))

    def get_owned_feed(self, owner_key: str, feed_id: int) -> DBFeed:
        feed = require_feed(self.db.get_feed(feed_id))
        if feed.owner_key != owner_key:
            # Other owners' feeds are reported as missing
            raise HTTPException(status_code=404, detail="Feed not found")
        return feed

    def delete(self, owner_key: str, feed_id: int) -> None:
        feed = self.get_owned_feed(owner_key, feed_id)
        self.db.delete_feed(feed.id)
        logger.info(f"Deleted feed {feed.id} for owner {owner_key}")
