"""
Error types for the ingestion pipeline plus HTTP helpers for routes.

Fetch and parse failures are captured per feed into the refresh summary,
so their messages are user visible and kept stable.
"""

from typing import TypeVar

from fastapi import HTTPException

T = TypeVar("T")


# ─────────────────────────────────────────────────────────────
# Feed fetch / parse errors
# ─────────────────────────────────────────────────────────────

class FeedFetchError(Exception):
    """Base class for failures while retrieving or parsing a feed."""

    message = "Failed to fetch feed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


class FeedRequestTimedOut(FeedFetchError):
    message = "Feed request timed out"


class FeedFetchHttpError(FeedFetchError):
    """Non-2xx response from the feed server."""

    def __init__(self, status: int):
        self.status = status
        super().__init__(f"Failed to fetch feed: HTTP {status}")


class InvalidFeedResponse(FeedFetchError):
    message = "Feed response was not text"


class FeedXmlParseError(FeedFetchError):
    message = "Failed to parse feed XML"


# ─────────────────────────────────────────────────────────────
# Listing errors
# ─────────────────────────────────────────────────────────────

class InvalidCursorError(ValueError):
    """Raised when a pagination cursor cannot be decoded."""

    code = "INVALID_CURSOR"

    def __init__(self, message: str = "Invalid pagination cursor"):
        super().__init__(message)


# ─────────────────────────────────────────────────────────────
# HTTP helpers
# ─────────────────────────────────────────────────────────────

def require_resource(resource: T | None, detail: str = "Resource not found") -> T:
    """
    Raise 404 if resource is None, otherwise return the resource.

    Usage:
        feed = require_resource(db.get_feed(id), "Feed not found")
    """
    if resource is None:
        raise HTTPException(status_code=404, detail=detail)
    return resource


def require_feed(feed: T | None) -> T:
    """Raise 404 if feed is None."""
    return require_resource(feed, "Feed not found")
