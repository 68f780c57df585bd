"""
Feed Fetcher - retrieve raw feed XML over HTTP.

Handles:
- HTTP GET with feed-oriented Accept header and a fixed user agent
- Cancellable timeout around the whole request
- Typed failures (timeout, non-2xx, non-text body)
- Optional per-URL caching that shares in-flight fetches
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import aiohttp

from .cache import MemoryCache
from .exceptions import (
    FeedFetchError,
    FeedFetchHttpError,
    FeedRequestTimedOut,
    InvalidFeedResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_MS = 5000
USER_AGENT = "feedpost-bot/1.0"
FEED_ACCEPT_HEADER = (
    "application/rss+xml, application/atom+xml, application/xml;q=0.9, "
    "text/xml;q=0.8, */*;q=0.1"
)

# Content types that can never hold feed markup
BINARY_CONTENT_PREFIXES = ("image/", "audio/", "video/", "font/")
BINARY_CONTENT_TYPES = {
    "application/octet-stream",
    "application/pdf",
    "application/zip",
    "application/gzip",
}


@dataclass
class FeedResponse:
    """What a transport hands back for one GET."""
    status: int
    body: str | bytes | None
    content_type: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


Transport = Callable[[str, dict[str, str]], Awaitable[FeedResponse]]


def _is_binary_content_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime in BINARY_CONTENT_TYPES or mime.startswith(BINARY_CONTENT_PREFIXES)


async def aiohttp_transport(url: str, headers: dict[str, str]) -> FeedResponse:
    """Default transport: one aiohttp session per request."""
    async with aiohttp.ClientSession(headers=headers) as session:
        async with session.get(url, allow_redirects=True) as resp:
            content_type = resp.headers.get("Content-Type")
            if resp.status < 200 or resp.status >= 300:
                return FeedResponse(status=resp.status, body=None, content_type=content_type)
            if _is_binary_content_type(content_type):
                return FeedResponse(status=resp.status, body=await resp.read(), content_type=content_type)
            try:
                body = await resp.text()
            except UnicodeDecodeError:
                body = await resp.read()
            return FeedResponse(status=resp.status, body=body, content_type=content_type)


class FeedFetcher:
    """Fetches raw feed documents."""

    def __init__(
        self,
        timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS,
        user_agent: str = USER_AGENT,
        transport: Transport | None = None,
    ):
        self.timeout_ms = timeout_ms
        self.headers = {
            "Accept": FEED_ACCEPT_HEADER,
            "User-Agent": user_agent,
        }
        self._transport = transport or aiohttp_transport

    async def fetch(self, url: str, timeout_ms: int | None = None) -> str:
        """
        Fetch a feed document and return its text.

        Args:
            url: Feed URL
            timeout_ms: Overrides the fetcher's default timeout

        Returns:
            The response body as text

        Raises:
            FeedRequestTimedOut: The request did not finish within the timeout
            FeedFetchHttpError: The server answered with a non-2xx status
            InvalidFeedResponse: The body is not text
        """
        timeout = (timeout_ms or self.timeout_ms) / 1000

        try:
            response = await asyncio.wait_for(self._transport(url, dict(self.headers)), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Feed request timed out after {timeout:.1f}s: {url}")
            raise FeedRequestTimedOut()
        except aiohttp.ClientError as e:
            logger.warning(f"Feed request failed for {url}: {e}")
            raise FeedFetchError(f"Failed to fetch feed: {e}") from e

        if response is None:
            raise InvalidFeedResponse("Invalid response from feed fetcher")

        if not response.ok:
            raise FeedFetchHttpError(response.status)

        if not isinstance(response.body, str) or _is_binary_content_type(response.content_type):
            raise InvalidFeedResponse()

        return response.body


class CachedFeedFetcher:
    """
    Per-URL cache in front of a FeedFetcher.

    Concurrent fetches of the same URL share one in-flight task. Failed
    fetches are evicted right away so the next caller retries.
    """

    def __init__(self, fetcher: FeedFetcher, cache: MemoryCache):
        self.fetcher = fetcher
        self.cache = cache

    async def fetch(self, url: str, timeout_ms: int | None = None) -> str:
        cached = self.cache.get(url)
        if cached is not None:
            if isinstance(cached, asyncio.Future):
                return await asyncio.shield(cached)
            return cached

        task = asyncio.ensure_future(self.fetcher.fetch(url, timeout_ms))
        self.cache.set(url, task)

        try:
            body = await asyncio.shield(task)
        except Exception:
            if self.cache.get(url) is task:
                self.cache.delete(url)
            raise

        if self.cache.get(url) is task:
            self.cache.set(url, body)
        return body
