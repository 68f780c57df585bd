"""
Refresh service: fetch and ingest every feed of one owner.

Per feed:
- Skip network work while the cooldown since last_fetched_at is running
- fetch -> parse -> prepare items -> sort by publish time -> window filter
  -> persist
- Record failures in the feed's summary without touching other feeds
- Always advance last_fetched_at once the feed was attempted

Concurrent refreshes for the same owner share one in-flight run.
"""

import asyncio
import logging
import math
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from ..config import Config, RssConfig
from ..database import Database
from ..database.models import DBFeed
from ..dedupe import ChangeThresholds
from ..diagnostics import IngestionDiagnostics
from ..exceptions import FeedFetchError
from ..feed_parser import extract_items, parse_feed
from ..metrics import RssMetrics
from ..operational_params import OperationalParams, resolve_operational_params
from .ingestion_service import IngestionCandidate, ItemProcessor, persist_candidates

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNEXPECTED_FEED_ERROR = "Failed to process feed"


class FetcherLike(Protocol):
    async def fetch(self, url: str, timeout_ms: int | None = None) -> str: ...


@dataclass
class FeedRefreshSummary:
    feed_id: int
    feed_url: str
    feed_title: str | None = None
    skipped_by_cooldown: bool = False
    cooldown_seconds_remaining: int = 0
    items_read: int = 0
    items_within_window: int = 0
    articles_created: int = 0
    articles_updated: int = 0
    duplicates: int = 0
    invalid_items: int = 0
    error: dict[str, str] | None = None

    @classmethod
    def for_feed(cls, feed: DBFeed) -> "FeedRefreshSummary":
        return cls(feed_id=feed.id, feed_url=feed.url, feed_title=feed.title)


@dataclass
class RefreshResult:
    now: datetime
    feeds: list[FeedRefreshSummary] = field(default_factory=list)


class RefreshLocks:
    """
    Owner key -> in-flight refresh task.

    A caller that finds a run in flight awaits that run instead of
    starting a new one; the entry is dropped when the run finishes.
    """

    def __init__(self):
        self._inflight: dict[str, asyncio.Future] = {}

    def is_running(self, owner_key: str) -> bool:
        return str(owner_key) in self._inflight

    def active_count(self) -> int:
        return len(self._inflight)

    async def run(self, owner_key: str, factory: Callable[[], Awaitable[T]]) -> T:
        key = str(owner_key)
        existing = self._inflight.get(key)
        if existing is not None:
            logger.debug(f"Joining in-flight refresh for owner {key}")
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(factory())
        self._inflight[key] = task
        task.add_done_callback(lambda done: self._release(key, done))
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]


def ensure_aware(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def cooldown_seconds_remaining(
    last_fetched_at: datetime | None,
    now: datetime,
    cooldown: timedelta,
) -> int:
    """Whole seconds left in the cooldown (rounded up), 0 when refresh is allowed."""
    if last_fetched_at is None:
        return 0
    elapsed = now - ensure_aware(last_fetched_at)
    if elapsed >= cooldown:
        return 0
    return max(1, math.ceil((cooldown - elapsed).total_seconds()))


def filter_within_window(
    candidates: list[IngestionCandidate],
    window_start: datetime,
    now: datetime,
) -> list[IngestionCandidate]:
    return [c for c in candidates if window_start <= c.published_at <= now]


class RefreshService:
    """Service for refreshing an owner's feeds."""

    def __init__(
        self,
        db: Database,
        fetcher: FetcherLike | None = None,
        rss: RssConfig | None = None,
        metrics: RssMetrics | None = None,
        diagnostics: IngestionDiagnostics | None = None,
        locks: RefreshLocks | None = None,
        thresholds: ChangeThresholds | None = None,
    ):
        self.db = db
        self.fetcher = fetcher
        self.rss = rss or RssConfig()
        self.metrics = metrics
        self.diagnostics = diagnostics
        self.locks = locks or RefreshLocks()
        self.thresholds = thresholds

    async def refresh_owner_feeds(
        self,
        owner_key: str,
        now: datetime | None = None,
        fetcher: FetcherLike | None = None,
        timeout_ms: int | None = None,
        cooldown_seconds: int | None = None,
        window_days: int | None = None,
    ) -> RefreshResult:
        """
        Refresh every feed registered by an owner.

        Args:
            owner_key: Feed owner
            now: Reference time (defaults to the current UTC time)
            fetcher: Fetcher to use instead of the shared cached one
            timeout_ms: Per-fetch timeout
            cooldown_seconds: Override for the cooldown parameter
            window_days: Override for the time window parameter

        Returns:
            RefreshResult with one summary per feed

        Raises:
            ValueError: owner_key is empty
        """
        if not owner_key:
            raise ValueError("owner_key is required")

        return await self.locks.run(
            owner_key,
            lambda: self._perform_refresh(
                owner_key,
                now=ensure_aware(now),
                fetcher=fetcher,
                timeout_ms=timeout_ms or Config.FETCH_TIMEOUT_MS,
                params=resolve_operational_params(self.db, cooldown_seconds, window_days),
            ),
        )

    async def _perform_refresh(
        self,
        owner_key: str,
        now: datetime,
        fetcher: FetcherLike | None,
        timeout_ms: int,
        params: OperationalParams,
    ) -> RefreshResult:
        active_fetcher = fetcher or self.fetcher
        if active_fetcher is None:
            raise RuntimeError("No feed fetcher configured")

        result = RefreshResult(now=now)
        feeds = self.db.feeds.find_all_by_owner(owner_key)
        logger.info(f"Refreshing {len(feeds)} feeds for owner {owner_key}")

        for feed in feeds:
            summary = await self.refresh_feed(feed, active_fetcher, now, timeout_ms, params)
            result.feeds.append(summary)

        return result

    async def refresh_feed(
        self,
        feed: DBFeed,
        fetcher: FetcherLike,
        now: datetime,
        timeout_ms: int,
        params: OperationalParams,
    ) -> FeedRefreshSummary:
        summary = FeedRefreshSummary.for_feed(feed)

        remaining = cooldown_seconds_remaining(feed.last_fetched_at, now, params.cooldown)
        if remaining:
            summary.skipped_by_cooldown = True
            summary.cooldown_seconds_remaining = remaining
            return summary

        try:
            body = await fetcher.fetch(feed.url, timeout_ms)
            raw_items = extract_items(parse_feed(body))
            summary.items_read = len(raw_items)
            if self.metrics:
                self.metrics.increment_items_total(len(raw_items))

            candidates, summary.invalid_items = self._prepare_candidates(raw_items, feed)
            candidates.sort(key=lambda candidate: candidate.published_at)

            within_window = filter_within_window(candidates, now - params.window, now)
            summary.items_within_window = len(within_window)

            if within_window:
                outcome = persist_candidates(
                    self.db,
                    feed,
                    within_window,
                    policy=self.rss.reprocess_policy,
                    metrics=self.metrics,
                    diagnostics=self.diagnostics,
                    thresholds=self.thresholds,
                )
                summary.articles_created = outcome.created
                summary.articles_updated = outcome.updated
                summary.duplicates = outcome.duplicates
        except FeedFetchError as e:
            summary.error = {"message": str(e)}
            logger.error(f"Failed to refresh feed {feed.id} ({feed.url}): {e}")
        except sqlite3.Error:
            raise
        except Exception as e:
            summary.error = {"message": f"{UNEXPECTED_FEED_ERROR}: {e}"}
            logger.exception(f"Unexpected error refreshing feed {feed.id} ({feed.url})")
        finally:
            self.db.feeds.update_by_id(feed.id, last_fetched_at=now)

        return summary

    def _prepare_candidates(
        self,
        raw_items: list[Any],
        feed: DBFeed,
    ) -> tuple[list[IngestionCandidate], int]:
        processor = ItemProcessor(self.rss, self.metrics)
        candidates = []
        invalid = 0
        for raw_item in raw_items:
            try:
                candidate = processor.prepare(raw_item, feed_url=feed.url)
            except Exception as e:
                logger.warning(f"Dropping unreadable item in feed {feed.id}: {e!r}")
                if self.metrics:
                    self.metrics.increment_items_failed()
                candidate = None
            if candidate is None:
                invalid += 1
            else:
                candidates.append(candidate)
        return candidates, invalid
