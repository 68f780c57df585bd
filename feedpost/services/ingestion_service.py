"""
Ingestion service: turn raw feed items into stored articles.

Handles:
- Item validity (publish date, title/snippet) and field cleanup
- normalize -> select -> assemble per item, degrading to a title+link
  article when any step fails
- Dedupe against stored articles and the reprocess policy
- Per-item metrics and diagnostics snapshots
"""

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime

from ..assembler import AssemblerOptions, assemble_article, build_fallback_html
from ..config import RssConfig
from ..database import Database
from ..database.models import DBFeed, ExistingArticleKey
from ..dedupe import ChangeThresholds, compute_dedupe_key, should_update_existing
from ..diagnostics import IngestionDiagnosticEntry, IngestionDiagnostics
from ..feed_parser import RawItem
from ..html_diagnostics import build_preview, compute_weak_content, has_block_tags, looks_escaped_html
from ..metrics import RssMetrics
from ..normalizer import (
    NormalizedFeedItem,
    extract_first_text,
    extract_title,
    normalize_item,
    resolve_published_at,
)
from ..rss_logger import rss_logger
from ..selector import SOURCE_EMPTY, select_body_and_lead
from ..text_utils import clean_text, truncate_text

logger = logging.getLogger(__name__)

MAX_ARTICLE_TITLE_LENGTH = 200
MAX_ARTICLE_CONTENT_LENGTH = 800
DEFAULT_TITLE = "Untitled"
DEFAULT_SNIPPET = "No description available."

SNIPPET_FIELDS = ("description", "summary", "content:encoded", "content")


@dataclass
class IngestionCandidate:
    """One valid feed item, ready for dedupe and persistence."""
    title: str
    content_snippet: str
    published_at: datetime
    guid: str | None
    link: str | None
    article_html: str
    excerpt: str = ""
    main_image_url: str | None = None
    chosen_source: str = SOURCE_EMPTY
    raw_description_length: int = 0
    body_html_raw_length: int = 0
    looks_escaped: bool = False
    fallback_used: bool = False

    @property
    def dedupe_key(self) -> str:
        return compute_dedupe_key(
            self.guid, self.link, self.title, self.content_snippet, self.published_at
        )


@dataclass
class PersistOutcome:
    created: int = 0
    updated: int = 0
    duplicates: int = 0
    article_ids: list[int] = field(default_factory=list)


# ─────────────────────────────────────────────────────────────
# Item preparation
# ─────────────────────────────────────────────────────────────

def clean_title(raw_item: RawItem) -> str:
    title = extract_title(raw_item)
    return truncate_text(title, MAX_ARTICLE_TITLE_LENGTH) if title else ""


def build_content_snippet(raw_item: RawItem) -> str:
    """Plain text of the first non-empty description-like field."""
    for key in SNIPPET_FIELDS:
        text = clean_text(extract_first_text(raw_item.get(key)))
        if text:
            return truncate_text(text, MAX_ARTICLE_CONTENT_LENGTH)
    return ""


def _identifier(value) -> str | None:
    text = extract_first_text(value)
    if not isinstance(text, str):
        return None
    return text.strip() or None


class ItemProcessor:
    """Runs the per-item pipeline for one feed."""

    def __init__(
        self,
        rss: RssConfig,
        metrics: RssMetrics | None = None,
    ):
        self.rss = rss
        self.options = AssemblerOptions.from_config(rss)
        self.metrics = metrics

    def prepare(self, raw_item: RawItem, feed_url: str | None = None) -> IngestionCandidate | None:
        """
        Build a candidate from a raw item.

        Returns:
            IngestionCandidate, or None when the item is invalid (no
            resolvable publish date, or neither title nor snippet)
        """
        if not isinstance(raw_item, dict):
            return None

        published_at = resolve_published_at(raw_item)
        if published_at is None:
            return None

        title = clean_title(raw_item)
        snippet = build_content_snippet(raw_item)
        if not snippet and title:
            snippet = truncate_text(title, MAX_ARTICLE_CONTENT_LENGTH)
        if not title and not snippet:
            return None

        title = title or DEFAULT_TITLE
        snippet = snippet or DEFAULT_SNIPPET
        started = time.perf_counter()

        try:
            candidate = self._assemble(raw_item, feed_url, title, snippet, published_at)
        except Exception as e:
            if self.metrics:
                self.metrics.increment_items_failed()
            rss_logger.warning(f"Falling back to minimal article (feed={feed_url}, title={title!r}): {e}")
            link = _identifier(raw_item.get("link"))
            candidate = IngestionCandidate(
                title=title,
                content_snippet=snippet,
                published_at=published_at,
                guid=_identifier(raw_item.get("guid")),
                link=link,
                article_html=build_fallback_html(title, link),
                fallback_used=True,
            )

        if self.metrics:
            self.metrics.observe_item_duration((time.perf_counter() - started) * 1000)
        return candidate

    def _assemble(
        self,
        raw_item: RawItem,
        feed_url: str | None,
        title: str,
        snippet: str,
        published_at: datetime,
    ) -> IngestionCandidate:
        normalized: NormalizedFeedItem = normalize_item(raw_item, feed_url=feed_url)
        normalized.title = normalized.title or title

        selection = select_body_and_lead(normalized)
        assembly = assemble_article(normalized, selection, self.options)

        if self.metrics:
            diagnostics = assembly.diagnostics
            self.metrics.record_chosen_source(selection.chosen_source)
            self.metrics.record_lead_used(selection.lead_used)
            self.metrics.record_image_source(diagnostics.image_source)
            self.metrics.record_truncated(diagnostics.truncated)
            self.metrics.add_removed_embeds(diagnostics.removed_embeds)
            self.metrics.add_tracker_params_removed(diagnostics.tracker_params_removed)

        rss_logger.debug(
            f"Assembled item {normalized.guid or normalized.canonical_url}: "
            f"source={selection.chosen_source} reasons={selection.diagnostics.reasons} "
            f"image={assembly.diagnostics.image_source} truncated={assembly.diagnostics.truncated}"
        )

        description = normalized.raw_html_candidates.description_or_summary or ""
        return IngestionCandidate(
            title=title,
            content_snippet=snippet,
            published_at=published_at,
            guid=normalized.guid,
            link=normalized.canonical_url,
            article_html=assembly.article_html,
            excerpt=assembly.excerpt,
            main_image_url=assembly.main_image_url,
            chosen_source=selection.chosen_source,
            raw_description_length=len(description),
            body_html_raw_length=len(selection.body_html),
            looks_escaped=looks_escaped_html(selection.body_html or description),
        )


# ─────────────────────────────────────────────────────────────
# Persistence
# ─────────────────────────────────────────────────────────────

def build_diagnostic_entry(
    article_id: int,
    feed: DBFeed,
    candidate: IngestionCandidate,
) -> IngestionDiagnosticEntry:
    return IngestionDiagnosticEntry(
        article_id=article_id,
        feed_id=feed.id,
        feed_title=feed.title,
        item_title=candidate.title,
        canonical_url=candidate.link,
        published_at=candidate.published_at,
        chosen_source=candidate.chosen_source,
        raw_description_length=candidate.raw_description_length,
        body_html_raw_length=candidate.body_html_raw_length,
        article_html_length=len(candidate.article_html),
        has_block_tags=has_block_tags(candidate.article_html),
        looks_escaped_html=candidate.looks_escaped,
        weak_content=compute_weak_content(candidate.article_html).weak,
        article_html_preview=build_preview(candidate.article_html),
        excerpt=candidate.excerpt,
        main_image_url=candidate.main_image_url,
    )


def persist_candidates(
    db: Database,
    feed: DBFeed,
    candidates: list[IngestionCandidate],
    policy: str,
    metrics: RssMetrics | None = None,
    diagnostics: IngestionDiagnostics | None = None,
    thresholds: ChangeThresholds | None = None,
) -> PersistOutcome:
    """
    Create, update or skip each candidate against the feed's stored articles.

    A uniqueness violation on insert (another refresh won the race) counts
    as a duplicate.
    """
    outcome = PersistOutcome()
    if not candidates:
        return outcome

    keys = [candidate.dedupe_key for candidate in candidates]
    existing: dict[str, ExistingArticleKey] = {
        entry.dedupe_key: entry
        for entry in db.articles.find_existing_dedupe_keys(feed.id, keys)
    }

    for candidate, key in zip(candidates, keys):
        if metrics:
            metrics.increment_items_processed()

        stored = existing.get(key)
        if stored is not None:
            if should_update_existing(policy, stored.article_html, candidate.article_html, thresholds):
                db.articles.update_article_html_by_id(stored.id, candidate.article_html)
                stored.article_html = candidate.article_html
                outcome.updated += 1
                outcome.article_ids.append(stored.id)
                if diagnostics:
                    diagnostics.record(build_diagnostic_entry(stored.id, feed, candidate))
            else:
                outcome.duplicates += 1
                if metrics:
                    metrics.increment_items_skipped(policy)
            continue

        try:
            article_id = db.articles.create(
                feed_id=feed.id,
                title=candidate.title,
                content_snippet=candidate.content_snippet,
                published_at=candidate.published_at,
                dedupe_key=key,
                article_html=candidate.article_html,
                guid=candidate.guid,
                link=candidate.link,
            )
        except sqlite3.IntegrityError:
            logger.info(f"Article {key} for feed {feed.id} was created concurrently")
            outcome.duplicates += 1
            if metrics:
                metrics.increment_items_skipped(policy)
            continue

        db.posts.create(article_id)
        existing[key] = ExistingArticleKey(id=article_id, dedupe_key=key, article_html=candidate.article_html)
        outcome.created += 1
        outcome.article_ids.append(article_id)
        if diagnostics:
            diagnostics.record(build_diagnostic_entry(article_id, feed, candidate))

    return outcome
