"""
Pydantic models for API request/response validation.

Responses are serialized with camelCase keys; models are built with
snake_case names.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .database import DBArticleWithPost, DBFeed, DBPost
from .diagnostics import IngestionDiagnosticEntry
from .services.posts_service import ArticlePage, CleanupResult
from .services.refresh_service import FeedRefreshSummary, RefreshResult


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─────────────────────────────────────────────────────────────
# Feed Schemas
# ─────────────────────────────────────────────────────────────

class FeedResponse(CamelModel):
    """Registered feed."""
    id: int
    url: str
    title: str | None
    last_fetched_at: str | None

    @classmethod
    def from_db(cls, feed: DBFeed) -> "FeedResponse":
        return cls(
            id=feed.id,
            url=feed.url,
            title=feed.title,
            last_fetched_at=_iso(feed.last_fetched_at),
        )


class AddFeedRequest(BaseModel):
    """Request to register a feed."""
    url: str
    title: str | None = None


# ─────────────────────────────────────────────────────────────
# Refresh Schemas
# ─────────────────────────────────────────────────────────────

class FeedRefreshError(BaseModel):
    message: str


class FeedRefreshSummaryResponse(CamelModel):
    """Outcome of refreshing one feed."""
    feed_id: int
    feed_url: str
    feed_title: str | None
    skipped_by_cooldown: bool
    cooldown_seconds_remaining: int
    items_read: int
    items_within_window: int
    articles_created: int
    articles_updated: int
    duplicates: int
    invalid_items: int
    error: FeedRefreshError | None = None

    @classmethod
    def from_summary(cls, summary: FeedRefreshSummary) -> "FeedRefreshSummaryResponse":
        return cls(
            feed_id=summary.feed_id,
            feed_url=summary.feed_url,
            feed_title=summary.feed_title,
            skipped_by_cooldown=summary.skipped_by_cooldown,
            cooldown_seconds_remaining=summary.cooldown_seconds_remaining,
            items_read=summary.items_read,
            items_within_window=summary.items_within_window,
            articles_created=summary.articles_created,
            articles_updated=summary.articles_updated,
            duplicates=summary.duplicates,
            invalid_items=summary.invalid_items,
            error=FeedRefreshError(**summary.error) if summary.error else None,
        )


class RefreshResponse(CamelModel):
    now: str
    feeds: list[FeedRefreshSummaryResponse]

    @classmethod
    def from_result(cls, result: RefreshResult) -> "RefreshResponse":
        return cls(
            now=result.now.isoformat(),
            feeds=[FeedRefreshSummaryResponse.from_summary(s) for s in result.feeds],
        )


class CleanupResponse(CamelModel):
    removed_articles: int
    removed_posts: int

    @classmethod
    def from_result(cls, result: CleanupResult) -> "CleanupResponse":
        return cls(removed_articles=result.removed_articles, removed_posts=result.removed_posts)


# ─────────────────────────────────────────────────────────────
# Article / Post Schemas
# ─────────────────────────────────────────────────────────────

class PostResponse(CamelModel):
    id: int
    content: str | None
    status: str
    attempt_count: int
    error_reason: str | None = None
    model_used: str | None = None
    tokens_input: int | None = None
    tokens_output: int | None = None
    generated_at: str | None = None

    @classmethod
    def from_db(cls, post: DBPost) -> "PostResponse":
        return cls(
            id=post.id,
            content=post.content,
            status=post.status,
            attempt_count=post.attempt_count,
            error_reason=post.error_reason,
            model_used=post.model_used,
            tokens_input=post.tokens_input,
            tokens_output=post.tokens_output,
            generated_at=_iso(post.generated_at),
        )


class ArticleFeedRef(CamelModel):
    id: int
    title: str | None


class ArticleResponse(CamelModel):
    """Article with its post for the listing."""
    id: int
    title: str
    content_snippet: str
    article_html: str | None
    published_at: str
    link: str | None
    feed: ArticleFeedRef
    post: PostResponse | None

    @classmethod
    def from_db(cls, row: DBArticleWithPost) -> "ArticleResponse":
        article = row.article
        return cls(
            id=article.id,
            title=article.title,
            content_snippet=article.content_snippet,
            article_html=article.article_html,
            published_at=article.published_at.isoformat(),
            link=article.link,
            feed=ArticleFeedRef(id=article.feed_id, title=row.feed_title),
            post=PostResponse.from_db(row.post) if row.post else None,
        )


class PageMeta(CamelModel):
    next_cursor: str | None
    limit: int


class ArticleListResponse(CamelModel):
    items: list[ArticleResponse]
    meta: PageMeta

    @classmethod
    def from_page(cls, page: ArticlePage) -> "ArticleListResponse":
        return cls(
            items=[ArticleResponse.from_db(row) for row in page.items],
            meta=PageMeta(next_cursor=page.next_cursor, limit=page.limit),
        )


# ─────────────────────────────────────────────────────────────
# Diagnostics Schemas
# ─────────────────────────────────────────────────────────────

class IngestionDiagnosticResponse(CamelModel):
    item_id: int
    feed_id: int | None
    feed_title: str | None
    item_title: str | None
    canonical_url: str | None
    published_at: str | None
    chosen_source: str
    raw_description_length: int
    body_html_raw_length: int
    article_html_length: int
    has_block_tags: bool
    looks_escaped_html: bool
    weak_content: bool
    article_html_preview: str
    excerpt: str
    main_image_url: str | None
    recorded_at: str

    @classmethod
    def from_entry(cls, entry: IngestionDiagnosticEntry) -> "IngestionDiagnosticResponse":
        return cls(
            item_id=entry.article_id,
            feed_id=entry.feed_id,
            feed_title=entry.feed_title,
            item_title=entry.item_title,
            canonical_url=entry.canonical_url,
            published_at=_iso(entry.published_at),
            chosen_source=entry.chosen_source,
            raw_description_length=entry.raw_description_length,
            body_html_raw_length=entry.body_html_raw_length,
            article_html_length=entry.article_html_length,
            has_block_tags=entry.has_block_tags,
            looks_escaped_html=entry.looks_escaped_html,
            weak_content=entry.weak_content,
            article_html_preview=entry.article_html_preview,
            excerpt=entry.excerpt,
            main_image_url=entry.main_image_url,
            recorded_at=entry.recorded_at.isoformat(),
        )


class IngestionDiagnosticsResponse(BaseModel):
    items: list[IngestionDiagnosticResponse]
