"""
Database models - dataclasses for database entities.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class DBFeed:
    id: int
    owner_key: str
    url: str
    title: str | None
    last_fetched_at: datetime | None
    created_at: datetime | None = None


@dataclass
class DBArticle:
    id: int
    feed_id: int
    title: str
    content_snippet: str
    article_html: str | None
    published_at: datetime
    guid: str | None
    link: str | None
    dedupe_key: str
    created_at: datetime
    updated_at: datetime


@dataclass
class DBPost:
    id: int
    article_id: int
    content: str | None
    status: str  # PENDING, SUCCESS, FAILED
    attempt_count: int
    error_reason: str | None = None
    prompt_base_hash: str | None = None
    model_used: str | None = None
    tokens_input: int | None = None
    tokens_output: int | None = None
    generated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ExistingArticleKey:
    """Minimal projection used by dedupe lookups."""
    id: int
    dedupe_key: str
    article_html: str | None


@dataclass
class DBArticleWithPost:
    article: DBArticle
    post: DBPost | None
    feed_title: str | None = None
