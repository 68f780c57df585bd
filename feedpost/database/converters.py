"""
Database row converters - convert SQLite rows to dataclasses.
"""

import sqlite3
from datetime import datetime, timezone

from .models import DBArticle, DBFeed, DBPost, ExistingArticleKey


def to_db_timestamp(value: datetime | None) -> str | None:
    """Fixed-width UTC ISO string so stored timestamps sort lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_db_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def row_to_feed(row: sqlite3.Row) -> DBFeed:
    """Convert a database row to a DBFeed."""
    return DBFeed(
        id=row["id"],
        owner_key=row["owner_key"],
        url=row["url"],
        title=row["title"],
        last_fetched_at=parse_db_timestamp(row["last_fetched_at"]),
        created_at=parse_db_timestamp(row["created_at"]),
    )


def row_to_article(row: sqlite3.Row) -> DBArticle:
    """Convert a database row to a DBArticle."""
    now = datetime.now(timezone.utc)
    return DBArticle(
        id=row["id"],
        feed_id=row["feed_id"],
        title=row["title"],
        content_snippet=row["content_snippet"],
        article_html=row["article_html"],
        published_at=parse_db_timestamp(row["published_at"]) or now,
        guid=row["guid"],
        link=row["link"],
        dedupe_key=row["dedupe_key"],
        created_at=parse_db_timestamp(row["created_at"]) or now,
        updated_at=parse_db_timestamp(row["updated_at"]) or now,
    )


def row_to_post(row: sqlite3.Row) -> DBPost:
    """Convert a database row to a DBPost."""
    return DBPost(
        id=row["id"],
        article_id=row["article_id"],
        content=row["content"],
        status=row["status"] or "PENDING",
        attempt_count=row["attempt_count"] or 0,
        error_reason=row["error_reason"],
        prompt_base_hash=row["prompt_base_hash"],
        model_used=row["model_used"],
        tokens_input=row["tokens_input"],
        tokens_output=row["tokens_output"],
        generated_at=parse_db_timestamp(row["generated_at"]),
        created_at=parse_db_timestamp(row["created_at"]),
        updated_at=parse_db_timestamp(row["updated_at"]),
    )


def row_to_existing_key(row: sqlite3.Row) -> ExistingArticleKey:
    return ExistingArticleKey(
        id=row["id"],
        dedupe_key=row["dedupe_key"],
        article_html=row["article_html"],
    )
