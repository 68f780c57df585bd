"""
Article repository - persistence for ingested articles.
"""

import sqlite3
from datetime import datetime, timezone

from .connection import DatabaseConnection
from .converters import row_to_article, row_to_existing_key, row_to_post, to_db_timestamp
from .models import DBArticle, DBArticleWithPost, ExistingArticleKey

# SQLite's default host parameter limit is 999 on older builds
QUERY_CHUNK_SIZE = 500


def _chunks(values: list, size: int = QUERY_CHUNK_SIZE):
    for start in range(0, len(values), size):
        yield values[start:start + size]


class ArticleRepository:
    """Repository for article operations."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def find_existing_dedupe_keys(self, feed_id: int, keys: list[str]) -> list[ExistingArticleKey]:
        """Stored articles of a feed whose dedupe key is among `keys`."""
        if not keys:
            return []
        results = []
        with self._db.conn() as conn:
            for chunk in _chunks(list(dict.fromkeys(keys))):
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"""SELECT id, dedupe_key, article_html FROM articles
                        WHERE feed_id = ? AND dedupe_key IN ({placeholders})""",
                    [feed_id, *chunk]
                ).fetchall()
                results.extend(row_to_existing_key(row) for row in rows)
        return results

    def create(
        self,
        feed_id: int,
        title: str,
        content_snippet: str,
        published_at: datetime,
        dedupe_key: str,
        article_html: str | None = None,
        guid: str | None = None,
        link: str | None = None,
    ) -> int:
        """
        Insert an article. Returns article ID.

        Raises:
            sqlite3.IntegrityError: An article with the same dedupe key
                already exists for the feed
        """
        now = to_db_timestamp(datetime.now(timezone.utc))
        with self._db.conn() as conn:
            cursor = conn.execute(
                """INSERT INTO articles
                   (feed_id, title, content_snippet, article_html, published_at,
                    guid, link, dedupe_key, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (feed_id, title, content_snippet, article_html,
                 to_db_timestamp(published_at), guid, link, dedupe_key, now, now)
            )
            return cursor.lastrowid

    def find_by_id(self, article_id: int) -> DBArticle | None:
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT * FROM articles WHERE id = ?", (article_id,)
            ).fetchone()
            return row_to_article(row) if row else None

    def update_article_html_by_id(self, article_id: int, article_html: str):
        with self._db.conn() as conn:
            conn.execute(
                "UPDATE articles SET article_html = ?, updated_at = ? WHERE id = ?",
                (article_html, to_db_timestamp(datetime.now(timezone.utc)), article_id)
            )

    def find_recent_for_owner(
        self,
        owner_key: str,
        window_start: datetime,
        limit: int,
        cursor: tuple[datetime, int] | None = None,
        feed_id: int | None = None,
        until: datetime | None = None,
    ) -> list[DBArticleWithPost]:
        """
        Articles of an owner's feeds published since window_start, newest first.

        Args:
            owner_key: Feed owner
            window_start: Oldest publish time to include
            limit: Maximum rows returned
            cursor: (published_at, id) of the last row of the previous page
            feed_id: Restrict to one feed
            until: Newest publish time to include
        """
        query = """
            SELECT a.*, f.title AS feed_title,
                   p.id AS post_id, p.article_id AS post_article_id, p.content AS post_content,
                   p.status AS post_status, p.attempt_count AS post_attempt_count,
                   p.error_reason AS post_error_reason, p.prompt_base_hash AS post_prompt_base_hash,
                   p.model_used AS post_model_used, p.tokens_input AS post_tokens_input,
                   p.tokens_output AS post_tokens_output, p.generated_at AS post_generated_at,
                   p.created_at AS post_created_at, p.updated_at AS post_updated_at
            FROM articles a
            JOIN feeds f ON a.feed_id = f.id
            LEFT JOIN posts p ON p.article_id = a.id
            WHERE f.owner_key = ? AND a.published_at >= ?
        """
        params: list = [owner_key, to_db_timestamp(window_start)]

        if until is not None:
            query += " AND a.published_at <= ?"
            params.append(to_db_timestamp(until))
        if feed_id is not None:
            query += " AND a.feed_id = ?"
            params.append(feed_id)
        if cursor is not None:
            cursor_published, cursor_id = cursor
            cursor_stamp = to_db_timestamp(cursor_published)
            query += " AND (a.published_at < ? OR (a.published_at = ? AND a.id < ?))"
            params.extend([cursor_stamp, cursor_stamp, cursor_id])

        query += " ORDER BY a.published_at DESC, a.id DESC LIMIT ?"
        params.append(limit)

        with self._db.conn() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_row_to_article_with_post(row) for row in rows]

    def find_ids_for_cleanup(self, owner_key: str, cutoff: datetime) -> list[int]:
        """IDs of an owner's articles published before cutoff."""
        with self._db.conn() as conn:
            rows = conn.execute(
                """SELECT a.id FROM articles a
                   JOIN feeds f ON a.feed_id = f.id
                   WHERE f.owner_key = ? AND a.published_at < ?""",
                (owner_key, to_db_timestamp(cutoff))
            ).fetchall()
            return [row["id"] for row in rows]

    def delete_many_by_ids(self, article_ids: list[int]) -> int:
        """Delete articles. Returns count deleted."""
        if not article_ids:
            return 0
        deleted = 0
        with self._db.conn() as conn:
            for chunk in _chunks(article_ids):
                placeholders = ",".join("?" * len(chunk))
                cursor = conn.execute(
                    f"DELETE FROM articles WHERE id IN ({placeholders})", chunk
                )
                deleted += cursor.rowcount
        return deleted


class _PrefixedRow:
    """Exposes the post_* columns of a joined row under their plain names."""

    def __init__(self, row: sqlite3.Row, prefix: str):
        self._row = row
        self._prefix = prefix

    def __getitem__(self, key: str):
        return self._row[f"{self._prefix}{key}"]


def _row_to_article_with_post(row: sqlite3.Row) -> DBArticleWithPost:
    post = row_to_post(_PrefixedRow(row, "post_")) if row["post_id"] is not None else None
    return DBArticleWithPost(
        article=row_to_article(row),
        post=post,
        feed_title=row["feed_title"],
    )
