"""
Post repository - generation records attached 1:1 to articles.
"""

from datetime import datetime, timezone

from .connection import DatabaseConnection
from .converters import row_to_post, to_db_timestamp
from .models import DBPost

POST_STATUSES = ("PENDING", "SUCCESS", "FAILED")

# Columns the generation service may write through upsert_for_article
UPSERT_FIELDS = (
    "content", "status", "attempt_count", "error_reason", "prompt_base_hash",
    "model_used", "tokens_input", "tokens_output", "generated_at",
)


class PostRepository:
    """Repository for post operations."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def create(self, article_id: int, status: str = "PENDING") -> int:
        """Create the post record for a new article. Returns post ID."""
        now = to_db_timestamp(datetime.now(timezone.utc))
        with self._db.conn() as conn:
            cursor = conn.execute(
                """INSERT INTO posts (article_id, status, attempt_count, created_at, updated_at)
                   VALUES (?, ?, 0, ?, ?)""",
                (article_id, status, now, now)
            )
            return cursor.lastrowid

    def upsert_for_article(self, article_id: int, **fields) -> DBPost:
        """
        Create or update the post of an article.

        Only keys in UPSERT_FIELDS are written; unknown keys raise ValueError.
        """
        unknown = set(fields) - set(UPSERT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown post fields: {', '.join(sorted(unknown))}")
        if "status" in fields and fields["status"] not in POST_STATUSES:
            raise ValueError(f"Invalid post status: {fields['status']}")
        if isinstance(fields.get("generated_at"), datetime):
            fields["generated_at"] = to_db_timestamp(fields["generated_at"])

        now = to_db_timestamp(datetime.now(timezone.utc))
        columns = list(fields)
        with self._db.conn() as conn:
            conn.execute(
                """INSERT INTO posts (article_id, status, attempt_count, created_at, updated_at)
                   VALUES (?, 'PENDING', 0, ?, ?)
                   ON CONFLICT(article_id) DO NOTHING""",
                (article_id, now, now)
            )
            if columns:
                assignments = ", ".join(f"{column} = ?" for column in columns)
                conn.execute(
                    f"UPDATE posts SET {assignments}, updated_at = ? WHERE article_id = ?",
                    [*(fields[column] for column in columns), now, article_id]
                )
            row = conn.execute(
                "SELECT * FROM posts WHERE article_id = ?", (article_id,)
            ).fetchone()
            return row_to_post(row)

    def get_for_article(self, article_id: int) -> DBPost | None:
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT * FROM posts WHERE article_id = ?", (article_id,)
            ).fetchone()
            return row_to_post(row) if row else None

    def delete_many_by_article_ids(self, article_ids: list[int]) -> int:
        """Delete the posts of the given articles. Returns count deleted."""
        if not article_ids:
            return 0
        deleted = 0
        with self._db.conn() as conn:
            for start in range(0, len(article_ids), 500):
                chunk = article_ids[start:start + 500]
                placeholders = ",".join("?" * len(chunk))
                cursor = conn.execute(
                    f"DELETE FROM posts WHERE article_id IN ({placeholders})", chunk
                )
                deleted += cursor.rowcount
        return deleted
