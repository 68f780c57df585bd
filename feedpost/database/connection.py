"""
Database connection management and schema initialization.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class DatabaseConnection:
    """Manages database connection and schema."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def conn(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with row factory."""
        connection = sqlite3.connect(self.db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _init_schema(self):
        """Initialize database schema."""
        with self.conn() as connection:
            connection.executescript("""
                CREATE TABLE IF NOT EXISTS feeds (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_key TEXT NOT NULL,
                    url TEXT NOT NULL,
                    title TEXT,
                    last_fetched_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(owner_key, url)
                );

                CREATE TABLE IF NOT EXISTS articles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    feed_id INTEGER NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    content_snippet TEXT NOT NULL,
                    article_html TEXT,
                    published_at TIMESTAMP NOT NULL,
                    guid TEXT,
                    link TEXT,
                    dedupe_key TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    UNIQUE(feed_id, dedupe_key)
                );

                CREATE TABLE IF NOT EXISTS posts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    article_id INTEGER UNIQUE NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
                    content TEXT,
                    status TEXT CHECK(status IN ('PENDING', 'SUCCESS', 'FAILED')) DEFAULT 'PENDING',
                    attempt_count INTEGER DEFAULT 0,
                    error_reason TEXT,
                    prompt_base_hash TEXT,
                    model_used TEXT,
                    tokens_input INTEGER,
                    tokens_output INTEGER,
                    generated_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS app_params (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_feeds_owner ON feeds(owner_key);
                CREATE INDEX IF NOT EXISTS idx_articles_feed_published
                    ON articles(feed_id, published_at DESC, id DESC);
                CREATE INDEX IF NOT EXISTS idx_articles_published ON articles(published_at DESC, id DESC);
            """)
