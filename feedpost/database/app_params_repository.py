"""
App params repository - runtime-tunable operational parameters.
"""

from datetime import datetime, timezone

from .connection import DatabaseConnection


class AppParamsRepository:
    """Repository for app parameters (key/value)."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def get(self, key: str, default: str | None = None) -> str | None:
        """Get a parameter value."""
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT value FROM app_params WHERE key = ?", (key,)
            ).fetchone()
            return row["value"] if row and row["value"] is not None else default

    def get_int(self, key: str) -> int | None:
        """Get a parameter as an integer, None when missing or not numeric."""
        value = self.get(key)
        if value is None:
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return None

    def set(self, key: str, value):
        """Set a parameter value."""
        with self._db.conn() as conn:
            conn.execute(
                """INSERT INTO app_params (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value, updated_at = excluded.updated_at""",
                (key, None if value is None else str(value), datetime.now(timezone.utc).isoformat())
            )

    def get_all(self) -> dict[str, str]:
        with self._db.conn() as conn:
            rows = conn.execute("SELECT key, value FROM app_params").fetchall()
            return {row["key"]: row["value"] for row in rows}
