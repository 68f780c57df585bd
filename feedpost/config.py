"""
Configuration and application state management.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv
from fastapi import HTTPException

if TYPE_CHECKING:
    from .database import Database
    from .fetcher import CachedFeedFetcher
    from .metrics import RssMetrics
    from .diagnostics import IngestionDiagnostics
    from .services.refresh_service import RefreshLocks

# Load environment variables
load_dotenv()

REPROCESS_POLICIES = ("never", "if-empty", "always", "if-empty-or-changed")
DEFAULT_REPROCESS_POLICY = "if-empty-or-changed"
RSS_LOG_LEVELS = ("fatal", "error", "warn", "info", "debug", "trace")


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int, minimum: int | None = None) -> int:
    """Parse an integer from environment variable, falling back on bad input."""
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    if minimum is not None and parsed < minimum:
        return default
    return parsed


def _parse_list(value: str | None) -> list[str] | None:
    """Parse a comma separated list. Empty input means 'not configured'."""
    if value is None:
        return None
    items = [entry.strip() for entry in value.split(",") if entry.strip()]
    return items or None


@dataclass
class RssConfig:
    """Options for the ingestion pipeline (assembler, dedupe, logging)."""
    keep_embeds: bool = False
    allowed_iframe_hosts: list[str] = field(default_factory=list)
    inject_top_image: bool = True
    excerpt_max_chars: int = 220
    max_html_kb: int = 150
    strip_known_boilerplates: bool = True
    reprocess_policy: str = DEFAULT_REPROCESS_POLICY
    log_level: str = "info"
    tracker_params_remove_list: list[str] | None = None

    def __post_init__(self):
        if self.reprocess_policy not in REPROCESS_POLICIES:
            self.reprocess_policy = DEFAULT_REPROCESS_POLICY
        if self.log_level not in RSS_LOG_LEVELS:
            self.log_level = "info"


class Config:
    """Application configuration from environment."""
    DB_PATH: Path = Path(os.getenv("DB_PATH", "./data/feedpost.db"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Leave empty to disable the X-API-Key check (local development)
    AUTH_API_KEY: str = os.getenv("AUTH_API_KEY", "")

    # Feed fetching
    FETCH_TIMEOUT_MS: int = _parse_int(os.getenv("FETCH_TIMEOUT_MS"), 5000, minimum=1)
    FEED_CACHE_TTL_SECONDS: int = _parse_int(os.getenv("FEED_CACHE_TTL_SECONDS"), 300, minimum=0)
    FEED_CACHE_MAX_ENTRIES: int = _parse_int(os.getenv("FEED_CACHE_MAX_ENTRIES"), 100, minimum=1)

    # Defaults for the operational parameters (app_params table may override)
    POSTS_REFRESH_COOLDOWN_SECONDS: int = _parse_int(
        os.getenv("POSTS_REFRESH_COOLDOWN_SECONDS"), 3600, minimum=0
    )
    POSTS_TIME_WINDOW_DAYS: int = _parse_int(os.getenv("POSTS_TIME_WINDOW_DAYS"), 7, minimum=1)

    @classmethod
    def rss_config(cls) -> RssConfig:
        """Build pipeline options from RSS_* environment variables."""
        log_level = os.getenv("RSS_LOG_LEVEL", "info").strip().lower()
        return RssConfig(
            keep_embeds=_parse_bool(os.getenv("RSS_KEEP_EMBEDS"), default=False),
            allowed_iframe_hosts=_parse_list(os.getenv("RSS_ALLOWED_IFRAME_HOSTS")) or [],
            inject_top_image=_parse_bool(os.getenv("RSS_INJECT_TOP_IMAGE"), default=True),
            excerpt_max_chars=_parse_int(os.getenv("RSS_EXCERPT_MAX_CHARS"), 220, minimum=1),
            max_html_kb=_parse_int(os.getenv("RSS_MAX_HTML_KB"), 150, minimum=1),
            strip_known_boilerplates=_parse_bool(
                os.getenv("RSS_STRIP_KNOWN_BOILERPLATES"), default=True
            ),
            reprocess_policy=os.getenv("RSS_REPROCESS_POLICY", DEFAULT_REPROCESS_POLICY).strip(),
            log_level=log_level,
            tracker_params_remove_list=_parse_list(os.getenv("RSS_TRACKER_PARAMS_REMOVE_LIST")),
        )


config = Config()


class AppState:
    """Shared application state."""
    db: "Database | None" = None
    rss: RssConfig | None = None
    fetcher: "CachedFeedFetcher | None" = None
    metrics: "RssMetrics | None" = None
    diagnostics: "IngestionDiagnostics | None" = None
    refresh_locks: "RefreshLocks | None" = None


state = AppState()


def get_db() -> "Database":
    """Dependency to get database instance."""
    if not state.db:
        raise HTTPException(status_code=500, detail="Database not initialized")
    return state.db
