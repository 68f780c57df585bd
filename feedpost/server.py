"""
Feedpost API Server

FastAPI application providing endpoints for:
- Feed registration per owner
- Refreshing feeds into articles and pending posts
- Listing and cleanup of ingested articles
- Ingestion diagnostics and metrics
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import __version__
from .cache import MemoryCache
from .config import config, state
from .database import Database
from .diagnostics import IngestionDiagnostics
from .fetcher import CachedFeedFetcher, FeedFetcher
from .metrics import RssMetrics
from .routes import (
    diagnostics_router,
    feeds_router,
    misc_router,
    posts_router,
)
from .rss_logger import configure_rss_logger
from .services import RefreshLocks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup application resources."""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Startup - skip if already initialized (e.g., by tests)
    if state.db is None:
        state.db = Database(config.DB_PATH)
        state.rss = config.rss_config()
        state.fetcher = CachedFeedFetcher(
            FeedFetcher(timeout_ms=config.FETCH_TIMEOUT_MS),
            MemoryCache(
                max_size=config.FEED_CACHE_MAX_ENTRIES,
                default_ttl=config.FEED_CACHE_TTL_SECONDS,
            ),
        )
        state.metrics = RssMetrics()
        state.diagnostics = IngestionDiagnostics()
        state.refresh_locks = RefreshLocks()
        logger.info(
            f"Feedpost initialized (db={config.DB_PATH}, "
            f"reprocess_policy={state.rss.reprocess_policy})"
        )

    if state.rss is not None:
        configure_rss_logger(state.rss.log_level)

    yield


app = FastAPI(
    title="Feedpost API",
    version=__version__,
    lifespan=lifespan
)

# Include routers
app.include_router(misc_router)
app.include_router(feeds_router)
app.include_router(posts_router)
app.include_router(diagnostics_router)
