"""
Service layer for business logic.

Services encapsulate business logic, keeping routes as thin HTTP adapters.
Each service receives its dependencies via constructor injection.

Usage in routes:
    from ..services import RefreshServiceDep

    @router.post("/posts/refresh")
    async def refresh(
        service: RefreshServiceDep,
        owner_key: Annotated[str, Depends(get_owner_key)]
    ):
        return await service.refresh_owner_feeds(owner_key)
"""

from typing import Annotated

from fastapi import Depends

from ..config import state, get_db
from ..database import Database

from .feed_service import FeedService
from .posts_service import PostsService
from .refresh_service import RefreshLocks, RefreshService

__all__ = [
    # Services
    "FeedService",
    "PostsService",
    "RefreshService",
    "RefreshLocks",
    # Dependency factories
    "get_feed_service",
    "get_posts_service",
    "get_refresh_service",
    # Type aliases for dependency injection
    "FeedServiceDep",
    "PostsServiceDep",
    "RefreshServiceDep",
]


def get_feed_service(db: Annotated[Database, Depends(get_db)]) -> FeedService:
    """Dependency to get FeedService instance."""
    return FeedService(db=db)


def get_posts_service(db: Annotated[Database, Depends(get_db)]) -> PostsService:
    """Dependency to get PostsService instance."""
    return PostsService(db=db)


def get_refresh_service(db: Annotated[Database, Depends(get_db)]) -> RefreshService:
    """Dependency to get RefreshService instance."""
    return RefreshService(
        db=db,
        fetcher=state.fetcher,
        rss=state.rss,
        metrics=state.metrics,
        diagnostics=state.diagnostics,
        locks=state.refresh_locks,
    )


FeedServiceDep = Annotated[FeedService, Depends(get_feed_service)]
PostsServiceDep = Annotated[PostsService, Depends(get_posts_service)]
RefreshServiceDep = Annotated[RefreshService, Depends(get_refresh_service)]
