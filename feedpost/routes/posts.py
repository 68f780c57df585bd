"""
Posts routes: refresh the caller's feeds, list ingested articles, cleanup.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from ..auth import get_owner_key, verify_api_key
from ..exceptions import InvalidCursorError
from ..schemas import ArticleListResponse, CleanupResponse, RefreshResponse
from ..services import PostsServiceDep, RefreshServiceDep

router = APIRouter(prefix="/posts", tags=["posts"], dependencies=[Depends(verify_api_key)])


# ─────────────────────────────────────────────────────────────
# Refresh & Cleanup
# ─────────────────────────────────────────────────────────────

@router.post("/refresh")
async def refresh_posts(
    service: RefreshServiceDep,
    owner_key: Annotated[str, Depends(get_owner_key)],
) -> RefreshResponse:
    """Fetch and ingest every feed of the caller."""
    result = await service.refresh_owner_feeds(owner_key)
    return RefreshResponse.from_result(result)


@router.post("/cleanup")
async def cleanup_posts(
    service: PostsServiceDep,
    owner_key: Annotated[str, Depends(get_owner_key)],
) -> CleanupResponse:
    """Remove the caller's articles older than the time window."""
    result = service.cleanup_old_articles(owner_key)
    return CleanupResponse.from_result(result)


# ─────────────────────────────────────────────────────────────
# Listing
# ─────────────────────────────────────────────────────────────

@router.get("")
async def list_posts(
    service: PostsServiceDep,
    owner_key: Annotated[str, Depends(get_owner_key)],
    cursor: str | None = None,
    limit: int | None = None,
    feed_id: int | None = Query(default=None, alias="feedId"),
) -> ArticleListResponse:
    """List recent articles with their posts, newest first."""
    try:
        page = service.list_recent_articles(owner_key, cursor=cursor, limit=limit, feed_id=feed_id)
    except InvalidCursorError as e:
        raise HTTPException(
            status_code=400,
            detail={"code": e.code, "message": str(e)},
        )
    return ArticleListResponse.from_page(page)
