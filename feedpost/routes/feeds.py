"""
Feed routes: registration of the caller's feeds.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from ..auth import get_owner_key, verify_api_key
from ..schemas import AddFeedRequest, FeedResponse
from ..services import FeedServiceDep

router = APIRouter(prefix="/feeds", tags=["feeds"], dependencies=[Depends(verify_api_key)])


@router.get("")
async def list_feeds(
    service: FeedServiceDep,
    owner_key: Annotated[str, Depends(get_owner_key)],
) -> list[FeedResponse]:
    """List the caller's feeds."""
    return [FeedResponse.from_db(f) for f in service.list_feeds(owner_key)]


@router.post("", status_code=201)
async def add_feed(
    request: AddFeedRequest,
    service: FeedServiceDep,
    owner_key: Annotated[str, Depends(get_owner_key)],
) -> FeedResponse:
    """Register a feed URL. Articles arrive on the next refresh."""
    feed = service.register(owner_key, request.url, request.title)
    return FeedResponse.from_db(feed)


@router.delete("/{feed_id}")
async def remove_feed(
    feed_id: int,
    service: FeedServiceDep,
    owner_key: Annotated[str, Depends(get_owner_key)],
) -> dict:
    """Remove a feed and its articles."""
    service.delete(owner_key, feed_id)
    return {"success": True}
