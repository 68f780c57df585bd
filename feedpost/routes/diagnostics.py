"""
Diagnostics routes: recent ingestion snapshots.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from ..auth import verify_api_key
from ..config import state
from ..schemas import IngestionDiagnosticResponse, IngestionDiagnosticsResponse

router = APIRouter(prefix="/diagnostics", tags=["diagnostics"], dependencies=[Depends(verify_api_key)])


@router.get("/ingestion")
async def get_ingestion_diagnostics(
    limit: int | None = None,
    feed_id: int | None = Query(default=None, alias="feedId"),
) -> IngestionDiagnosticsResponse:
    """Most recently ingested articles, newest first."""
    if state.diagnostics is None:
        raise HTTPException(status_code=500, detail="Diagnostics not initialized")

    entries = state.diagnostics.get_recent(limit=limit, feed_id=feed_id)
    return IngestionDiagnosticsResponse(
        items=[IngestionDiagnosticResponse.from_entry(e) for e in entries]
    )
