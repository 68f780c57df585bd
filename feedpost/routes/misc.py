"""
Miscellaneous routes: health check and metrics exposition.
"""

from fastapi import APIRouter, HTTPException, Response

from .. import __version__
from ..config import config, state
from ..metrics import CONTENT_TYPE_LATEST

router = APIRouter(tags=["misc"])


# ─────────────────────────────────────────────────────────────
# Health Check
# ─────────────────────────────────────────────────────────────

@router.get("/status")
async def health_check() -> dict:
    """API health check."""
    return {
        "status": "ok",
        "version": __version__,
        "auth_enabled": bool(config.AUTH_API_KEY),
        "metrics_enabled": state.metrics is not None,
        "refresh_in_progress": bool(state.refresh_locks and state.refresh_locks.active_count()),
    }


# ─────────────────────────────────────────────────────────────
# Metrics
# ─────────────────────────────────────────────────────────────

@router.get("/metrics")
async def get_metrics() -> Response:
    """Prometheus text exposition of the ingestion counters."""
    if state.metrics is None:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(content=state.metrics.export(), media_type=CONTENT_TYPE_LATEST)
