# orderdesk/api/health.py
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def liveness(request: Request):
    """Simple liveness probe (no external deps)."""
    ledger = getattr(request.app.state, "ledger", None)
    watchers = getattr(request.app.state, "watchers", None)
    return {
        "status": "running",
        "version": "0.1.0",
        "pending_orders": len(ledger) if ledger is not None else 0,
        "active_watchers": len(watchers) if watchers is not None else 0,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/metrics")
async def metrics(request: Request):
    registry = request.app.state.metrics.registry
    return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
