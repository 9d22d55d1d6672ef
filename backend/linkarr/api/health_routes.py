"""
Health Check API Routes

Endpoints:
- /health/live: Liveness probe - is the application running?
- /health/ready: Readiness probe - is the database reachable?
- /health/reconciler: Reconciler worker status
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from linkarr.database import get_db
from linkarr.schemas.responses import ReconcilerStatusResponse
from linkarr.workers.reconciler import Reconciler, get_reconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness_probe():
    """
    Liveness probe.

    Lightweight, does not check external dependencies.

    Returns:
        {"status": "alive"}
    """
    return {"status": "alive"}


@router.get("/ready")
async def readiness_probe(db: Session = Depends(get_db)):
    """
    Readiness probe.

    Returns:
        200: Database reachable
        503: Database unreachable
    """
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"✗ Readiness check failed: {e}")
        return Response(
            content='{"status": "not_ready", "reason": "database unavailable"}',
            status_code=503,
            media_type="application/json"
        )

    return {"status": "ready", "database": "connected"}


@router.get("/reconciler", response_model=ReconcilerStatusResponse)
async def reconciler_status(reconciler: Reconciler = Depends(get_reconciler)):
    """Current reconciler state: passes run, last error, mappings."""
    return reconciler.get_status()
