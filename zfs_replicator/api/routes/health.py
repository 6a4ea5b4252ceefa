"""Unauthenticated health checks for the replicator process."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zfs_replicator.config import get_settings
from zfs_replicator.database import get_db
from zfs_replicator.logging_config import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    settings = get_settings()
    return {"status": "healthy", "service": settings.app_name, "version": settings.app_version}


@router.get("/health/ready")
async def readiness_check(request: Request, db: Session = Depends(get_db)):
    """
    Ready once the history database answers and the replication services are wired.

    Answers 503 otherwise, so a supervisor holds traffic until startup finishes.
    """
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"History database check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"History database not available: {e}",
        )
    if getattr(request.app.state, "container", None) is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Replication services are not initialized",
        )
    return {"status": "ready", "database": "connected", "services": "initialized"}


@router.get("/health/live")
async def liveness_check():
    return {"status": "alive"}
