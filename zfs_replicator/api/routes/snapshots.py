"""Local snapshot and on-demand trigger endpoints."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from zfs_replicator.api.dependencies import get_container
from zfs_replicator.api.schemas.snapshot import SnapshotResponse, TriggerResponse
from zfs_replicator.exceptions import SendInProgressError, SnapshotStoreError
from zfs_replicator.logging_config import get_logger
from zfs_replicator.services.container import ServiceContainer

logger = get_logger(__name__)
router = APIRouter()


@router.get("/snapshots", response_model=List[SnapshotResponse])
def list_snapshots(container: ServiceContainer = Depends(get_container)):
    """List snapshots of the replicated dataset, oldest first."""
    try:
        snapshots = container.store.list_snapshots()
    except SnapshotStoreError as e:
        logger.error(f"Failed to list snapshots: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return [SnapshotResponse.model_validate(s) for s in snapshots]


@router.post(
    "/snapshots/trigger",
    response_model=TriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_snapshot(container: ServiceContainer = Depends(get_container)):
    """
    Start a snapshot and replication run now.

    Returns 409 when a send is already running; the caller may retry later.
    """
    try:
        container.replication_scheduler.trigger_snapshot()
    except SendInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    logger.info("Manual snapshot triggered")
    return TriggerResponse(message="Snapshot triggered")


@router.post(
    "/scrub/trigger",
    response_model=TriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_scrub(container: ServiceContainer = Depends(get_container)):
    """Start a scrub of every pool now."""
    container.replication_scheduler.trigger_scrub()
    logger.info("Manual scrub triggered")
    return TriggerResponse(message="Scrub triggered")
