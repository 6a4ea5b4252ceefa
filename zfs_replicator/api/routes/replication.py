"""Replication queue, retry and history endpoints."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from zfs_replicator.api.dependencies import get_container
from zfs_replicator.api.schemas.replication import (
    PendingSendsResponse,
    RemoteDatasetResponse,
    ReplicationRunResponse,
    RetryResponse,
)
from zfs_replicator.exceptions import PendingSendsError, SendInProgressError, TransportError
from zfs_replicator.logging_config import get_logger
from zfs_replicator.services.container import ServiceContainer

logger = get_logger(__name__)
router = APIRouter()


@router.get("/replication/pending", response_model=PendingSendsResponse)
async def get_pending_sends(container: ServiceContainer = Depends(get_container)):
    """List snapshots waiting to be retried."""
    pending = container.replication_scheduler.get_pending_sends()
    return PendingSendsResponse(pending=pending, count=len(pending))


@router.post("/replication/retry", response_model=RetryResponse)
def retry_pending_sends(container: ServiceContainer = Depends(get_container)):
    """
    Retry every pending snapshot and wait for the outcome.

    409 means a send is running and the retry can be repeated later; 502
    means some snapshots still failed, with their count in ``remaining``.
    """
    try:
        delivered = container.replication_scheduler.retry_pending_sends()
    except SendInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PendingSendsError as e:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": str(e), "remaining": e.remaining},
        )
    return RetryResponse(delivered=delivered, remaining=0)


@router.get("/replication/history", response_model=List[ReplicationRunResponse])
def get_replication_history(
    limit: int = Query(50, ge=1, le=500),
    container: ServiceContainer = Depends(get_container),
):
    """List recent replication attempts, newest first."""
    if container.history is None:
        return []
    return [ReplicationRunResponse(**run) for run in container.history.get_recent_runs(limit)]


@router.get("/remote/datasets", response_model=List[RemoteDatasetResponse])
def list_remote_datasets(container: ServiceContainer = Depends(get_container)):
    """List datasets on the backup host that hold snapshots."""
    try:
        datasets = container.transport.list_remote_datasets()
    except TransportError as e:
        logger.error(f"Failed to list remote datasets: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return [RemoteDatasetResponse(name=d.name, snapshots=d.snapshots) for d in datasets]
