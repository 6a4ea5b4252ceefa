"""Restore job endpoints."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from zfs_replicator.api.dependencies import get_container
from zfs_replicator.api.schemas.restore import RestoreJobResponse, RestoreRequest
from zfs_replicator.exceptions import RestoreConfirmationError, RestoreJobNotFoundError
from zfs_replicator.logging_config import get_logger
from zfs_replicator.services.container import ServiceContainer

logger = get_logger(__name__)
router = APIRouter()


@router.post("/restore", response_model=RestoreJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_restore(
    request: RestoreRequest, container: ServiceContainer = Depends(get_container)
):
    """Start restoring a remote snapshot into a local dataset."""
    try:
        job = container.restore_manager.start_restore(
            snapshot_name=request.snapshot_name,
            target_dataset=request.target_dataset,
            source_dataset=request.source_dataset,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    logger.info(f"Started restore job {job.id}")
    return RestoreJobResponse.model_validate(job)


@router.get("/restore/jobs", response_model=List[RestoreJobResponse])
async def list_restore_jobs(container: ServiceContainer = Depends(get_container)):
    """List known restore jobs."""
    return [RestoreJobResponse.model_validate(j) for j in container.restore_manager.list_jobs()]


@router.get("/restore/jobs/{job_id}", response_model=RestoreJobResponse)
async def get_restore_job(job_id: str, container: ServiceContainer = Depends(get_container)):
    """Get a restore job by ID."""
    job = container.restore_manager.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Restore job not found")
    return RestoreJobResponse.model_validate(job)


@router.post("/restore/jobs/{job_id}/confirm", response_model=RestoreJobResponse)
async def confirm_restore(job_id: str, container: ServiceContainer = Depends(get_container)):
    """Confirm a destructive restore that is waiting on the safety check."""
    try:
        job = container.restore_manager.confirm_destructive_restore(job_id)
    except RestoreJobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except RestoreConfirmationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return RestoreJobResponse.model_validate(job)
