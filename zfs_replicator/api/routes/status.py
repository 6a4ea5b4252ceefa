"""Replication status summary."""

from fastapi import APIRouter, Depends

from zfs_replicator.api.dependencies import get_container
from zfs_replicator.api.schemas.replication import StatusResponse
from zfs_replicator.services.container import ServiceContainer

router = APIRouter()


@router.get("/status", response_model=StatusResponse)
def get_status(container: ServiceContainer = Depends(get_container)):
    """Summarize configuration and queue state, including the last successful run."""
    settings = container.settings
    scheduler = container.replication_scheduler
    next_runs = {}
    if container.cron_scheduler is not None:
        next_runs = {job.name: job.next_run for job in container.cron_scheduler.jobs}
    last_success = None
    if container.history is not None:
        last_success = container.history.get_last_success(settings.dataset)
    return StatusResponse(
        dataset=settings.dataset,
        remote_host=settings.remote_host,
        remote_dataset=settings.remote_dataset,
        send_in_progress=scheduler.is_busy,
        pending_sends=scheduler.pending_send_count,
        scheduler_enabled=settings.scheduler_enabled,
        next_runs=next_runs,
        last_success=last_success,
    )
