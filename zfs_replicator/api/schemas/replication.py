"""Replication API schemas."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class PendingSendsResponse(BaseModel):
    """Schema for the pending send queue."""

    pending: List[str] = Field(..., description="Snapshot names awaiting retry, oldest first")
    count: int


class RetryResponse(BaseModel):
    """Schema for a completed retry drain."""

    delivered: int = Field(..., description="Snapshots delivered by this retry")
    remaining: int = Field(default=0, description="Snapshots still pending")


class ReplicationRunResponse(BaseModel):
    """Schema for one recorded replication attempt."""

    id: str
    snapshot_name: str
    dataset: str
    send_type: Optional[str] = None
    incremental_base: Optional[str] = None
    trigger: str
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    error_message: Optional[str] = None


class RemoteDatasetResponse(BaseModel):
    """Schema for a remote dataset and its snapshots."""

    name: str
    snapshots: List[str]


class StatusResponse(BaseModel):
    """Schema for the replication status summary."""

    dataset: str
    remote_host: str
    remote_dataset: str
    send_in_progress: bool
    pending_sends: int
    scheduler_enabled: bool
    next_runs: Dict[str, Optional[datetime]] = Field(default_factory=dict)
    last_success: Optional[ReplicationRunResponse] = Field(
        default=None, description="Newest successful replication of the dataset"
    )
