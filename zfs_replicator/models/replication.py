"""Send plan and replication outcome models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RunTrigger(str, Enum):
    """What started a replication attempt."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"
    RETRY = "retry"


class RunStatus(str, Enum):
    """Outcome of a replication attempt."""

    SUCCESS = "success"
    FAILED = "failed"


class SendPlan(BaseModel):
    """Full send of a snapshot, or incremental send from a common base."""

    snapshot_name: str = Field(..., description="Snapshot to deliver")
    incremental_base: Optional[str] = Field(
        default=None, description="Most recent snapshot present on both sides"
    )

    @property
    def is_incremental(self) -> bool:
        return self.incremental_base is not None

    @property
    def send_type(self) -> str:
        return "incremental" if self.is_incremental else "full"

    def describe(self) -> str:
        if self.is_incremental:
            return f"incremental {self.incremental_base} -> {self.snapshot_name}"
        return f"full {self.snapshot_name}"


class ReplicationResult(BaseModel):
    """Result of one replication run, returned to synchronous callers."""

    snapshot_name: str
    trigger: RunTrigger
    status: RunStatus
    plan: Optional[SendPlan] = None
    duration_seconds: float = 0.0
    error: Optional[str] = None
    pending_sends: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCESS
