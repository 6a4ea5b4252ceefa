"""RestoreJob model tracking one restore attempt."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RestoreStatus(str, Enum):
    """Restore job states."""

    STARTING = "starting"
    SAFETY_CHECK = "safety_check"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    VERIFYING = "verifying"
    PREPARING = "preparing"
    RESTORING = "restoring"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RestoreStatus.COMPLETED, RestoreStatus.FAILED)


class RestoreJob(BaseModel):
    """
    One restore of a remote snapshot into a local dataset.

    Mutated only by the restore worker that owns it and by the confirmation
    action. ``progress`` never decreases while the job has not failed.
    """

    id: str = Field(..., description="Job identifier")
    snapshot_name: str = Field(..., description="Snapshot to restore")
    source_dataset: str = Field(
        default="", description="Remote dataset; empty means the configured remote dataset"
    )
    target_dataset: str = Field(..., description="Local dataset receiving the snapshot")
    status: RestoreStatus = Field(default=RestoreStatus.STARTING)
    progress: int = Field(default=0, ge=0, le=100)
    started_at: datetime = Field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
    requires_confirmation: bool = False
    safety_warning: str = ""
    force_confirmed: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(self, status: RestoreStatus, progress: int) -> None:
        """Move to ``status``, never lowering progress."""
        self.status = status
        self.progress = max(self.progress, progress)

    def complete(self) -> None:
        self.advance(RestoreStatus.COMPLETED, 100)
        self.ended_at = datetime.now()

    def fail(self, error: str) -> None:
        self.status = RestoreStatus.FAILED
        self.error = error
        self.ended_at = datetime.now()
