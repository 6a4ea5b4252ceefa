"""Restore API schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from zfs_replicator.models import RestoreStatus
from zfs_replicator.naming import validate_dataset_name, validate_snapshot_name


class RestoreRequest(BaseModel):
    """Schema for requesting a restore."""

    snapshot_name: str = Field(..., description="Snapshot to restore")
    target_dataset: str = Field(..., description="Local dataset to receive into")
    source_dataset: Optional[str] = Field(
        None, description="Remote dataset holding the snapshot; defaults to the configured one"
    )

    @field_validator("snapshot_name")
    @classmethod
    def validate_snapshot(cls, v: str) -> str:
        return validate_snapshot_name(v)

    @field_validator("target_dataset")
    @classmethod
    def validate_target(cls, v: str) -> str:
        return validate_dataset_name(v)

    @field_validator("source_dataset")
    @classmethod
    def validate_source(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        return validate_dataset_name(v)


class RestoreJobResponse(BaseModel):
    """Schema for a restore job."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    snapshot_name: str
    source_dataset: str
    target_dataset: str
    status: RestoreStatus
    progress: int
    started_at: datetime
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
    requires_confirmation: bool
    safety_warning: str
    force_confirmed: bool
