"""Snapshot API schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SnapshotResponse(BaseModel):
    """Schema for a local snapshot."""

    model_config = ConfigDict(from_attributes=True)

    name: str
    dataset: str
    created_at: datetime
    used_bytes: Optional[int] = None
    referenced_bytes: Optional[int] = None


class TriggerResponse(BaseModel):
    """Schema for an accepted on-demand trigger."""

    status: str = Field(default="accepted")
    message: str
