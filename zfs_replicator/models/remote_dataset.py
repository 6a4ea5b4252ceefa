"""Remote dataset model."""

from typing import List

from pydantic import BaseModel, Field


class RemoteDataset(BaseModel):
    """A dataset on the backup host together with its snapshot names."""

    name: str = Field(..., description="Remote dataset path")
    snapshots: List[str] = Field(default_factory=list, description="Snapshot names, oldest first")
