"""Snapshot model representing a local ZFS snapshot."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Snapshot(BaseModel):
    """Represents one point-in-time capture of a dataset. Immutable once listed."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "name": "autosnap_2024-01-15_02-00-00",
                "dataset": "tank/data",
                "created_at": "2024-01-15T02:00:00",
                "used_bytes": 1048576,
                "referenced_bytes": 536870912,
            }
        },
    )

    name: str = Field(..., description="Snapshot name (the part after '@')")
    dataset: str = Field(..., description="Owning dataset path")
    created_at: datetime = Field(..., description="Creation time")
    used_bytes: Optional[int] = Field(default=None, description="Space unique to this snapshot")
    referenced_bytes: Optional[int] = Field(default=None, description="Referenced data size")

    @property
    def full_name(self) -> str:
        """Return the ``dataset@name`` form used on the zfs command line."""
        return f"{self.dataset}@{self.name}"

    def sort_key(self):
        """Creation time ascending, name as tiebreak."""
        return (self.created_at, self.name)
