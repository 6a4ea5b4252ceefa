"""Core data models for ZFS Replicator."""

from zfs_replicator.models.remote_dataset import RemoteDataset
from zfs_replicator.models.replication import (
    ReplicationResult,
    RunStatus,
    RunTrigger,
    SendPlan,
)
from zfs_replicator.models.restore_job import RestoreJob, RestoreStatus
from zfs_replicator.models.snapshot import Snapshot

__all__ = [
    "RemoteDataset",
    "ReplicationResult",
    "RestoreJob",
    "RestoreStatus",
    "RunStatus",
    "RunTrigger",
    "SendPlan",
    "Snapshot",
]
