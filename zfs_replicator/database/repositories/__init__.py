"""Data access layer repositories."""

from zfs_replicator.database.repositories.replication_run_repository import (
    ReplicationRunRepository,
)

__all__ = ["ReplicationRunRepository"]
