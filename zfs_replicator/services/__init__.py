"""Business logic services."""

from zfs_replicator.services.notifications import (
    EmailNotifier,
    LoggingNotifier,
    MultiNotifier,
    SlackNotifier,
    build_notifier,
)
from zfs_replicator.services.replication_history import ReplicationHistoryService
from zfs_replicator.services.replication_scheduler import ReplicationScheduler
from zfs_replicator.services.restore_manager import RestoreManager
from zfs_replicator.services.snapshot_comparison import SnapshotComparisonService
from zfs_replicator.services.snapshot_store import SendStream, ZFSPoolManager, ZFSSnapshotStore
from zfs_replicator.services.ssh_transport import SSHTransport

__all__ = [
    "EmailNotifier",
    "LoggingNotifier",
    "MultiNotifier",
    "ReplicationHistoryService",
    "ReplicationScheduler",
    "RestoreManager",
    "SSHTransport",
    "SendStream",
    "SlackNotifier",
    "SnapshotComparisonService",
    "ZFSPoolManager",
    "ZFSSnapshotStore",
    "build_notifier",
]
