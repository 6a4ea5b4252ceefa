"""Wiring of the long-lived service objects shared by the API and the timer."""

from dataclasses import dataclass
from typing import Optional

from zfs_replicator.config.settings import Settings
from zfs_replicator.database import get_session
from zfs_replicator.logging_config import get_logger
from zfs_replicator.services.cron_scheduler import CronSchedulerService
from zfs_replicator.services.notifications import build_notifier
from zfs_replicator.services.replication_history import ReplicationHistoryService
from zfs_replicator.services.replication_scheduler import ReplicationScheduler
from zfs_replicator.services.restore_manager import RestoreManager
from zfs_replicator.services.snapshot_store import ZFSPoolManager, ZFSSnapshotStore
from zfs_replicator.services.ssh_transport import SSHTransport

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """Everything one running instance owns. Nothing here is module-global."""

    settings: Settings
    store: ZFSSnapshotStore
    transport: SSHTransport
    replication_scheduler: ReplicationScheduler
    restore_manager: RestoreManager
    history: Optional[ReplicationHistoryService] = None
    cron_scheduler: Optional[CronSchedulerService] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        """Build the production object graph from settings."""
        store = ZFSSnapshotStore(
            dataset=settings.dataset,
            send_compression=settings.send_compression,
            recursive=settings.recursive,
        )
        transport = SSHTransport(
            host=settings.remote_host,
            port=settings.remote_port,
            user=settings.remote_user,
            private_key=settings.private_key,
            remote_dataset=settings.remote_dataset,
            mbuffer_size=settings.mbuffer_size,
            force_receive=settings.force_receive,
            connect_timeout=settings.ssh_connect_timeout_seconds,
        )
        history = ReplicationHistoryService(get_session)
        scheduler = ReplicationScheduler(
            store=store,
            transport=transport,
            notifier=build_notifier(settings),
            pool_manager=ZFSPoolManager(),
            retention=settings.snapshot_retention,
            history=history,
            max_workers=settings.worker_threads,
        )
        restore_manager = RestoreManager(
            store=store,
            transport=transport,
            default_remote_dataset=settings.remote_dataset,
            job_retention_seconds=settings.job_retention_seconds,
            max_workers=settings.worker_threads,
        )
        cron = CronSchedulerService(scheduler, restore_manager, settings=settings)
        return cls(
            settings=settings,
            store=store,
            transport=transport,
            replication_scheduler=scheduler,
            restore_manager=restore_manager,
            history=history,
            cron_scheduler=cron,
        )

    async def start(self) -> None:
        if self.cron_scheduler is not None:
            await self.cron_scheduler.start_scheduler()

    async def shutdown(self) -> None:
        """Stop the timer, give running work a grace period, close the SSH session."""
        grace = self.settings.shutdown_grace_seconds
        if self.cron_scheduler is not None:
            await self.cron_scheduler.stop_scheduler(grace)
        self.replication_scheduler.shutdown(grace)
        self.restore_manager.shutdown(grace)
        self.transport.close()
