"""Replication scheduler: snapshot, plan, send, retry and prune."""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Set

from zfs_replicator.exceptions import (
    PendingSendsError,
    PoolError,
    ReplicatorError,
    SendInProgressError,
    SnapshotNotFoundError,
    SnapshotStoreError,
)
from zfs_replicator.logging_config import get_logger
from zfs_replicator.models import ReplicationResult, RunStatus, RunTrigger, SendPlan
from zfs_replicator.naming import autosnap_name
from zfs_replicator.services.notifications import Notifier
from zfs_replicator.services.replication_history import ReplicationHistoryService
from zfs_replicator.services.snapshot_comparison import SnapshotComparisonService

logger = get_logger(__name__)

DEFAULT_RETENTION = 30


class ReplicationScheduler:
    """
    Drives snapshot replication to the backup host.

    Exactly one send runs at a time. The send lock is only ever acquired
    without blocking: a caller that finds it held gets SendInProgressError
    instead of waiting in line. The pending send queue is read and written
    only by the holder of that lock.
    """

    def __init__(
        self,
        store,
        transport,
        notifier: Notifier,
        pool_manager=None,
        retention: int = DEFAULT_RETENTION,
        history: Optional[ReplicationHistoryService] = None,
        max_workers: int = 4,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the scheduler.

        Args:
            store: Local snapshot store for the replicated dataset
            transport: Transport to the backup host
            notifier: Sink for success and failure notifications
            pool_manager: Pool operations for the integrity scan; None disables scrubs
            retention: Number of most recent local snapshots kept by pruning
            history: Optional persistent run history
            max_workers: Worker threads for on-demand triggers
            clock: Source of local wall-clock time for snapshot names
        """
        if retention < 1:
            raise ValueError("retention must be at least 1")
        self.store = store
        self.transport = transport
        self.notifier = notifier
        self.pool_manager = pool_manager
        self.retention = retention
        self.history = history
        self._clock = clock
        self._send_lock = threading.Lock()
        self._pending: List[str] = []
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="replication"
        )
        self._futures: Set[Future] = set()
        self._futures_lock = threading.Lock()
        self._accepting = True

    @property
    def dataset(self) -> str:
        return self.store.dataset

    @property
    def is_busy(self) -> bool:
        """True while a send or retry drain holds the send lock."""
        return self._send_lock.locked()

    @property
    def pending_send_count(self) -> int:
        return len(self._pending)

    def get_pending_sends(self) -> List[str]:
        """Return a copy of the pending send queue, oldest first."""
        return list(self._pending)

    # Replication runs

    def perform_snapshot(self, trigger: RunTrigger = RunTrigger.SCHEDULED) -> ReplicationResult:
        """
        Run one full replication cycle in the calling thread.

        Raises:
            SendInProgressError: If another send holds the lock
        """
        if not self._send_lock.acquire(blocking=False):
            raise SendInProgressError()
        try:
            return self._run_snapshot_locked(trigger)
        finally:
            self._send_lock.release()

    def _run_snapshot_locked(self, trigger: RunTrigger) -> ReplicationResult:
        logger.info(f"Starting {trigger.value} snapshot of {self.dataset}")

        if self._pending:
            logger.info(f"Attempting to retry {len(self._pending)} pending snapshots first")
            try:
                self._drain_pending_locked()
            except PendingSendsError as e:
                logger.warning(f"Pending sends not fully drained: {e}")

        started_at = self._clock()
        started = time.monotonic()
        snapshot_name = autosnap_name(started_at)

        try:
            self.store.create_snapshot(snapshot_name)
        except SnapshotStoreError as e:
            logger.error(f"Failed to create snapshot {snapshot_name}: {e}")
            self._notify_failure(snapshot_name, str(e))
            result = ReplicationResult(
                snapshot_name=snapshot_name,
                trigger=trigger,
                status=RunStatus.FAILED,
                duration_seconds=time.monotonic() - started,
                error=str(e),
                pending_sends=len(self._pending),
            )
            self._record(result, started_at)
            return result

        plan: Optional[SendPlan] = None
        try:
            plan = self._send_snapshot(snapshot_name)
        except ReplicatorError as e:
            duration = time.monotonic() - started
            logger.error(f"Failed to send snapshot {snapshot_name}: {e}")
            self._notify_failure(snapshot_name, str(e))
            self._enqueue_locked(snapshot_name)
            result = ReplicationResult(
                snapshot_name=snapshot_name,
                trigger=trigger,
                status=RunStatus.FAILED,
                duration_seconds=duration,
                error=str(e),
                pending_sends=len(self._pending),
            )
            self._record(result, started_at)
            return result

        duration = time.monotonic() - started
        logger.info(f"Successfully sent snapshot {snapshot_name} (took {duration:.1f}s)")
        self._notify_success(snapshot_name, timedelta(seconds=duration))
        result = ReplicationResult(
            snapshot_name=snapshot_name,
            trigger=trigger,
            status=RunStatus.SUCCESS,
            plan=plan,
            duration_seconds=duration,
            pending_sends=len(self._pending),
        )
        self._record(result, started_at)
        self._prune()
        return result

    def _send_snapshot(self, snapshot_name: str) -> Optional[SendPlan]:
        """
        Plan and execute the transfer of one local snapshot.

        Returns:
            The executed plan, or None if the remote already had the snapshot

        Raises:
            RemoteEnumerationError: If the remote snapshot list is unavailable
            SnapshotNotFoundError: If the snapshot no longer exists locally
            ReplicatorError: If the stream or the transfer fails
        """
        remote_names = self.transport.list_remote_snapshot_names()
        local_snapshots = self.store.list_snapshots()
        if not any(s.name == snapshot_name for s in local_snapshots):
            raise SnapshotNotFoundError(f"snapshot {self.dataset}@{snapshot_name} not found locally")

        plan = SnapshotComparisonService.compute_send_plan(
            snapshot_name, local_snapshots, remote_names
        )
        if plan is None:
            return None

        logger.info(f"Sending {plan.describe()}")
        if plan.is_incremental:
            stream = self.store.open_incremental_send_stream(plan.incremental_base, snapshot_name)
        else:
            stream = self.store.open_send_stream(snapshot_name)

        with stream:
            self.transport.send_stream(stream, plan.is_incremental)
        return plan

    def _enqueue_locked(self, snapshot_name: str) -> None:
        if snapshot_name in self._pending:
            logger.info(f"Snapshot {snapshot_name} already queued for retry")
            return
        self._pending.append(snapshot_name)
        logger.info(
            f"Added snapshot {snapshot_name} to retry queue ({len(self._pending)} pending)"
        )

    # Retry queue

    def retry_pending_sends(self) -> int:
        """
        Retry every queued snapshot now.

        Returns:
            Number of snapshots delivered

        Raises:
            SendInProgressError: If another send holds the lock
            PendingSendsError: If some snapshots are still pending afterwards
        """
        if not self._send_lock.acquire(blocking=False):
            raise SendInProgressError()
        try:
            return self._drain_pending_locked()
        finally:
            self._send_lock.release()

    def perform_scheduled_retry(self) -> None:
        """Retry sweep for the timer; skips quietly while a send is running."""
        if not self._send_lock.acquire(blocking=False):
            logger.debug("Scheduled retry skipped, send in progress")
            return
        try:
            if not self._pending:
                return
            logger.info(f"Scheduled retry: attempting to send {len(self._pending)} pending snapshots")
            self._drain_pending_locked()
        except PendingSendsError as e:
            logger.warning(f"Scheduled retry incomplete: {e}")
        finally:
            self._send_lock.release()

    def _drain_pending_locked(self) -> int:
        if not self._pending:
            logger.info("No pending snapshots to retry")
            return 0

        logger.info(f"Retrying {len(self._pending)} pending snapshot sends")
        still_pending: List[str] = []
        delivered = 0
        for snapshot_name in self._pending:
            started_at = self._clock()
            started = time.monotonic()
            try:
                plan = self._send_snapshot(snapshot_name)
            except SnapshotNotFoundError as e:
                logger.error(f"Dropping {snapshot_name} from retry queue: {e}")
                self._notify_failure(snapshot_name, str(e))
                self._record(
                    ReplicationResult(
                        snapshot_name=snapshot_name,
                        trigger=RunTrigger.RETRY,
                        status=RunStatus.FAILED,
                        error=str(e),
                    ),
                    started_at,
                )
                continue
            except ReplicatorError as e:
                logger.warning(f"Retry failed for snapshot {snapshot_name}: {e}")
                still_pending.append(snapshot_name)
                self._record(
                    ReplicationResult(
                        snapshot_name=snapshot_name,
                        trigger=RunTrigger.RETRY,
                        status=RunStatus.FAILED,
                        duration_seconds=time.monotonic() - started,
                        error=str(e),
                    ),
                    started_at,
                )
                continue

            delivered += 1
            logger.info(f"Successfully sent snapshot on retry: {snapshot_name}")
            self._notify_success(snapshot_name, None)
            self._record(
                ReplicationResult(
                    snapshot_name=snapshot_name,
                    trigger=RunTrigger.RETRY,
                    status=RunStatus.SUCCESS,
                    plan=plan,
                    duration_seconds=time.monotonic() - started,
                ),
                started_at,
            )

        self._pending = still_pending
        if still_pending:
            logger.warning(f"{len(still_pending)} snapshots still pending after retry")
            raise PendingSendsError(len(still_pending))

        logger.info("All pending snapshots successfully sent")
        return delivered

    # Pruning and scrub

    def _prune(self) -> None:
        """Destroy the oldest local snapshots beyond the retention count."""
        try:
            snapshots = self.store.list_snapshots()
        except SnapshotStoreError as e:
            logger.error(f"Failed to list snapshots for pruning: {e}")
            return

        excess = len(snapshots) - self.retention
        if excess <= 0:
            return

        for snapshot in snapshots[:excess]:
            try:
                self.store.destroy_snapshot(snapshot.name)
            except SnapshotStoreError as e:
                logger.error(f"Failed to delete old snapshot {snapshot.name}: {e}")
                continue
            logger.info(f"Deleted old snapshot: {snapshot.name}")

    def perform_scrub(self) -> List[str]:
        """
        Start an integrity scan on every pool.

        Returns:
            Pools on which a scrub was started
        """
        if self.pool_manager is None:
            logger.warning("No pool manager configured, skipping scrub")
            return []

        logger.info("Starting scrub of all pools")
        try:
            pools = self.pool_manager.list_pools()
        except PoolError as e:
            logger.error(f"Failed to get pools: {e}")
            return []

        started = []
        for pool in pools:
            try:
                self.pool_manager.scrub_pool(pool)
            except PoolError as e:
                logger.error(f"Failed to start scrub for pool {pool}: {e}")
                continue
            logger.info(f"Started scrub for pool: {pool}")
            started.append(pool)
        return started

    # On-demand triggers

    def trigger_snapshot(self, trigger: RunTrigger = RunTrigger.MANUAL) -> Future:
        """
        Start a replication run on a worker thread.

        The send lock is taken here, in the caller's thread, so a busy
        scheduler is reported immediately; the worker releases it.

        Raises:
            SendInProgressError: If another send holds the lock
        """
        if not self._send_lock.acquire(blocking=False):
            raise SendInProgressError()
        try:
            return self._submit(self._run_with_held_lock, trigger)
        except RuntimeError:
            self._send_lock.release()
            raise

    def _run_with_held_lock(self, trigger: RunTrigger) -> ReplicationResult:
        try:
            return self._run_snapshot_locked(trigger)
        except Exception:
            logger.exception(f"Unexpected error during {trigger.value} snapshot")
            raise
        finally:
            self._send_lock.release()

    def trigger_scrub(self) -> Future:
        """Start a scrub of every pool on a worker thread."""
        return self._submit(self.perform_scrub)

    def trigger_retry(self) -> Future:
        """Run ``retry_pending_sends`` on a worker thread."""
        return self._submit(self.retry_pending_sends)

    def _submit(self, fn, *args) -> Future:
        if not self._accepting:
            raise RuntimeError("replication scheduler is shutting down")
        future = self._executor.submit(fn, *args)
        with self._futures_lock:
            self._futures.add(future)
        future.add_done_callback(self._forget_future)
        return future

    def _forget_future(self, future: Future) -> None:
        with self._futures_lock:
            self._futures.discard(future)

    def shutdown(self, grace_seconds: float = 30.0) -> None:
        """Stop accepting work and wait up to ``grace_seconds`` for running work."""
        self._accepting = False
        with self._futures_lock:
            in_flight = set(self._futures)
        if in_flight:
            logger.info(f"Waiting up to {grace_seconds}s for {len(in_flight)} replication tasks")
            _, not_done = wait_for_futures(in_flight, timeout=grace_seconds)
            if not_done:
                logger.warning(f"{len(not_done)} replication tasks still running at shutdown")
        self._executor.shutdown(wait=False, cancel_futures=True)

    # Reporting

    def _notify_success(self, snapshot_name: str, duration: Optional[timedelta]) -> None:
        try:
            self.notifier.on_sync_success(snapshot_name, self.dataset, duration)
        except Exception as e:
            logger.error(f"Failed to send success notification for {snapshot_name}: {e}")

    def _notify_failure(self, snapshot_name: str, error: str) -> None:
        try:
            self.notifier.on_sync_failure(snapshot_name, self.dataset, error)
        except Exception as e:
            logger.error(f"Failed to send failure notification for {snapshot_name}: {e}")

    def _record(self, result: ReplicationResult, started_at: datetime) -> None:
        if self.history is not None:
            self.history.record_run(result, self.dataset, started_at)
