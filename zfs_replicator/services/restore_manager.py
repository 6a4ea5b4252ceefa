"""Restore jobs: pull a remote snapshot back into a local dataset."""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

from zfs_replicator.exceptions import (
    ReplicatorError,
    RestoreConfirmationError,
    RestoreJobNotFoundError,
)
from zfs_replicator.logging_config import get_logger
from zfs_replicator.models import RestoreJob, RestoreStatus
from zfs_replicator.naming import validate_dataset_name, validate_snapshot_name

logger = get_logger(__name__)

DEFAULT_JOB_RETENTION_SECONDS = 3600

SAFETY_WARNING_TEMPLATE = (
    "DESTRUCTIVE OPERATION WARNING\n\n"
    "Target dataset '{target}' contains data that will be PERMANENTLY LOST.\n"
    "ZFS restore will roll back to the snapshot, destroying any changes made "
    "after the last snapshot.\n\n"
    "DO NOT proceed if you have active workloads writing to this filesystem!\n\n"
    "To proceed:\n"
    "1. STOP all applications writing to {target}\n"
    "2. Manually confirm you want to lose uncommitted data\n"
    "3. Confirm the restore job to proceed\n\n"
    "This action cannot be undone!"
)


class RestoreManager:
    """
    Runs restore jobs and keeps the in-memory job table.

    Each job runs on its own worker and only ever mutates its own RestoreJob.
    Jobs are never persisted; terminal jobs are evicted from the table once
    ``job_retention_seconds`` have passed since they ended.
    """

    def __init__(
        self,
        store,
        transport,
        default_remote_dataset: str = "",
        job_retention_seconds: float = DEFAULT_JOB_RETENTION_SECONDS,
        max_workers: int = 4,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.transport = transport
        self.default_remote_dataset = default_remote_dataset
        self.job_retention = timedelta(seconds=job_retention_seconds)
        self._clock = clock
        self._jobs: Dict[str, RestoreJob] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="restore")
        self._futures: Set[Future] = set()
        self._futures_lock = threading.Lock()
        self._accepting = True

    # Job table

    def _new_job_id(self) -> str:
        job_id = f"restore_{time.time_ns()}"
        while job_id in self._jobs:
            job_id = f"restore_{time.time_ns()}"
        return job_id

    def get_job(self, job_id: str) -> Optional[RestoreJob]:
        """Return a copy of the job, or None if no such job is known."""
        self.evict_expired_jobs()
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job is not None else None

    def list_jobs(self) -> List[RestoreJob]:
        """Return copies of every known job, in no particular order."""
        self.evict_expired_jobs()
        with self._lock:
            return [job.model_copy() for job in self._jobs.values()]

    def evict_expired_jobs(self, now: Optional[datetime] = None) -> int:
        """
        Drop terminal jobs whose retention window has elapsed.

        Returns:
            Number of jobs evicted
        """
        now = now or self._clock()
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.is_terminal
                and job.ended_at is not None
                and now - job.ended_at >= self.job_retention
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired restore jobs")
        return len(expired)

    # Operations

    def start_restore(
        self,
        snapshot_name: str,
        target_dataset: str,
        source_dataset: Optional[str] = None,
    ) -> RestoreJob:
        """
        Register a restore job and start it on a worker.

        Returns:
            A copy of the new job

        Raises:
            ValueError: If a snapshot or dataset name is invalid
            RuntimeError: If the manager is shutting down
        """
        validate_snapshot_name(snapshot_name)
        validate_dataset_name(target_dataset)
        if source_dataset:
            validate_dataset_name(source_dataset)

        self._check_accepting()
        self.evict_expired_jobs()
        with self._lock:
            job = RestoreJob(
                id=self._new_job_id(),
                snapshot_name=snapshot_name,
                source_dataset=source_dataset or "",
                target_dataset=target_dataset,
            )
            self._jobs[job.id] = job
            snapshot = job.model_copy()

        self._submit(job)
        return snapshot

    def confirm_destructive_restore(self, job_id: str) -> RestoreJob:
        """
        Confirm a job waiting on the safety gate and re-run it from the safety check.

        Raises:
            RestoreJobNotFoundError: If the job is unknown
            RestoreConfirmationError: If the job is not awaiting confirmation
            RuntimeError: If the manager is shutting down
        """
        self._check_accepting()
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise RestoreJobNotFoundError(job_id)
            if job.status != RestoreStatus.AWAITING_CONFIRMATION:
                raise RestoreConfirmationError(
                    f"restore job {job_id} is not awaiting confirmation (status: {job.status.value})"
                )
            if not job.requires_confirmation:
                raise RestoreConfirmationError(f"restore job {job_id} does not require confirmation")

            job.force_confirmed = True
            job.requires_confirmation = False
            job.safety_warning = ""
            snapshot = job.model_copy()

        logger.warning(
            f"User confirmed destructive restore for job {job_id}, proceeding with data loss"
        )
        self._submit(job)
        return snapshot

    # Worker

    def _check_accepting(self) -> None:
        if not self._accepting:
            raise RuntimeError("restore manager is shutting down")

    def _submit(self, job: RestoreJob) -> None:
        future = self._executor.submit(self._run_job, job)
        with self._futures_lock:
            self._futures.add(future)
        future.add_done_callback(self._forget_future)

    def _forget_future(self, future: Future) -> None:
        with self._futures_lock:
            self._futures.discard(future)

    def _run_job(self, job: RestoreJob) -> None:
        try:
            self._perform_restore(job)
        except Exception as e:
            logger.exception(f"Restore job {job.id} failed with unexpected error")
            job.fail(f"restore failed unexpectedly: {e}")

    def _fail(self, job: RestoreJob, message: str) -> None:
        job.fail(message)
        logger.error(f"Restore job {job.id} failed: {message}")

    def _perform_restore(self, job: RestoreJob) -> None:
        source_info = job.source_dataset or f"default remote dataset {self.default_remote_dataset}"
        logger.info(
            f"Starting restore job {job.id}: {source_info}@{job.snapshot_name} -> {job.target_dataset}"
        )

        job.advance(RestoreStatus.SAFETY_CHECK, 5)
        try:
            uncommitted = self._has_uncommitted_data(job.target_dataset)
        except ReplicatorError as e:
            self._fail(job, f"failed to check target dataset: {e}")
            return

        if uncommitted and not job.force_confirmed:
            job.safety_warning = SAFETY_WARNING_TEMPLATE.format(target=job.target_dataset)
            job.requires_confirmation = True
            job.status = RestoreStatus.AWAITING_CONFIRMATION
            logger.warning(
                f"Restore job {job.id} requires manual confirmation, "
                f"target dataset {job.target_dataset} has uncommitted data"
            )
            return

        job.advance(RestoreStatus.VERIFYING, 10)
        try:
            remote_snapshots = self.transport.list_remote_snapshot_names(job.source_dataset or None)
        except ReplicatorError as e:
            self._fail(job, f"failed to list snapshots on {source_info}: {e}")
            return
        if job.snapshot_name not in remote_snapshots:
            self._fail(job, f"snapshot {job.snapshot_name} not found on remote server")
            return

        job.advance(RestoreStatus.PREPARING, 20)
        try:
            if self.store.dataset_exists(job.target_dataset):
                logger.info(f"Target dataset {job.target_dataset} exists, will be received into")
        except ReplicatorError as e:
            self._fail(job, f"failed to check if dataset exists: {e}")
            return

        job.advance(RestoreStatus.RESTORING, 30)
        mode = "DESTRUCTIVE mode (user confirmed)" if job.force_confirmed else "SAFE mode"
        logger.info(f"Restore job {job.id}: using {mode}")
        try:
            self.transport.restore_from_remote(
                job.source_dataset or None,
                job.snapshot_name,
                job.target_dataset,
                force_overwrite=job.force_confirmed,
            )
        except ReplicatorError as e:
            self._fail(job, f"restore failed: {e}")
            return

        job.advance(RestoreStatus.VERIFYING, 90)
        try:
            restored = self.store.list_dataset_snapshots(job.target_dataset)
        except ReplicatorError as e:
            self._fail(job, f"restore verification failed: {e}")
            return
        if not any(s.name == job.snapshot_name for s in restored):
            self._fail(job, "restore verification failed: restored snapshot not found in target dataset")
            return

        job.complete()
        logger.info(f"Restore job {job.id} completed successfully")

    def _has_uncommitted_data(self, dataset: str) -> bool:
        """
        Report whether a restore into ``dataset`` could destroy data.

        A dataset with no snapshot counts as holding uncommitted data, since
        there is nothing to compare it against.
        """
        if not self.store.dataset_exists(dataset):
            return False
        snapshots = self.store.list_dataset_snapshots(dataset)
        if not snapshots:
            logger.info(f"Dataset {dataset} exists without snapshots, treating as uncommitted data")
            return True
        return self.store.has_changes_since(dataset, snapshots[-1].name)

    def shutdown(self, grace_seconds: float = 30.0) -> None:
        """Wait up to ``grace_seconds`` for running restores, then stop the workers."""
        self._accepting = False
        with self._futures_lock:
            in_flight = set(self._futures)
        if in_flight:
            logger.info(f"Waiting up to {grace_seconds}s for {len(in_flight)} restore jobs")
            _, not_done = wait_for_futures(in_flight, timeout=grace_seconds)
            if not_done:
                logger.warning(f"{len(not_done)} restore jobs still running at shutdown")
        self._executor.shutdown(wait=False, cancel_futures=True)
