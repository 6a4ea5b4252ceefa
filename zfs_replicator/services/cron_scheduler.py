"""Background timer firing scheduled snapshot, scrub and retry jobs."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Set

from croniter import croniter

from zfs_replicator.config import get_settings
from zfs_replicator.config.settings import Settings
from zfs_replicator.exceptions import SendInProgressError
from zfs_replicator.logging_config import get_logger
from zfs_replicator.models import RunTrigger
from zfs_replicator.services.replication_scheduler import ReplicationScheduler
from zfs_replicator.services.restore_manager import RestoreManager

logger = get_logger(__name__)

EVICTION_INTERVAL_SECONDS = 60.0


@dataclass
class CronJob:
    """A blocking action fired whenever its cron expression comes due."""

    name: str
    expression: str
    action: Callable[[], object]
    next_run: Optional[datetime] = field(default=None)

    def schedule_next(self, after: datetime) -> datetime:
        self.next_run = croniter(self.expression, after).get_next(datetime)
        return self.next_run


class CronSchedulerService:
    """Runs scheduled jobs from an asyncio task inside the API process."""

    def __init__(
        self,
        replication_scheduler: ReplicationScheduler,
        restore_manager: Optional[RestoreManager] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the cron scheduler service."""
        self.replication_scheduler = replication_scheduler
        self.restore_manager = restore_manager
        self.settings = settings or get_settings()
        self._clock = clock
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self.jobs: List[CronJob] = self._build_jobs()

    def _build_jobs(self) -> List[CronJob]:
        jobs = [
            CronJob("snapshot", self.settings.snapshot_cron, self._run_scheduled_snapshot),
            CronJob("scrub", self.settings.scrub_cron, self.replication_scheduler.perform_scrub),
        ]
        if self.settings.retry_cron:
            jobs.append(
                CronJob(
                    "retry",
                    self.settings.retry_cron,
                    self.replication_scheduler.perform_scheduled_retry,
                )
            )
        return jobs

    def _run_scheduled_snapshot(self) -> None:
        try:
            self.replication_scheduler.perform_snapshot(RunTrigger.SCHEDULED)
        except SendInProgressError:
            logger.warning("Scheduled snapshot skipped, a send is already in progress")

    async def start_scheduler(self) -> None:
        """Start the background timer."""
        if self._running:
            logger.warning("Cron scheduler is already running")
            return

        if not self.settings.scheduler_enabled:
            logger.info("Scheduled jobs are disabled in configuration")
            return

        now = self._clock()
        for job in self.jobs:
            job.schedule_next(now)
            logger.info(f"Scheduled {job.name} job ({job.expression}), next run {job.next_run}")

        self._running = True
        self._task = asyncio.create_task(self._scheduler_loop())
        logger.info("Cron scheduler started")

    async def stop_scheduler(self, grace_seconds: Optional[float] = None) -> None:
        """Stop firing jobs and wait a bounded time for jobs already running."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        if self._in_flight:
            grace = (
                grace_seconds if grace_seconds is not None else self.settings.shutdown_grace_seconds
            )
            logger.info(f"Waiting up to {grace}s for {len(self._in_flight)} scheduled jobs")
            _, pending = await asyncio.wait(self._in_flight, timeout=grace)
            if pending:
                logger.warning(f"{len(pending)} scheduled jobs still running at shutdown")
        logger.info("Cron scheduler stopped")

    def due_jobs(self, now: datetime) -> List[CronJob]:
        return [job for job in self.jobs if job.next_run is not None and job.next_run <= now]

    def seconds_until_next(self, now: datetime) -> float:
        """Seconds until the earliest job, capped at the eviction interval."""
        upcoming = [job.next_run for job in self.jobs if job.next_run is not None]
        if not upcoming:
            return EVICTION_INTERVAL_SECONDS
        delay = (min(upcoming) - now).total_seconds()
        return max(0.0, min(delay, EVICTION_INTERVAL_SECONDS))

    async def _scheduler_loop(self) -> None:
        """Main loop: fire due jobs, evict old restore jobs, sleep."""
        while self._running:
            now = self._clock()
            try:
                for job in self.due_jobs(now):
                    self._dispatch(job)
                    job.schedule_next(now)
                    logger.debug(f"Next {job.name} run at {job.next_run}")
                if self.restore_manager is not None:
                    self.restore_manager.evict_expired_jobs(now)
            except Exception as e:
                logger.error(f"Error in cron scheduler loop: {e}", exc_info=True)

            try:
                await asyncio.sleep(self.seconds_until_next(self._clock()))
            except asyncio.CancelledError:
                break

    def _dispatch(self, job: CronJob) -> None:
        logger.info(f"Running scheduled {job.name} job")
        task = asyncio.create_task(self._run_job(job))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run_job(self, job: CronJob) -> None:
        try:
            await asyncio.to_thread(job.action)
        except Exception as e:
            logger.error(f"Scheduled {job.name} job failed: {e}", exc_info=True)
