"""Unit tests for CronSchedulerService."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import MagicMock

from zfs_replicator.config.settings import Settings
from zfs_replicator.exceptions import SendInProgressError
from zfs_replicator.models import RunTrigger
from zfs_replicator.services.cron_scheduler import (
    EVICTION_INTERVAL_SECONDS,
    CronJob,
    CronSchedulerService,
)

START = datetime(2024, 1, 15, 1, 0, 0)


def make_service(clock=lambda: START, **overrides):
    settings = Settings(_env_file=None, **overrides)
    replication_scheduler = MagicMock()
    restore_manager = MagicMock()
    service = CronSchedulerService(
        replication_scheduler,
        restore_manager=restore_manager,
        settings=settings,
        clock=clock,
    )
    return service, replication_scheduler, restore_manager


class TestCronJobs:
    """Job table and next-run arithmetic."""

    def test_default_jobs(self):
        service, _, _ = make_service()

        assert [job.name for job in service.jobs] == ["snapshot", "scrub", "retry"]

    def test_retry_job_optional(self):
        service, _, _ = make_service(retry_cron="")

        assert [job.name for job in service.jobs] == ["snapshot", "scrub"]

    def test_schedule_next(self):
        job = CronJob("snapshot", "0 2 * * *", lambda: None)

        assert job.schedule_next(START) == datetime(2024, 1, 15, 2, 0, 0)
        assert job.schedule_next(datetime(2024, 1, 15, 2, 0, 0)) == datetime(2024, 1, 16, 2, 0, 0)

    def test_due_jobs(self):
        service, _, _ = make_service()
        for job in service.jobs:
            job.schedule_next(START)

        assert [job.name for job in service.due_jobs(START)] == []
        due = service.due_jobs(datetime(2024, 1, 15, 2, 0, 0))
        assert {job.name for job in due} == {"snapshot", "retry"}

    def test_seconds_until_next_is_capped(self):
        service, _, _ = make_service(retry_cron="")
        for job in service.jobs:
            job.schedule_next(START)

        assert service.seconds_until_next(START) == EVICTION_INTERVAL_SECONDS
        assert service.seconds_until_next(datetime(2024, 1, 15, 1, 59, 30)) == 30.0
        assert service.seconds_until_next(datetime(2024, 1, 15, 3, 0, 0)) == 0.0

    def test_scheduled_snapshot_declines_when_busy(self):
        service, replication_scheduler, _ = make_service()
        replication_scheduler.perform_snapshot.side_effect = SendInProgressError()

        service._run_scheduled_snapshot()

        replication_scheduler.perform_snapshot.assert_called_once_with(RunTrigger.SCHEDULED)


class TestSchedulerLoop:
    """The asyncio timer."""

    def test_disabled_scheduler_does_not_start(self):
        service, _, _ = make_service(scheduler_enabled=False)

        asyncio.run(service.start_scheduler())

        assert service._task is None
        assert all(job.next_run is None for job in service.jobs)

    def test_due_jobs_are_dispatched(self):
        """Jobs due on the first tick run on worker threads."""
        times = iter([START])

        def clock():
            return next(times, START + timedelta(days=7))

        service, replication_scheduler, restore_manager = make_service(clock=clock)

        async def scenario():
            await service.start_scheduler()
            await asyncio.sleep(0.2)
            await service.stop_scheduler(grace_seconds=2)

        asyncio.run(scenario())

        replication_scheduler.perform_snapshot.assert_called_once_with(RunTrigger.SCHEDULED)
        replication_scheduler.perform_scrub.assert_called_once()
        replication_scheduler.perform_scheduled_retry.assert_called_once()
        restore_manager.evict_expired_jobs.assert_called()

    def test_failing_job_does_not_stop_loop(self):
        times = iter([START])

        def clock():
            return next(times, START + timedelta(days=7))

        service, replication_scheduler, _ = make_service(clock=clock)
        replication_scheduler.perform_scrub.side_effect = RuntimeError("zpool hung")

        async def scenario():
            await service.start_scheduler()
            await asyncio.sleep(0.2)
            running = service._running
            await service.stop_scheduler(grace_seconds=2)
            return running

        assert asyncio.run(scenario()) is True
        replication_scheduler.perform_snapshot.assert_called_once()
