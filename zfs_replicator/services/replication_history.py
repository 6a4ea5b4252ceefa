"""Service for recording and querying replication run history."""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zfs_replicator.database.models import ReplicationRunModel
from zfs_replicator.database.repositories import ReplicationRunRepository
from zfs_replicator.logging_config import get_logger
from zfs_replicator.models import ReplicationResult

logger = get_logger(__name__)


class ReplicationHistoryService:
    """
    Persists one row per replication attempt.

    Workers run outside any request, so each call opens and closes its own
    session from ``session_factory``.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        """Initialize the history service."""
        self.session_factory = session_factory

    def record_run(self, result: ReplicationResult, dataset: str, started_at: datetime) -> None:
        """
        Store the outcome of one attempt.

        Failures are logged and swallowed; history never decides a replication
        outcome.
        """
        db = self.session_factory()
        try:
            ReplicationRunRepository(db).create(
                snapshot_name=result.snapshot_name,
                dataset=dataset,
                send_type=result.plan.send_type if result.plan else None,
                incremental_base=result.plan.incremental_base if result.plan else None,
                trigger=result.trigger.value,
                status=result.status.value,
                started_at=started_at,
                finished_at=started_at + timedelta(seconds=result.duration_seconds),
                duration_seconds=result.duration_seconds,
                error_message=result.error,
            )
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Failed to record replication run for {result.snapshot_name}: {e}")
        finally:
            db.close()

    def get_recent_runs(self, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Get the most recent runs, newest first.

        Returns:
            List of run entries
        """
        db = self.session_factory()
        try:
            runs = ReplicationRunRepository(db).get_recent(limit=limit)
            return [_run_entry(run) for run in runs]
        finally:
            db.close()

    def get_last_success(self, dataset: str) -> Optional[Dict[str, Any]]:
        """Get the newest successful run for ``dataset``, or None if it never replicated."""
        db = self.session_factory()
        try:
            run = ReplicationRunRepository(db).get_last_successful(dataset)
            return _run_entry(run) if run is not None else None
        finally:
            db.close()


def _run_entry(run: ReplicationRunModel) -> Dict[str, Any]:
    return {
        "id": str(run.id),
        "snapshot_name": run.snapshot_name,
        "dataset": run.dataset,
        "send_type": run.send_type,
        "incremental_base": run.incremental_base,
        "trigger": run.trigger,
        "status": run.status,
        "started_at": run.started_at.isoformat(),
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        "duration_seconds": run.duration_seconds,
        "error_message": run.error_message,
    }
