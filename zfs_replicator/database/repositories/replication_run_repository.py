"""Repository for ReplicationRun operations."""

from typing import List, Optional

from sqlalchemy.orm import Session

from zfs_replicator.database.models import ReplicationRunModel
from zfs_replicator.database.repositories.base_repository import BaseRepository


class ReplicationRunRepository(BaseRepository[ReplicationRunModel]):
    """Repository for replication run history."""

    def __init__(self, db: Session):
        """Initialize replication run repository."""
        super().__init__(ReplicationRunModel, db)

    def get_recent(self, limit: int = 50) -> List[ReplicationRunModel]:
        """Get the most recent runs, newest first."""
        return (
            self.db.query(ReplicationRunModel)
            .order_by(ReplicationRunModel.started_at.desc())
            .limit(limit)
            .all()
        )

    def get_last_successful(self, dataset: str) -> Optional[ReplicationRunModel]:
        """Get the newest successful run for a dataset."""
        return (
            self.db.query(ReplicationRunModel)
            .filter(
                ReplicationRunModel.dataset == dataset,
                ReplicationRunModel.status == "success",
            )
            .order_by(ReplicationRunModel.started_at.desc())
            .first()
        )
