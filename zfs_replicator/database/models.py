"""SQLAlchemy database models."""

from sqlalchemy import Column, DateTime, Float, String, Text

from zfs_replicator.database.base import BaseModel


class ReplicationRunModel(BaseModel):
    """One attempt to deliver a snapshot to the backup host."""

    __tablename__ = "replication_runs"

    snapshot_name = Column(String(255), nullable=False, index=True)  # type: ignore[assignment]
    dataset = Column(String(255), nullable=False, index=True)  # type: ignore[assignment]
    send_type = Column(String(20), nullable=True)  # type: ignore[assignment]
    incremental_base = Column(String(255), nullable=True)  # type: ignore[assignment]
    trigger = Column(String(20), nullable=False)  # type: ignore[assignment]
    status = Column(String(20), nullable=False, index=True)  # type: ignore[assignment]
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)  # type: ignore[assignment]
    finished_at = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    duration_seconds = Column(Float, nullable=True)  # type: ignore[assignment]
    error_message = Column(Text, nullable=True)  # type: ignore[assignment]
