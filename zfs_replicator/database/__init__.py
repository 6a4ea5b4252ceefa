"""Database configuration and session management."""

from zfs_replicator.database.base import Base, BaseModel, get_db, get_session
from zfs_replicator.database.engine import create_engine, init_db

__all__ = ["Base", "BaseModel", "get_db", "get_session", "create_engine", "init_db"]
