"""Database engine creation and initialization."""

import os
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from zfs_replicator.config import get_settings
from zfs_replicator.database.base import Base
from zfs_replicator.logging_config import get_logger

logger = get_logger(__name__)

SessionLocal = None


def _ensure_database_directory(database_url: str) -> None:
    """
    Ensure the parent directory for a SQLite database file exists.

    Raises:
        OSError: If the directory cannot be created
        PermissionError: If the directory is not writable
    """
    if not database_url.startswith("sqlite:///") or database_url == "sqlite:///:memory:":
        return

    parent_dir = Path(database_url.replace("sqlite:///", "", 1)).parent

    if not parent_dir.exists():
        try:
            parent_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created database directory: {parent_dir}")
        except OSError as e:
            error_msg = (
                f"Failed to create database directory '{parent_dir}': {e}. "
                f"Set ZFS_REPLICATOR_DATABASE_URL to a path whose directory is writable."
            )
            logger.error(error_msg)
            raise OSError(error_msg) from e

    if not os.access(parent_dir, os.W_OK):
        error_msg = f"Database directory '{parent_dir}' is not writable."
        logger.error(error_msg)
        raise PermissionError(error_msg)


def create_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create the database engine and bind the module session factory to it.

    Args:
        database_url: Overrides the configured database URL
    """
    global SessionLocal

    settings = get_settings()
    url = database_url or settings.database_url
    _ensure_database_directory(url)

    engine = sa_create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
        echo=settings.debug,
    )

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return engine


def init_db(database_url: Optional[str] = None) -> None:
    """Create the engine and every table that does not exist yet."""
    import zfs_replicator.database.models  # noqa: F401

    try:
        engine = create_engine(database_url)
    except (OSError, PermissionError) as e:
        raise RuntimeError(f"Cannot initialize database: {e}") from e

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")
