"""Logging for the replicator: console always, a rotating file when configured."""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from zfs_replicator.config import Settings, get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# These log every request or SSH packet at INFO.
QUIET_LOGGERS = ("uvicorn", "sqlalchemy.engine", "paramiko", "httpx")


def _rotating_handler(log_file: Path, settings: Settings) -> Optional[logging.Handler]:
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
    except OSError as e:
        warnings.warn(
            f"Could not set up file logging to {log_file}: {e}. "
            "Continuing with console logging only.",
            UserWarning,
        )
        return None


def setup_logging(log_file: Optional[Path] = None, settings: Optional[Settings] = None) -> None:
    """
    Replace the root logger's handlers.

    Replication runs and restores log to stdout. When ``log_file`` (or
    ``settings.log_file``) is set and its directory can be created, they also
    go to a rotating file; otherwise a warning is issued and only the console
    is used.
    """
    settings = settings or get_settings()
    log_file = log_file or settings.log_file
    level = getattr(logging, settings.log_level)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        file_handler = _rotating_handler(Path(log_file), settings)
        if file_handler is not None:
            handlers.append(file_handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
