"""Configuration validation service."""

import os
import shutil
from pathlib import Path
from typing import Iterable, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from zfs_replicator.config.settings import Settings
from zfs_replicator.logging_config import get_logger

logger = get_logger(__name__)

REQUIRED_BINARIES = ("zfs", "zpool")
INSTALL_HINTS = {
    "zfs": "zfsutils-linux package",
    "zpool": "zfsutils-linux package",
}


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        """
        Initialize configuration error.

        Args:
            message: Error message
            suggestion: Optional suggestion for fixing the issue
        """
        self.message = message
        self.suggestion = suggestion
        full_message = message
        if suggestion:
            full_message = f"{message}\n\nSuggestion: {suggestion}"
        super().__init__(full_message)


def validate_configuration(settings: Settings) -> None:
    """
    Validate application configuration on startup.

    Checks the replication settings, the SSH key, the ZFS command line tools
    and database connectivity, collecting every problem before raising.

    Raises:
        ConfigurationError: If any validation fails
    """
    logger.info("Validating configuration...")

    errors = []
    checks = (
        ("Replication configuration", lambda: validate_replication_config(settings)),
        ("SSH configuration", lambda: validate_ssh_config(settings)),
        ("System dependencies", lambda: validate_system_dependencies()),
        ("Database configuration", lambda: validate_database_config(settings)),
    )
    for label, check in checks:
        try:
            check()
            logger.debug("%s validated", label)
        except ConfigurationError as e:
            errors.append(str(e))

    if errors:
        error_message = "Configuration validation failed:\n\n" + "\n\n".join(
            f"  - {error}" for error in errors
        )
        raise ConfigurationError(
            error_message,
            suggestion="Fix the configuration issues above before starting the service.",
        )

    logger.info("Configuration validation passed")


def validate_replication_config(settings: Settings) -> None:
    """
    Validate that the local and remote datasets are configured.

    Raises:
        ConfigurationError: If a required dataset setting is missing
    """
    if not settings.dataset:
        raise ConfigurationError(
            "dataset is not configured",
            suggestion="Set 'dataset' in zfs_replicator.yaml or ZFS_REPLICATOR_DATASET",
        )
    if not settings.remote_dataset:
        raise ConfigurationError(
            "remote_dataset is not configured",
            suggestion="Set 'remote_dataset' to the dataset that receives snapshots on the backup host",
        )


def validate_ssh_config(settings: Settings) -> None:
    """
    Validate SSH connection settings and the private key file.

    Raises:
        ConfigurationError: If SSH settings are incomplete or the key is unreadable
    """
    if not settings.remote_host:
        raise ConfigurationError(
            "remote_host is not configured",
            suggestion="Set 'remote_host' to the backup server address",
        )
    if not settings.remote_user:
        raise ConfigurationError("remote_user cannot be empty")

    key_path = settings.private_key
    if key_path is None:
        raise ConfigurationError(
            "private_key is not configured",
            suggestion="Set 'private_key' to the absolute path of the SSH private key",
        )
    if not key_path.is_absolute():
        raise ConfigurationError(f"private_key must be an absolute path, got '{key_path}'")
    if not key_path.exists() or not os.access(key_path, os.R_OK):
        raise ConfigurationError(
            f"private_key '{key_path}' does not exist or is not readable",
            suggestion=f"Check the path and permissions: chmod 600 {key_path}",
        )


def validate_system_dependencies(binaries: Iterable[str] = REQUIRED_BINARIES) -> None:
    """
    Ensure the ZFS command line tools are on PATH.

    Raises:
        ConfigurationError: If a required command cannot be found
    """
    missing = [name for name in binaries if shutil.which(name) is None]
    if missing:
        hints = ", ".join(f"{name} ({INSTALL_HINTS.get(name, 'appropriate package')})" for name in missing)
        raise ConfigurationError(
            f"Required commands not found: {hints}",
            suggestion="Install the ZFS userland tools and make sure they are on PATH",
        )


def validate_database_config(settings: Settings) -> None:
    """
    Validate database configuration and connectivity.

    Raises:
        ConfigurationError: If database configuration is invalid
    """
    database_url = settings.database_url

    if database_url.startswith("sqlite:///"):
        db_path = Path(database_url.replace("sqlite:///", "", 1))
        parent_dir = db_path.parent

        if parent_dir.exists():
            if not os.access(parent_dir, os.W_OK):
                raise ConfigurationError(
                    f"Database directory '{parent_dir}' is not writable",
                    suggestion=f"Fix permissions with: chmod 755 {parent_dir}",
                )
        else:
            try:
                parent_dir.mkdir(parents=True, exist_ok=True)
                logger.info("Created database directory: %s", parent_dir)
            except (OSError, PermissionError) as e:
                raise ConfigurationError(
                    f"Cannot create database directory '{parent_dir}': {e}",
                    suggestion=(
                        f"Create the directory manually: mkdir -p {parent_dir}\n"
                        f"Or set ZFS_REPLICATOR_DATABASE_URL to a path where the directory exists"
                    ),
                ) from e

        connect_args = {"check_same_thread": False}
    else:
        connect_args = {"connect_timeout": 5}

    try:
        engine = create_engine(database_url, connect_args=connect_args)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        engine.dispose()
        logger.debug("Database connection test passed")
    except OperationalError as e:
        raise ConfigurationError(
            f"Cannot connect to database at '{database_url}': {e}",
            suggestion="Check the database URL and that the database server is reachable",
        ) from e
