"""Application settings and configuration."""

import os
import re
import socket
from pathlib import Path
from typing import List, Optional

import yaml  # type: ignore[import-untyped]
from croniter import croniter
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from zfs_replicator import __version__
from zfs_replicator.naming import validate_dataset_name

# Optional TOML support
try:
    import tomli
except ImportError:
    tomli = None  # type: ignore[assignment, misc]

ENV_PREFIX = "ZFS_REPLICATOR_"


class Settings(BaseSettings):
    """Application settings with environment variable and file support."""

    # Application
    app_name: str = Field(default="zfs-replicator", description="Application name")
    app_version: str = Field(default=__version__, description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Optional rotating log file")
    log_max_bytes: int = Field(default=10 * 1024 * 1024, description="Max log file size")
    log_backup_count: int = Field(default=5, description="Number of rotated log files to keep")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    api_prefix: str = Field(default="/api/v1", description="API route prefix")
    admin_password_env: str = Field(
        default="ZFS_REPLICATOR_ADMIN_PASSWORD",
        description="Name of the environment variable holding the admin password",
    )

    # Database (replication history)
    database_url: str = Field(
        default="sqlite:///./zfs_replicator.db", description="Database connection URL"
    )

    # ZFS
    dataset: str = Field(default="", description="Local dataset to snapshot and replicate")
    send_compression: str = Field(
        default="lz4", description="Send compressed stream when non-empty (zfs send -c)"
    )
    recursive: bool = Field(default=True, description="Snapshot and send child datasets")
    snapshot_retention: int = Field(
        default=30, description="Number of most recent local snapshots kept by pruning"
    )

    # SSH transport
    remote_host: str = Field(default="", description="Backup host name or address")
    remote_port: int = Field(default=22, description="Backup host SSH port")
    remote_user: str = Field(default="root", description="SSH user on the backup host")
    private_key: Optional[Path] = Field(default=None, description="Absolute path to SSH key")
    remote_dataset: str = Field(default="", description="Dataset receiving the stream remotely")
    mbuffer_size: str = Field(
        default="1G", description="mbuffer memory on the backup host; empty disables mbuffer"
    )
    force_receive: bool = Field(
        default=True, description="Use zfs receive -F on the backup host"
    )
    ssh_connect_timeout_seconds: float = Field(default=30.0, description="SSH connect timeout")

    # Schedule
    scheduler_enabled: bool = Field(default=True, description="Run scheduled jobs")
    snapshot_cron: str = Field(default="0 2 * * *", description="Snapshot + replicate schedule")
    scrub_cron: str = Field(default="0 3 * * 0", description="Pool integrity scan schedule")
    retry_cron: Optional[str] = Field(
        default="*/30 * * * *", description="Pending send retry sweep schedule"
    )
    shutdown_grace_seconds: float = Field(
        default=30.0, description="Grace period for in-flight work at shutdown"
    )
    job_retention_seconds: int = Field(
        default=3600, description="How long finished restore jobs stay visible"
    )
    worker_threads: int = Field(default=4, description="Worker threads for background jobs")

    # Notifications
    slack_enabled: bool = Field(default=False, description="Send Slack notifications")
    slack_webhook_url: str = Field(default="", description="Slack incoming webhook URL")
    slack_channel: str = Field(default="", description="Slack channel override")
    slack_username: str = Field(default="ZFS Replicator", description="Slack display name")
    slack_icon_emoji: str = Field(default=":floppy_disk:", description="Slack icon")
    slack_alert_on_sync: bool = Field(default=True, description="Notify on sync outcomes")
    smtp_host: str = Field(default="", description="SMTP server; empty disables email")
    smtp_port: int = Field(default=587, description="SMTP port")
    smtp_user: str = Field(default="", description="SMTP user")
    smtp_password: str = Field(default="", description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Use STARTTLS")
    email_from: str = Field(default="", description="Sender address")
    email_to: List[str] = Field(default_factory=list, description="Recipient addresses")
    notification_timeout_seconds: float = Field(default=10.0, description="Delivery timeout")

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("sqlite:///", "postgresql://", "postgresql+psycopg2://")):
            raise ValueError(
                "database_url must start with sqlite:///, postgresql://, or postgresql+psycopg2://"
            )
        return v

    @field_validator("port", "remote_port", "smtp_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port number is in valid range."""
        if not (1 <= v <= 65535):
            raise ValueError(f"port must be between 1 and 65535, got {v}")
        return v

    @field_validator("api_prefix")
    @classmethod
    def validate_api_prefix(cls, v: str) -> str:
        """Validate API prefix format."""
        if not v.startswith("/"):
            raise ValueError(f"api_prefix must start with '/', got '{v}'")
        if not re.match(r"^/[a-zA-Z0-9/_-]*$", v):
            raise ValueError(
                "api_prefix contains invalid characters. Use only alphanumeric, '/', '_', and '-'"
            )
        return v.rstrip("/") if v != "/" else v

    @field_validator("dataset", "remote_dataset")
    @classmethod
    def validate_dataset(cls, v: str) -> str:
        """Validate dataset paths when they are set."""
        if v:
            validate_dataset_name(v)
        return v

    @field_validator("snapshot_cron", "scrub_cron", "retry_cron")
    @classmethod
    def validate_cron(cls, v: Optional[str]) -> Optional[str]:
        """Validate cron expressions."""
        if v is None or v == "":
            return None
        if not croniter.is_valid(v):
            raise ValueError(f"invalid cron expression: '{v}'")
        return v

    @field_validator("snapshot_retention")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        """Retention must keep at least one snapshot as incremental base."""
        if v < 1:
            raise ValueError(f"snapshot_retention must be at least 1, got {v}")
        return v

    @field_validator("mbuffer_size")
    @classmethod
    def validate_mbuffer_size(cls, v: str) -> str:
        """mbuffer sizes look like 512M or 1G."""
        if v and not re.match(r"^[0-9]+[kKmMgG%]?$", v):
            raise ValueError(f"mbuffer_size must look like '1G' or '512M', got '{v}'")
        return v

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Validate host is a valid IP address or hostname."""
        if v in ("0.0.0.0", "127.0.0.1", "localhost", "*"):
            return v

        try:
            socket.inet_aton(v)
            return v
        except (socket.error, OSError):
            pass

        if not re.match(
            r"^[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?)*$",
            v,
        ):
            raise ValueError(f"host must be a valid IP address or hostname, got '{v}'")
        return v

    @model_validator(mode="after")
    def validate_cross_fields(self) -> "Settings":
        """Validate cross-field dependencies."""
        if self.slack_enabled and not self.slack_webhook_url:
            raise ValueError("slack_webhook_url is required when slack_enabled is true")
        if self.smtp_host and not (self.email_from and self.email_to):
            raise ValueError("email_from and email_to are required when smtp_host is set")
        return self

    def get_admin_password(self) -> str:
        """Read the admin password from the configured environment variable."""
        return os.environ.get(self.admin_password_env, "")

    @classmethod
    def from_file(cls, config_path: Path) -> "Settings":
        """Load settings from a YAML or TOML file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        suffix = config_path.suffix.lower()
        if suffix == ".yaml" or suffix == ".yml":
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    config_data = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ValueError(f"Error parsing YAML file: {exc}") from exc
        elif suffix == ".toml":
            if tomli is None:
                raise ImportError(
                    "TOML support requires 'tomli' package. Install with: pip install tomli"
                )
            with open(config_path, "rb") as f:
                config_data = tomli.load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {suffix}")

        # Environment variables win over file values
        env_overrides = {}
        for key, value in os.environ.items():
            if key.startswith(ENV_PREFIX) and key != "ZFS_REPLICATOR_ADMIN_PASSWORD":
                config_key = key.replace(ENV_PREFIX, "", 1).lower()
                env_overrides[config_key] = value

        if config_data:
            config_data.update(env_overrides)
            return cls(**config_data)  # type: ignore[arg-type]
        else:
            return cls(**env_overrides)  # type: ignore[arg-type]


# Module-level settings cache (singleton pattern)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        config_paths = [
            Path("zfs_replicator.yaml"),
            Path("zfs_replicator.yml"),
            Path("zfs_replicator.toml"),
            Path("config/zfs_replicator.yaml"),
            Path("config/zfs_replicator.yml"),
            Path("config/zfs_replicator.toml"),
            Path("/etc/zfs-replicator/config.yaml"),
        ]

        config_file = None
        for path in config_paths:
            if path.exists():
                config_file = path
                break

        if config_file:
            _settings = Settings.from_file(config_file)
        else:
            _settings = Settings()

    assert _settings is not None, "Settings should be initialized"
    return _settings
