"""Configuration management for ZFS Replicator."""

from zfs_replicator.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
