"""ZFS snapshot replication and restore service."""

__version__ = "0.3.0"
