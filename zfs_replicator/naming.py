"""ZFS naming rules and the scheduled snapshot naming convention."""

import re
from datetime import datetime
from typing import Optional

AUTOSNAP_PREFIX = "autosnap_"
AUTOSNAP_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

_DATASET_NAME_RE = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9._-]*[a-zA-Z0-9])?(/[a-zA-Z0-9]([a-zA-Z0-9._-]*[a-zA-Z0-9])?)*$"
)
_SNAPSHOT_NAME_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9._:-]*[a-zA-Z0-9])?$")

_FORBIDDEN_CHARS = set(";|&$`\"'\\*?[]{}()<> \t\n")
MAX_NAME_LENGTH = 255


def autosnap_name(now: Optional[datetime] = None) -> str:
    """Build the name of a scheduled snapshot from local wall-clock time."""
    if now is None:
        now = datetime.now()
    return f"{AUTOSNAP_PREFIX}{now.strftime(AUTOSNAP_TIMESTAMP_FORMAT)}"


def validate_dataset_name(name: str) -> str:
    """
    Validate a ZFS dataset path such as ``tank/data``.

    Raises:
        ValueError: If the name is empty, too long, or not a safe dataset path

    Returns:
        The name unchanged
    """
    if not name:
        raise ValueError("dataset name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"dataset name too long (max {MAX_NAME_LENGTH} characters)")
    if any(ch in _FORBIDDEN_CHARS for ch in name):
        raise ValueError(f"dataset name '{name}' contains invalid characters")
    if not _DATASET_NAME_RE.match(name):
        raise ValueError(f"invalid dataset name format: '{name}'")
    return name


def validate_snapshot_name(name: str) -> str:
    """Validate the short name of a snapshot (the part after ``@``)."""
    if not name:
        raise ValueError("snapshot name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"snapshot name too long (max {MAX_NAME_LENGTH} characters)")
    if "@" in name or "/" in name or any(ch in _FORBIDDEN_CHARS for ch in name):
        raise ValueError(f"snapshot name '{name}' contains invalid characters")
    if not _SNAPSHOT_NAME_RE.match(name):
        raise ValueError(f"invalid snapshot name format: '{name}'")
    return name
