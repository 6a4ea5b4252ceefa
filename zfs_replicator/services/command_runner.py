"""Thin wrapper around subprocess for running ZFS command line tools."""

import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from zfs_replicator.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Captured result of a finished command."""

    args: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """
    Runs local commands.

    Tests replace this with a fake that records argument lists and returns
    canned results, so nothing here may hold state between calls.
    """

    def run(self, args: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        """Run a command to completion and capture its output."""
        logger.debug("Running: %s", " ".join(args))
        try:
            completed = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as e:
            return CommandResult(list(args), 127, "", str(e))
        except subprocess.TimeoutExpired as e:
            return CommandResult(list(args), -1, "", f"command timed out after {e.timeout}s")
        return CommandResult(list(args), completed.returncode, completed.stdout, completed.stderr)

    def popen(self, args: Sequence[str], stdin=None, stdout=None) -> subprocess.Popen:
        """Start a long-running command (stream producers and consumers)."""
        logger.debug("Starting: %s", " ".join(args))
        return subprocess.Popen(
            list(args),
            stdin=stdin,
            stdout=stdout,
            stderr=subprocess.PIPE,
        )
