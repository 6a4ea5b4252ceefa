"""Local ZFS snapshot management and send stream production."""

import subprocess
from datetime import datetime
from typing import List, Optional

from zfs_replicator.exceptions import (
    PoolError,
    SnapshotCreateError,
    SnapshotDestroyError,
    SnapshotEnumerationError,
    SnapshotStoreError,
    StreamError,
)
from zfs_replicator.logging_config import get_logger
from zfs_replicator.models import Snapshot
from zfs_replicator.services.command_runner import CommandRunner

logger = get_logger(__name__)

DATASET_MISSING_MARKER = "does not exist"


def _parse_size(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


class SendStream:
    """
    Readable byte stream backed by a running ``zfs send`` process.

    The stream must be either read to the end and closed, or aborted. Closing
    waits for the producer and raises StreamError if it ended abnormally, so a
    truncated stream is never mistaken for a delivered one.
    """

    def __init__(self, process: subprocess.Popen, description: str):
        self._process = process
        self.description = description
        self._finished = False

    def read(self, size: int = -1) -> bytes:
        assert self._process.stdout is not None
        return self._process.stdout.read(size)

    def close(self) -> None:
        """Wait for the producer and check its exit status."""
        if self._finished:
            return
        self._finished = True
        if self._process.stdout is not None:
            self._process.stdout.close()
        stderr = self._process.stderr.read().decode(errors="replace") if self._process.stderr else ""
        returncode = self._process.wait()
        if returncode != 0:
            raise StreamError(f"{self.description} exited with status {returncode}", stderr)

    def abort(self) -> None:
        """Kill the producer without checking its result."""
        if self._finished:
            return
        self._finished = True
        try:
            self._process.kill()
        except ProcessLookupError:
            pass
        self._process.wait()
        logger.warning("Aborted %s", self.description)

    def __enter__(self) -> "SendStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()


class ZFSSnapshotStore:
    """Snapshot operations on the configured local dataset."""

    def __init__(
        self,
        dataset: str,
        send_compression: str = "lz4",
        recursive: bool = True,
        runner: Optional[CommandRunner] = None,
    ):
        """Initialize the store for one dataset."""
        self.dataset = dataset
        self.send_compression = send_compression
        self.recursive = recursive
        self.runner = runner or CommandRunner()

    def create_snapshot(self, name: str) -> None:
        """
        Create ``dataset@name``.

        Raises:
            SnapshotCreateError: If zfs refuses (name collision, no space, ...)
        """
        args = ["zfs", "snapshot"]
        if self.recursive:
            args.append("-r")
        args.append(f"{self.dataset}@{name}")
        result = self.runner.run(args)
        if not result.ok:
            raise SnapshotCreateError(f"failed to create snapshot {self.dataset}@{name}", result.stderr)
        logger.info(f"Created snapshot {self.dataset}@{name}")

    def list_snapshots(self) -> List[Snapshot]:
        """List snapshots of the configured dataset, oldest first."""
        return self.list_dataset_snapshots(self.dataset)

    def list_dataset_snapshots(self, dataset: str) -> List[Snapshot]:
        """
        List snapshots of any local dataset, oldest first.

        Raises:
            SnapshotEnumerationError: If the listing fails
        """
        result = self.runner.run(
            [
                "zfs", "list", "-H", "-p",
                "-t", "snapshot",
                "-o", "name,creation,used,refer",
                "-s", "creation",
                "-d", "1",
                dataset,
            ]
        )
        if not result.ok:
            raise SnapshotEnumerationError(f"failed to list snapshots of {dataset}", result.stderr)

        snapshots = []
        for line in result.stdout.splitlines():
            fields = line.split("\t")
            if len(fields) < 4 or "@" not in fields[0]:
                continue
            owner, name = fields[0].split("@", 1)
            try:
                created_at = datetime.fromtimestamp(int(fields[1]))
            except ValueError:
                logger.warning(f"Skipping snapshot with unparseable creation time: {line}")
                continue
            snapshots.append(
                Snapshot(
                    name=name,
                    dataset=owner,
                    created_at=created_at,
                    used_bytes=_parse_size(fields[2]),
                    referenced_bytes=_parse_size(fields[3]),
                )
            )
        snapshots.sort(key=Snapshot.sort_key)
        return snapshots

    def destroy_snapshot(self, name: str) -> None:
        """
        Irreversibly destroy ``dataset@name``.

        Raises:
            SnapshotDestroyError: If zfs refuses
        """
        args = ["zfs", "destroy"]
        if self.recursive:
            args.append("-r")
        args.append(f"{self.dataset}@{name}")
        result = self.runner.run(args)
        if not result.ok:
            raise SnapshotDestroyError(f"failed to destroy {self.dataset}@{name}", result.stderr)

    def open_send_stream(self, snapshot_name: str) -> SendStream:
        """Start a full send of ``snapshot_name``."""
        return self._open_stream(None, snapshot_name)

    def open_incremental_send_stream(self, from_name: str, to_name: str) -> SendStream:
        """Start an incremental send from ``from_name`` to ``to_name``."""
        return self._open_stream(from_name, to_name)

    def _send_args(self, from_name: Optional[str], to_name: str) -> List[str]:
        args = ["zfs", "send"]
        if self.send_compression:
            args.append("-c")
        if self.recursive:
            args.append("-R")
        if from_name:
            args.extend(["-I", f"{self.dataset}@{from_name}"])
        args.append(f"{self.dataset}@{to_name}")
        return args

    def _open_stream(self, from_name: Optional[str], to_name: str) -> SendStream:
        args = self._send_args(from_name, to_name)
        try:
            process = self.runner.popen(args, stdout=subprocess.PIPE)
        except OSError as e:
            raise StreamError(f"failed to start {' '.join(args)}: {e}") from e
        return SendStream(process, " ".join(args))

    def dataset_exists(self, dataset: str) -> bool:
        """
        Check whether a local dataset exists.

        Raises:
            SnapshotEnumerationError: If zfs fails for any reason other than
                the dataset being absent
        """
        result = self.runner.run(["zfs", "list", "-H", "-o", "name", dataset])
        if result.ok:
            return True
        if DATASET_MISSING_MARKER in result.stderr:
            return False
        raise SnapshotEnumerationError(f"failed to check dataset {dataset}", result.stderr)

    def has_changes_since(self, dataset: str, snapshot_name: str) -> bool:
        """
        Report whether ``dataset`` changed since ``snapshot_name`` (zfs diff).

        Raises:
            SnapshotStoreError: If the diff cannot be computed
        """
        result = self.runner.run(["zfs", "diff", "-H", f"{dataset}@{snapshot_name}"])
        if not result.ok:
            raise SnapshotStoreError(
                f"zfs diff failed for {dataset}@{snapshot_name}", result.stderr
            )
        changes = result.stdout.strip()
        if changes:
            logger.info(
                f"zfs diff found {len(changes.splitlines())} changes in {dataset} since {snapshot_name}"
            )
            return True
        return False


class ZFSPoolManager:
    """Pool-level operations used by the integrity scan job."""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def list_pools(self) -> List[str]:
        result = self.runner.run(["zpool", "list", "-H", "-o", "name"])
        if not result.ok:
            raise PoolError("failed to list pools", result.stderr)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def scrub_pool(self, pool: str) -> None:
        result = self.runner.run(["zpool", "scrub", pool])
        if not result.ok:
            raise PoolError(f"failed to start scrub for pool {pool}", result.stderr)
