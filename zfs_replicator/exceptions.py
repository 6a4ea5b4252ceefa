"""Exception hierarchy for replication, transport and restore failures."""

from typing import Optional


class ReplicatorError(Exception):
    """Base class for all replication service errors."""


class SnapshotStoreError(ReplicatorError):
    """A local ZFS snapshot operation failed."""

    def __init__(self, message: str, stderr: Optional[str] = None):
        self.stderr = stderr
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class SnapshotCreateError(SnapshotStoreError):
    """Creating a snapshot failed (name collision, no space, ...)."""


class SnapshotEnumerationError(SnapshotStoreError):
    """Listing snapshots or datasets failed. Never means 'no snapshots'."""


class SnapshotNotFoundError(SnapshotStoreError):
    """A snapshot expected on the local dataset is not there."""


class SnapshotDestroyError(SnapshotStoreError):
    """Destroying a snapshot failed."""


class StreamError(SnapshotStoreError):
    """The zfs send producer could not start or exited abnormally."""


class PoolError(SnapshotStoreError):
    """Listing pools or starting a scrub failed."""


class TransportError(ReplicatorError):
    """The remote side could not be reached or did not apply the stream."""


class RemoteEnumerationError(TransportError):
    """Listing remote snapshots failed (distinct from an empty remote dataset)."""


class SendInProgressError(ReplicatorError):
    """A replication send already holds the single-flight lock."""

    def __init__(self, message: str = "snapshot operation already in progress"):
        super().__init__(message)


class PendingSendsError(ReplicatorError):
    """Some queued snapshots still failed to send after a retry drain."""

    def __init__(self, remaining: int):
        self.remaining = remaining
        super().__init__(f"{remaining} snapshots still failed to send")


class RestoreError(ReplicatorError):
    """Base class for restore job errors."""


class RestoreJobNotFoundError(RestoreError):
    """No restore job with the given id is known."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"restore job {job_id} not found")


class RestoreConfirmationError(RestoreError):
    """A confirmation was requested for a job that is not awaiting one."""
