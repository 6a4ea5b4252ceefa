"""Service for comparing local and remote snapshot sets."""

from typing import Iterable, List, Optional, Sequence

from zfs_replicator.logging_config import get_logger
from zfs_replicator.models import SendPlan, Snapshot

logger = get_logger(__name__)


class SnapshotComparisonService:
    """Decides how a snapshot reaches the backup host."""

    @staticmethod
    def _extract_snapshot_name(full_name: str) -> str:
        """
        Extract the snapshot name part from a full snapshot name.

        Examples:
            "tank/data@autosnap_2024-01-15_02-00-00" -> "autosnap_2024-01-15_02-00-00"
            "autosnap_2024-01-15_02-00-00" -> "autosnap_2024-01-15_02-00-00"
        """
        if "@" in full_name:
            return full_name.split("@", 1)[1]
        return full_name

    @classmethod
    def find_common_snapshots(
        cls, local_snapshots: Sequence[Snapshot], remote_names: Iterable[str]
    ) -> List[Snapshot]:
        """Return local snapshots whose name also exists remotely, oldest first."""
        remote = {cls._extract_snapshot_name(name) for name in remote_names}
        common = [snapshot for snapshot in local_snapshots if snapshot.name in remote]
        return sorted(common, key=Snapshot.sort_key)

    @classmethod
    def find_incremental_base(
        cls,
        snapshot_name: str,
        local_snapshots: Sequence[Snapshot],
        remote_names: Iterable[str],
    ) -> Optional[str]:
        """
        Find the most recently created snapshot present on both sides.

        Only snapshots created before ``snapshot_name`` qualify, since an
        incremental stream cannot run backwards. When ``snapshot_name`` is not
        in the local list every common snapshot qualifies.
        """
        common = cls.find_common_snapshots(local_snapshots, remote_names)
        target = next((s for s in local_snapshots if s.name == snapshot_name), None)
        if target is not None:
            common = [s for s in common if s.sort_key() < target.sort_key()]
        if not common:
            return None
        return common[-1].name

    @classmethod
    def compute_send_plan(
        cls,
        snapshot_name: str,
        local_snapshots: Sequence[Snapshot],
        remote_names: Sequence[str],
    ) -> Optional[SendPlan]:
        """
        Compute the send plan for ``snapshot_name``.

        Returns:
            None if the remote already holds the snapshot, a full plan if the
            remote is empty or shares nothing with the local dataset, otherwise
            an incremental plan from the newest common snapshot
        """
        remote = [cls._extract_snapshot_name(name) for name in remote_names]
        if snapshot_name in remote:
            logger.info(f"Snapshot {snapshot_name} already exists on remote")
            return None

        if not remote:
            logger.info(f"Remote has no snapshots, planning full send of {snapshot_name}")
            return SendPlan(snapshot_name=snapshot_name)

        base = cls.find_incremental_base(snapshot_name, local_snapshots, remote)
        if base is None:
            logger.warning(
                f"No common snapshot with remote ({len(remote)} remote snapshots), "
                f"planning full send of {snapshot_name}"
            )
            return SendPlan(snapshot_name=snapshot_name)

        logger.info(f"Planning incremental send {base} -> {snapshot_name}")
        return SendPlan(snapshot_name=snapshot_name, incremental_base=base)
