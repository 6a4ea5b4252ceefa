"""Service for generating the ZFS command lines executed on the backup host."""

import shlex
from typing import List, Optional


class SSHCommandGenerator:
    """Builds shell-quoted remote command strings for the SSH transport."""

    @staticmethod
    def escape_shell_string(value: str) -> str:
        """
        Escape a string for safe use in shell commands.

        Args:
            value: String to escape

        Returns:
            Escaped string safe for shell use
        """
        return shlex.quote(value)

    @staticmethod
    def generate_receive_command(
        dataset: str,
        force: bool = True,
        mbuffer_size: Optional[str] = None,
    ) -> str:
        """
        Generate the remote receive pipeline for an incoming send stream.

        Command format: mbuffer -s 128k -m SIZE | zfs receive -F dataset

        Args:
            dataset: Remote dataset receiving the stream
            force: Use -F to roll the remote dataset back before receiving
            mbuffer_size: Buffer memory for mbuffer; None or empty skips mbuffer

        Returns:
            Remote command string
        """
        flags = "-F " if force else ""
        receive_cmd = f"zfs receive {flags}{SSHCommandGenerator.escape_shell_string(dataset)}"
        if mbuffer_size:
            return (
                f"mbuffer -q -s 128k -m {SSHCommandGenerator.escape_shell_string(mbuffer_size)}"
                f" | {receive_cmd}"
            )
        return receive_cmd

    @staticmethod
    def generate_list_snapshots_command(dataset: str) -> str:
        """
        Generate a remote snapshot listing, oldest first, names only.

        Returns:
            Remote command string
        """
        return (
            "zfs list -H -t snapshot -o name -s creation -d 1 "
            f"{SSHCommandGenerator.escape_shell_string(dataset)}"
        )

    @staticmethod
    def generate_list_datasets_command() -> str:
        """Generate a listing of every remote filesystem and volume."""
        return "zfs list -H -o name -t filesystem,volume"

    @staticmethod
    def generate_send_command(dataset: str, snapshot_name: str, recursive: bool = True) -> str:
        """
        Generate the remote send used when restoring from the backup host.

        Args:
            dataset: Remote dataset holding the snapshot
            snapshot_name: Snapshot name (without dataset prefix)
            recursive: Send the whole dataset tree (-R)

        Returns:
            Remote command string
        """
        flags = "-R " if recursive else ""
        full_snapshot = f"{dataset}@{snapshot_name}"
        return f"zfs send {flags}{SSHCommandGenerator.escape_shell_string(full_snapshot)}"

    @staticmethod
    def generate_local_receive_args(dataset: str, force: bool) -> List[str]:
        """
        Generate the local ``zfs receive`` argument list for a restore.

        Without -F, ZFS refuses to receive into a target that has diverged
        from the stream, so safe restores cannot destroy local data.
        """
        args = ["zfs", "receive"]
        if force:
            args.append("-F")
        args.append(dataset)
        return args
