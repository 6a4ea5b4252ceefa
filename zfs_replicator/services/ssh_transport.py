"""SSH transport delivering ZFS send streams to, and from, the backup host."""

import socket
import subprocess
import threading
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import paramiko

from zfs_replicator.exceptions import RemoteEnumerationError, TransportError
from zfs_replicator.logging_config import get_logger
from zfs_replicator.models import RemoteDataset
from zfs_replicator.services.command_runner import CommandRunner
from zfs_replicator.services.ssh_command_generator import SSHCommandGenerator

logger = get_logger(__name__)

CHUNK_SIZE = 128 * 1024
DATASET_MISSING_MARKER = "does not exist"


class SSHTransport:
    """
    Moves snapshot streams over one lazily opened SSH connection.

    The connection is established on first use and re-established whenever
    it has dropped. Opening channels on a live connection is safe from
    several threads, but concurrent receives into the same remote dataset
    are not; the replication scheduler serializes sends.
    """

    def __init__(
        self,
        host: str,
        user: str,
        remote_dataset: str,
        private_key: Optional[Path] = None,
        port: int = 22,
        mbuffer_size: Optional[str] = "1G",
        force_receive: bool = True,
        connect_timeout: float = 30.0,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        runner: Optional[CommandRunner] = None,
    ):
        """Initialize the transport; no connection is made until first use."""
        self.host = host
        self.user = user
        self.port = port
        self.remote_dataset = remote_dataset
        self.private_key = private_key
        self.mbuffer_size = mbuffer_size
        self.force_receive = force_receive
        self.connect_timeout = connect_timeout
        self._client_factory = client_factory
        self._runner = runner or CommandRunner()
        self._client: Optional[paramiko.SSHClient] = None
        self._lock = threading.Lock()

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"

    def _key_filename(self) -> Optional[str]:
        if self.private_key is None:
            return None
        key_path = Path(self.private_key)
        if not key_path.is_absolute():
            raise TransportError(f"private key path must be absolute, got: {key_path}")
        if not key_path.exists():
            raise TransportError(f"private key file {key_path} does not exist")
        return str(key_path)

    def connect(self) -> None:
        """
        Open the SSH connection.

        Raises:
            TransportError: On key, network or authentication failure
        """
        with self._lock:
            self._connect_locked()

    def _connect_locked(self) -> None:
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.user,
                key_filename=self._key_filename(),
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
            )
        except paramiko.AuthenticationException as e:
            client.close()
            raise TransportError(f"SSH authentication failed for {self.target}: {e}") from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise TransportError(f"failed to connect to remote host {self.target}: {e}") from e
        self._client = client
        logger.info(f"Connected to {self.target}")

    def _ensure_connected(self) -> paramiko.SSHClient:
        with self._lock:
            transport = self._client.get_transport() if self._client is not None else None
            if transport is None or not transport.is_active():
                if self._client is not None:
                    logger.info(f"SSH connection to {self.target} dropped, reconnecting")
                    self._client.close()
                    self._client = None
                self._connect_locked()
            assert self._client is not None
            return self._client

    def close(self) -> None:
        """Close the SSH connection if one is open."""
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                logger.info(f"Closed SSH connection to {self.target}")

    def _open_channel(self, command: str) -> paramiko.Channel:
        client = self._ensure_connected()
        try:
            transport = client.get_transport()
            if transport is None:
                raise TransportError(f"SSH connection to {self.target} is not available")
            channel = transport.open_session(timeout=self.connect_timeout)
            channel.exec_command(command)
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"failed to create SSH session: {e}") from e
        return channel

    def execute(self, command: str) -> Tuple[int, str, str]:
        """
        Run a remote command and return (exit_code, stdout, stderr).

        Raises:
            TransportError: If the command could not be run at all
        """
        client = self._ensure_connected()
        try:
            _, stdout, stderr = client.exec_command(command, timeout=None)
            stdout_text = stdout.read().decode("utf-8", errors="replace")
            stderr_text = stderr.read().decode("utf-8", errors="replace")
            exit_code = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"remote command failed on {self.target}: {e}") from e
        return exit_code, stdout_text, stderr_text

    def send_stream(self, stream, is_incremental: bool) -> None:
        """
        Feed a whole send stream into ``zfs receive`` on the backup host.

        Returns only after the remote receive has finished and reported
        success.

        Raises:
            TransportError: If the connection, the copy or the remote receive fails
        """
        command = SSHCommandGenerator.generate_receive_command(
            self.remote_dataset, force=self.force_receive, mbuffer_size=self.mbuffer_size
        )
        logger.info(
            f"Sending {'incremental' if is_incremental else 'full'} stream to "
            f"{self.target}:{self.remote_dataset}"
        )
        channel = self._open_channel(command)
        try:
            sent = 0
            while True:
                chunk = stream.read(CHUNK_SIZE)
                if not chunk:
                    break
                channel.sendall(chunk)
                sent += len(chunk)
            channel.shutdown_write()
            exit_code = channel.recv_exit_status()
            stderr = channel.makefile_stderr("rb").read().decode("utf-8", errors="replace")
        except (paramiko.SSHException, OSError, socket.timeout) as e:
            raise TransportError(f"stream transfer to {self.target} failed: {e}") from e
        finally:
            channel.close()

        if exit_code != 0:
            raise TransportError(
                f"remote receive into {self.remote_dataset} failed with status {exit_code}: "
                f"{stderr.strip()}"
            )
        logger.info(f"Remote receive into {self.remote_dataset} completed ({sent} bytes)")

    def list_remote_snapshot_names(self, dataset: Optional[str] = None) -> List[str]:
        """
        List snapshot names on a remote dataset, oldest first.

        A dataset that does not exist yet has no snapshots and yields an empty
        list; every other failure raises.

        Raises:
            RemoteEnumerationError: If the remote listing fails
        """
        dataset = dataset or self.remote_dataset
        command = SSHCommandGenerator.generate_list_snapshots_command(dataset)
        try:
            exit_code, stdout, stderr = self.execute(command)
        except TransportError as e:
            raise RemoteEnumerationError(f"failed to list remote snapshots of {dataset}: {e}") from e

        if exit_code != 0:
            if DATASET_MISSING_MARKER in stderr:
                logger.info(f"Remote dataset {dataset} does not exist yet")
                return []
            raise RemoteEnumerationError(
                f"failed to list remote snapshots of {dataset} (status {exit_code}): {stderr.strip()}"
            )

        names = []
        for line in stdout.splitlines():
            line = line.strip()
            if "@" in line:
                names.append(line.split("@", 1)[1])
        return names

    def list_remote_datasets(self) -> List[RemoteDataset]:
        """List remote datasets that hold at least one snapshot."""
        exit_code, stdout, stderr = self.execute(SSHCommandGenerator.generate_list_datasets_command())
        if exit_code != 0:
            raise RemoteEnumerationError(f"failed to list remote datasets: {stderr.strip()}")

        datasets = []
        for name in (line.strip() for line in stdout.splitlines()):
            if not name:
                continue
            try:
                snapshots = self.list_remote_snapshot_names(name)
            except RemoteEnumerationError as e:
                logger.warning(f"Skipping remote dataset {name}: {e}")
                continue
            if snapshots:
                datasets.append(RemoteDataset(name=name, snapshots=snapshots))
        return datasets

    def restore_from_remote(
        self,
        source_dataset: Optional[str],
        snapshot_name: str,
        target_dataset: str,
        force_overwrite: bool,
    ) -> None:
        """
        Stream ``source_dataset@snapshot_name`` from the backup host into a local dataset.

        With ``force_overwrite`` false the local receive runs without -F and
        fails instead of rolling back a diverged target. A receive that
        refuses the stream closes the channel rather than waiting on the
        remote send.

        Raises:
            TransportError: If the remote send or the local receive fails
        """
        source = source_dataset or self.remote_dataset
        send_command = SSHCommandGenerator.generate_send_command(source, snapshot_name)
        receive_args = SSHCommandGenerator.generate_local_receive_args(target_dataset, force_overwrite)
        mode = "DESTRUCTIVE" if force_overwrite else "SAFE"
        logger.info(f"Restoring {source}@{snapshot_name} -> {target_dataset} ({mode} mode)")

        try:
            receiver = self._runner.popen(receive_args, stdin=subprocess.PIPE)
        except OSError as e:
            raise TransportError(f"failed to start local zfs receive: {e}") from e

        copy_error: Optional[Exception] = None
        try:
            channel = self._open_channel(send_command)
        except TransportError:
            receiver.kill()
            receiver.wait()
            raise

        try:
            assert receiver.stdin is not None
            while True:
                data = channel.recv(CHUNK_SIZE)
                if not data:
                    break
                receiver.stdin.write(data)
        except (paramiko.SSHException, OSError, socket.timeout) as e:
            copy_error = e
        finally:
            if receiver.stdin is not None:
                try:
                    receiver.stdin.close()
                except OSError:
                    pass

        remote_exit: Optional[int] = None
        remote_stderr = ""
        if copy_error is not None:
            # The remote send stays blocked on a full window until the channel closes.
            channel.close()
        else:
            try:
                remote_exit = channel.recv_exit_status()
                remote_stderr = channel.makefile_stderr("rb").read().decode("utf-8", errors="replace")
            except (paramiko.SSHException, OSError) as e:
                remote_exit, remote_stderr = -1, str(e)
            finally:
                channel.close()

        local_stderr = receiver.stderr.read().decode("utf-8", errors="replace") if receiver.stderr else ""
        local_exit = receiver.wait()

        if local_exit != 0:
            raise TransportError(
                f"local zfs receive into {target_dataset} failed with status {local_exit}: "
                f"{local_stderr.strip()}"
            )
        if remote_exit is not None and remote_exit != 0:
            raise TransportError(
                f"remote zfs send of {source}@{snapshot_name} failed with status {remote_exit}: "
                f"{remote_stderr.strip()}"
            )
        if copy_error is not None:
            raise TransportError(f"restore stream interrupted: {copy_error}") from copy_error
