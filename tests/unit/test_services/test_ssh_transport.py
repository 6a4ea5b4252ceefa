"""Unit tests for SSHTransport with a mocked paramiko client."""

import io
import threading
from pathlib import Path
from unittest.mock import MagicMock

import paramiko
import pytest

from zfs_replicator.exceptions import RemoteEnumerationError, TransportError
from zfs_replicator.services.ssh_transport import SSHTransport


def exec_result(stdout=b"", stderr=b"", exit_code=0):
    """Build the (stdin, stdout, stderr) triple returned by SSHClient.exec_command."""
    out = MagicMock()
    out.read.return_value = stdout
    out.channel.recv_exit_status.return_value = exit_code
    err = MagicMock()
    err.read.return_value = stderr
    return MagicMock(), out, err


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def channel(client):
    channel = MagicMock()
    channel.recv_exit_status.return_value = 0
    channel.makefile_stderr.return_value.read.return_value = b""
    client.get_transport.return_value.open_session.return_value = channel
    return channel


@pytest.fixture
def transport(client):
    return SSHTransport(
        host="backup.example.com",
        user="zfs",
        remote_dataset="backup/data",
        client_factory=lambda: client,
    )


class TestConnection:
    """Connection setup and failures."""

    def test_connects_lazily(self, transport, client):
        client.exec_command.return_value = exec_result()

        transport.list_remote_snapshot_names()

        client.connect.assert_called_once()
        assert client.connect.call_args.kwargs["hostname"] == "backup.example.com"
        assert client.connect.call_args.kwargs["username"] == "zfs"

    def test_authentication_failure(self, transport, client):
        client.connect.side_effect = paramiko.AuthenticationException("bad key")

        with pytest.raises(TransportError) as exc_info:
            transport.connect()
        assert "authentication failed" in str(exc_info.value)
        client.close.assert_called_once()

    def test_network_failure(self, transport, client):
        client.connect.side_effect = OSError("connection refused")

        with pytest.raises(TransportError):
            transport.connect()

    def test_relative_key_path_rejected(self, client):
        transport = SSHTransport(
            "backup.example.com", "zfs", "backup/data",
            private_key=Path("id_ed25519"), client_factory=lambda: client,
        )

        with pytest.raises(TransportError):
            transport.connect()
        client.connect.assert_not_called()

    def test_missing_key_file_rejected(self, client, tmp_path):
        transport = SSHTransport(
            "backup.example.com", "zfs", "backup/data",
            private_key=tmp_path / "missing_key", client_factory=lambda: client,
        )

        with pytest.raises(TransportError):
            transport.connect()

    def test_reconnects_when_connection_dropped(self, transport, client):
        client.exec_command.return_value = exec_result()
        transport.list_remote_snapshot_names()
        client.get_transport.return_value.is_active.return_value = False

        transport.list_remote_snapshot_names()

        assert client.connect.call_count == 2

    def test_close(self, transport, client):
        transport.connect()
        transport.close()

        client.close.assert_called_once()


class TestRemoteListing:
    """Remote snapshot and dataset enumeration."""

    def test_lists_snapshot_names(self, transport, client):
        client.exec_command.return_value = exec_result(
            stdout=b"backup/data@snap1\nbackup/data@snap2\n"
        )

        assert transport.list_remote_snapshot_names() == ["snap1", "snap2"]
        command = client.exec_command.call_args.args[0]
        assert command.endswith("backup/data")

    def test_missing_dataset_means_no_snapshots(self, transport, client):
        client.exec_command.return_value = exec_result(
            stderr=b"cannot open 'backup/data': dataset does not exist", exit_code=1
        )

        assert transport.list_remote_snapshot_names() == []

    def test_other_failures_raise(self, transport, client):
        client.exec_command.return_value = exec_result(stderr=b"permission denied", exit_code=1)

        with pytest.raises(RemoteEnumerationError):
            transport.list_remote_snapshot_names()

    def test_connection_failure_raises(self, transport, client):
        client.connect.side_effect = OSError("no route to host")

        with pytest.raises(RemoteEnumerationError):
            transport.list_remote_snapshot_names()

    def test_list_remote_datasets(self, transport, client):
        responses = {
            "zfs list -H -o name -t filesystem,volume": exec_result(
                stdout=b"backup\nbackup/data\nbackup/other\n"
            ),
        }

        def exec_command(command, timeout=None):
            if command in responses:
                return responses[command]
            if command.endswith(" backup/data"):
                return exec_result(stdout=b"backup/data@snap1\n")
            if command.endswith(" backup/other"):
                return exec_result(stderr=b"permission denied", exit_code=1)
            return exec_result()

        client.exec_command.side_effect = exec_command

        datasets = transport.list_remote_datasets()

        assert [(d.name, d.snapshots) for d in datasets] == [("backup/data", ["snap1"])]


class TestSendStream:
    """Delivery of send streams."""

    def test_streams_all_data(self, transport, channel):
        transport.send_stream(io.BytesIO(b"x" * 300_000), is_incremental=False)

        sent = b"".join(call.args[0] for call in channel.sendall.call_args_list)
        assert sent == b"x" * 300_000
        channel.shutdown_write.assert_called_once()
        channel.close.assert_called_once()
        command = channel.exec_command.call_args.args[0]
        assert "zfs receive -F backup/data" in command

    def test_remote_receive_failure(self, transport, channel):
        channel.recv_exit_status.return_value = 1
        channel.makefile_stderr.return_value.read.return_value = b"cannot receive: out of space"

        with pytest.raises(TransportError) as exc_info:
            transport.send_stream(io.BytesIO(b"data"), is_incremental=True)
        assert "out of space" in str(exc_info.value)

    def test_copy_failure(self, transport, channel):
        channel.sendall.side_effect = OSError("broken pipe")

        with pytest.raises(TransportError):
            transport.send_stream(io.BytesIO(b"data"), is_incremental=False)
        channel.close.assert_called_once()


class TestRestoreFromRemote:
    """Pulling a snapshot back into a local dataset."""

    @pytest.fixture
    def runner(self):
        runner = MagicMock()
        receiver = runner.popen.return_value
        receiver.stderr.read.return_value = b""
        receiver.wait.return_value = 0
        return runner

    @pytest.fixture
    def restoring_transport(self, client, runner):
        return SSHTransport(
            "backup.example.com", "zfs", "backup/data",
            client_factory=lambda: client, runner=runner,
        )

    def test_safe_restore(self, restoring_transport, channel, runner):
        channel.recv.side_effect = [b"chunk1", b"chunk2", b""]

        restoring_transport.restore_from_remote(None, "snap1", "tank/restore", force_overwrite=False)

        assert runner.popen.call_args.args[0] == ["zfs", "receive", "tank/restore"]
        assert channel.exec_command.call_args.args[0] == "zfs send -R backup/data@snap1"
        receiver = runner.popen.return_value
        written = b"".join(call.args[0] for call in receiver.stdin.write.call_args_list)
        assert written == b"chunk1chunk2"

    def test_destructive_restore_uses_force(self, restoring_transport, channel, runner):
        channel.recv.side_effect = [b""]

        restoring_transport.restore_from_remote("backup/other", "snap1", "tank/restore", True)

        assert runner.popen.call_args.args[0] == ["zfs", "receive", "-F", "tank/restore"]
        assert channel.exec_command.call_args.args[0] == "zfs send -R backup/other@snap1"

    def test_local_receive_failure(self, restoring_transport, channel, runner):
        channel.recv.side_effect = [b""]
        receiver = runner.popen.return_value
        receiver.wait.return_value = 1
        receiver.stderr.read.return_value = b"destination has been modified"

        with pytest.raises(TransportError) as exc_info:
            restoring_transport.restore_from_remote(None, "snap1", "tank/restore", False)
        assert "destination has been modified" in str(exc_info.value)

    def test_remote_send_failure(self, restoring_transport, channel):
        channel.recv.side_effect = [b""]
        channel.recv_exit_status.return_value = 1
        channel.makefile_stderr.return_value.read.return_value = b"could not find snapshot"

        with pytest.raises(TransportError):
            restoring_transport.restore_from_remote(None, "snap1", "tank/restore", False)

    def test_refused_stream_closes_channel_without_waiting(
        self, restoring_transport, channel, runner
    ):
        """A receive that exits early must not wait on a remote send stalled on a full window."""
        closed = threading.Event()
        channel.close.side_effect = closed.set
        channel.recv.return_value = b"x" * 1024

        def recv_exit_status():
            if not closed.wait(timeout=1):
                raise AssertionError("waited for the exit status of a stalled remote send")
            return -1

        channel.recv_exit_status.side_effect = recv_exit_status
        receiver = runner.popen.return_value
        receiver.stdin.write.side_effect = BrokenPipeError("receiver exited")
        receiver.wait.return_value = 1
        receiver.stderr.read.return_value = (
            b"cannot receive new filesystem stream: destination 'tank/restore' exists"
        )

        with pytest.raises(TransportError) as exc_info:
            restoring_transport.restore_from_remote(None, "snap1", "tank/restore", False)

        assert "destination 'tank/restore' exists" in str(exc_info.value)
        assert closed.is_set()
        assert channel.recv.call_count == 1
        receiver.stdin.close.assert_called_once()

    def test_interrupted_channel_with_clean_receive(self, restoring_transport, channel, runner):
        channel.recv.side_effect = [b"chunk1", OSError("connection reset")]

        with pytest.raises(TransportError) as exc_info:
            restoring_transport.restore_from_remote(None, "snap1", "tank/restore", False)

        assert "interrupted" in str(exc_info.value)
        channel.recv_exit_status.assert_not_called()
        channel.close.assert_called_once()
