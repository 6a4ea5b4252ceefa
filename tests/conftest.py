"""Pytest configuration and shared fixtures."""

import io
import os
import tempfile
import threading
from datetime import datetime, timedelta
from typing import Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import Session, sessionmaker

from zfs_replicator.api.app import app
from zfs_replicator.config.settings import Settings
from zfs_replicator.database.base import Base, get_db
from zfs_replicator.exceptions import (
    RemoteEnumerationError,
    SnapshotCreateError,
    SnapshotDestroyError,
    SnapshotEnumerationError,
    StreamError,
    TransportError,
)
from zfs_replicator.models import Snapshot
from zfs_replicator.services.container import ServiceContainer
from zfs_replicator.services.replication_history import ReplicationHistoryService
from zfs_replicator.services.replication_scheduler import ReplicationScheduler
from zfs_replicator.services.restore_manager import RestoreManager

# Import models to ensure they register with Base.metadata
import zfs_replicator.database.models  # noqa: F401

# File-based SQLite so every connection sees the same database
_test_db_file = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
_test_db_file.close()
TEST_DATABASE_URL = f"sqlite:///{_test_db_file.name}"

EXPECTED_TABLES = {"replication_runs"}

LOCAL_DATASET = "tank/data"
REMOTE_DATASET = "backup/data"
BASE_TIME = datetime(2024, 1, 15, 2, 0, 0)


@pytest.fixture(scope="session", autouse=True)
def verify_database_setup():
    """Verify database models are registered before any test runs."""
    missing_tables = EXPECTED_TABLES - set(Base.metadata.tables.keys())
    if missing_tables:
        raise RuntimeError(f"Database models not registered, missing: {missing_tables}")
    yield


class FakeSendStream:
    """In-memory stand-in for a zfs send producer."""

    def __init__(self, snapshot_name: str, payload: bytes = b"zfs-stream", fail_on_close=False):
        self.snapshot_name = snapshot_name
        self._buffer = io.BytesIO(payload)
        self.fail_on_close = fail_on_close
        self.closed = False
        self.aborted = False

    def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)

    def close(self) -> None:
        self.closed = True
        if self.fail_on_close:
            raise StreamError("zfs send exited with status 1", "cannot send: I/O error")

    def abort(self) -> None:
        self.aborted = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.abort()
        else:
            self.close()


class FakeSnapshotStore:
    """Snapshot store holding snapshots in memory, keyed by dataset."""

    def __init__(self, dataset: str = LOCAL_DATASET):
        self.dataset = dataset
        self.snapshots: Dict[str, List[Snapshot]] = {dataset: []}
        self.existing_datasets = {dataset}
        self.changed_datasets = set()
        self.create_error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None
        self.destroy_failures = set()
        self.stream_fails_on_close = False
        self.destroyed: List[str] = []
        self.opened_streams: List[tuple] = []
        self.streams: List[FakeSendStream] = []
        self.diff_error: Optional[Exception] = None
        self._tick = 0

    def _next_time(self) -> datetime:
        self._tick += 1
        return BASE_TIME + timedelta(minutes=self._tick)

    def add_snapshot(self, name: str, dataset: Optional[str] = None) -> Snapshot:
        dataset = dataset or self.dataset
        snapshot = Snapshot(name=name, dataset=dataset, created_at=self._next_time())
        self.snapshots.setdefault(dataset, []).append(snapshot)
        self.existing_datasets.add(dataset)
        return snapshot

    def create_snapshot(self, name: str) -> None:
        if self.create_error is not None:
            raise self.create_error
        if any(s.name == name for s in self.snapshots[self.dataset]):
            raise SnapshotCreateError(f"failed to create snapshot {self.dataset}@{name}", "exists")
        self.add_snapshot(name)

    def list_snapshots(self) -> List[Snapshot]:
        return self.list_dataset_snapshots(self.dataset)

    def list_dataset_snapshots(self, dataset: str) -> List[Snapshot]:
        if self.list_error is not None:
            raise self.list_error
        return sorted(self.snapshots.get(dataset, []), key=Snapshot.sort_key)

    def destroy_snapshot(self, name: str) -> None:
        if name in self.destroy_failures:
            raise SnapshotDestroyError(f"failed to destroy {self.dataset}@{name}", "busy")
        self.snapshots[self.dataset] = [s for s in self.snapshots[self.dataset] if s.name != name]
        self.destroyed.append(name)

    def _stream(self, name: str) -> FakeSendStream:
        stream = FakeSendStream(name, fail_on_close=self.stream_fails_on_close)
        self.streams.append(stream)
        return stream

    def open_send_stream(self, snapshot_name: str) -> FakeSendStream:
        self.opened_streams.append(("full", snapshot_name))
        return self._stream(snapshot_name)

    def open_incremental_send_stream(self, from_name: str, to_name: str) -> FakeSendStream:
        self.opened_streams.append(("incremental", from_name, to_name))
        return self._stream(to_name)

    def dataset_exists(self, dataset: str) -> bool:
        return dataset in self.existing_datasets

    def has_changes_since(self, dataset: str, snapshot_name: str) -> bool:
        if self.diff_error is not None:
            raise self.diff_error
        return dataset in self.changed_datasets


class FakeTransport:
    """Transport recording deliveries into an in-memory remote."""

    def __init__(self, store: FakeSnapshotStore, remote_dataset: str = REMOTE_DATASET):
        self.store = store
        self.remote_dataset = remote_dataset
        self.remote: Dict[str, List[str]] = {remote_dataset: []}
        self.list_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.restore_error: Optional[Exception] = None
        self.restore_creates_snapshot = True
        self.sends: List[tuple] = []
        self.restores: List[tuple] = []
        self.list_calls = 0
        self.send_started = threading.Event()
        self.release_send: Optional[threading.Event] = None
        self.closed = False

    def list_remote_snapshot_names(self, dataset: Optional[str] = None) -> List[str]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return list(self.remote.get(dataset or self.remote_dataset, []))

    def send_stream(self, stream, is_incremental: bool) -> None:
        self.send_started.set()
        if self.release_send is not None:
            self.release_send.wait(timeout=5)
        while stream.read(4096):
            pass
        if self.send_error is not None:
            raise self.send_error
        self.sends.append((stream.snapshot_name, is_incremental))
        self.remote[self.remote_dataset].append(stream.snapshot_name)

    def list_remote_datasets(self):
        from zfs_replicator.models import RemoteDataset

        return [RemoteDataset(name=name, snapshots=list(snaps)) for name, snaps in self.remote.items() if snaps]

    def restore_from_remote(self, source_dataset, snapshot_name, target_dataset, force_overwrite):
        self.restores.append((source_dataset, snapshot_name, target_dataset, force_overwrite))
        if self.restore_error is not None:
            raise self.restore_error
        if self.restore_creates_snapshot:
            self.store.add_snapshot(snapshot_name, target_dataset)

    def close(self) -> None:
        self.closed = True


class RecordingNotifier:
    """Notifier keeping every call for assertions."""

    def __init__(self):
        self.successes: List[tuple] = []
        self.failures: List[tuple] = []

    def on_sync_success(self, snapshot, dataset, duration):
        self.successes.append((snapshot, dataset, duration))

    def on_sync_failure(self, snapshot, dataset, error):
        self.failures.append((snapshot, dataset, error))


class StepClock:
    """Clock advancing one minute per call."""

    def __init__(self, start: datetime = datetime(2024, 2, 1, 2, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(minutes=1)
        return current


@pytest.fixture
def fake_store() -> FakeSnapshotStore:
    return FakeSnapshotStore()


@pytest.fixture
def fake_transport(fake_store) -> FakeTransport:
    return FakeTransport(fake_store)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def scheduler(fake_store, fake_transport, notifier) -> Generator[ReplicationScheduler, None, None]:
    """Replication scheduler wired to in-memory fakes."""
    replication_scheduler = ReplicationScheduler(
        store=fake_store,
        transport=fake_transport,
        notifier=notifier,
        clock=StepClock(),
    )
    yield replication_scheduler
    replication_scheduler.shutdown(grace_seconds=5)


@pytest.fixture
def restore_manager(fake_store, fake_transport) -> Generator[RestoreManager, None, None]:
    manager = RestoreManager(
        store=fake_store,
        transport=fake_transport,
        default_remote_dataset=REMOTE_DATASET,
    )
    yield manager
    manager.shutdown(grace_seconds=5)


@pytest.fixture
def remote_enumeration_error() -> RemoteEnumerationError:
    return RemoteEnumerationError("failed to list remote snapshots of backup/data: connection refused")


@pytest.fixture
def transport_error() -> TransportError:
    return TransportError("remote receive into backup/data failed with status 1: cannot receive")


@pytest.fixture
def enumeration_error() -> SnapshotEnumerationError:
    return SnapshotEnumerationError("failed to list snapshots of tank/data", "pool is suspended")


def verify_tables_exist(engine) -> None:
    """Verify that all expected tables exist in the database."""
    existing_tables = set(inspect(engine).get_table_names())
    missing_tables = EXPECTED_TABLES - existing_tables
    if missing_tables:
        raise RuntimeError(f"Missing database tables: {missing_tables}")


@pytest.fixture(scope="function")
def test_engine():
    """Create a test engine on a temporary SQLite file."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        echo=False,
    )
    Base.metadata.create_all(bind=engine)
    verify_tables_exist(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        if os.path.exists(_test_db_file.name):
            os.unlink(_test_db_file.name)


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def test_db(session_factory) -> Generator[Session, None, None]:
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        dataset=LOCAL_DATASET,
        remote_host="backup.example.com",
        remote_dataset=REMOTE_DATASET,
        scheduler_enabled=False,
        admin_password_env="ZFS_REPLICATOR_TEST_ADMIN_PASSWORD",
    )


@pytest.fixture
def container(
    test_settings, fake_store, fake_transport, notifier, session_factory
) -> Generator[ServiceContainer, None, None]:
    """Service container built from fakes and the test database."""
    history = ReplicationHistoryService(session_factory)
    replication_scheduler = ReplicationScheduler(
        store=fake_store,
        transport=fake_transport,
        notifier=notifier,
        history=history,
        clock=StepClock(),
    )
    manager = RestoreManager(
        store=fake_store,
        transport=fake_transport,
        default_remote_dataset=REMOTE_DATASET,
    )
    services = ServiceContainer(
        settings=test_settings,
        store=fake_store,
        transport=fake_transport,
        replication_scheduler=replication_scheduler,
        restore_manager=manager,
        history=history,
    )
    yield services
    replication_scheduler.shutdown(grace_seconds=5)
    manager.shutdown(grace_seconds=5)


@pytest.fixture(scope="function")
def test_client(test_db: Session, container: ServiceContainer) -> Generator[TestClient, None, None]:
    """Create a test client with overridden database and service container."""

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.state.container = container
    client = TestClient(app)

    try:
        yield client
    finally:
        app.dependency_overrides.clear()
        app.state.container = None


@pytest.fixture
def temp_config_file():
    """Create a temporary config file for testing."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        f.write(
            """
app_name: "ZFS Replicator Test"
debug: true
database_url: "sqlite:///:memory:"
dataset: "tank/data"
remote_host: "backup.example.com"
remote_dataset: "backup/data"
snapshot_retention: 10
"""
        )
        temp_path = f.name

    yield temp_path

    if os.path.exists(temp_path):
        os.unlink(temp_path)
