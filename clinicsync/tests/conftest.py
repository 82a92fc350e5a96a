"""
Pytest configuration and shared fixtures for the sync core tests.
"""
import os
import tempfile
import threading
import uuid

import pytest

from clinicsync.config.app_config import AppConfig, ServerConfig, StorageConfig, SyncConfig
from clinicsync.server.api import create_server
from clinicsync.server.reconciliation import ReconciliationService
from clinicsync.server.record_store import RecordStore
from clinicsync.sync.change_log import ChangeLog


class FakeClock:
    """Manually advanced clock for deterministic client timestamps."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport:
    """Transport double that records batches and answers from a callable."""

    def __init__(self, responder=None, available: bool = True):
        self.batches = []
        self.responder = responder or self.accept_all
        self.available = available

    @staticmethod
    def accept_all(entries):
        return {
            "synced": [{"localId": e.local_id, "assignedId": f"id-{e.local_id}"} for e in entries],
            "conflicts": [],
        }

    def submit(self, entries):
        self.batches.append(list(entries))
        return self.responder(entries)

    def is_available(self) -> bool:
        return self.available


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def change_log(clock):
    """Create an in-memory change log driven by the fake clock."""
    log = ChangeLog(":memory:", clock=clock)
    yield log
    log.close()


@pytest.fixture
def temp_db_path():
    """Temporary SQLite file path, removed after the test."""
    temp_path = os.path.join(tempfile.gettempdir(), f"test_clinicsync_{uuid.uuid4().hex}.db")

    yield temp_path

    # Cleanup
    try:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
    except OSError:
        pass


@pytest.fixture
def record_store():
    store = RecordStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def service(record_store):
    return ReconciliationService(record_store)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def test_app_config(temp_db_path):
    """Client configuration with auto sync polling disabled."""
    return AppConfig(
        storage=StorageConfig(path=temp_db_path),
        sync=SyncConfig(base_url="http://localhost:8080", api_key="test-api-key", check_interval=0),
        server=ServerConfig(host="127.0.0.1", port=0, api_keys={"test-api-key": "clinic-1"})
    )


@pytest.fixture
def sync_server(service):
    """Run the sync API on an ephemeral port in a background thread."""
    config = ServerConfig(
        host="127.0.0.1",
        port=0,
        api_keys={"key-clinic-1": "clinic-1", "key-clinic-2": "clinic-2"}
    )
    httpd = create_server(config, service=service)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    host, port = httpd.server_address[:2]
    httpd.base_url = f"http://{host}:{port}"

    yield httpd

    httpd.shutdown()
    httpd.server_close()
    thread.join(timeout=5)
