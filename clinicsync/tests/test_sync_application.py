"""
Tests for SyncApplication class.
"""
from unittest.mock import Mock, patch

import pytest

from clinicsync.app.sync_application import ServiceStatus, SyncApplication
from clinicsync.errors import LocalPersistenceError, SyncTransportError
from clinicsync.sync.transport import HttpSyncTransport, LocalSyncTransport

from conftest import RecordingTransport


@pytest.fixture
def app_factory(test_app_config):
    """Build applications and make sure they are shut down."""
    apps = []

    def factory(**kwargs):
        kwargs.setdefault("transport", RecordingTransport())
        kwargs.setdefault("probe", lambda: True)
        app = SyncApplication(test_app_config, **kwargs)
        apps.append(app)
        return app

    yield factory
    for app in apps:
        app.shutdown()


class TestSyncApplicationLifecycle:
    """Start, shutdown and restart."""

    @pytest.mark.unit
    def test_initialization(self, test_app_config):
        app = SyncApplication(test_app_config)

        assert app.config == test_app_config
        assert app.change_log is None
        assert app.sync_client is None
        assert app.monitor is None
        assert app.is_running is False
        assert app.state.status is ServiceStatus.STOPPED

    @pytest.mark.unit
    def test_start_online(self, app_factory):
        app = app_factory()
        app.start()

        assert app.is_running is True
        assert app.state.status is ServiceStatus.ONLINE
        assert app.monitor.is_online is True
        assert app.monitor.is_running is False

    @pytest.mark.unit
    def test_start_offline(self, app_factory):
        app = app_factory(probe=lambda: False)
        app.start()

        assert app.state.status is ServiceStatus.OFFLINE
        assert app.state.message == "Working offline"

    @pytest.mark.unit
    def test_start_twice_is_noop(self, app_factory):
        app = app_factory()
        app.start()
        change_log = app.change_log

        app.start()

        assert app.change_log is change_log

    @pytest.mark.unit
    def test_default_transport_is_http(self, test_app_config):
        app = SyncApplication(test_app_config, probe=lambda: False)
        app.start()
        try:
            assert isinstance(app._transport, HttpSyncTransport)
            assert app._transport.api_key == "test-api-key"
        finally:
            app.shutdown()

    @pytest.mark.unit
    def test_shutdown(self, app_factory):
        app = app_factory()
        app.start()

        app.shutdown()

        assert app.is_running is False
        assert app.change_log is None
        assert app.state.status is ServiceStatus.STOPPED
        app.shutdown()

    @pytest.mark.integration
    def test_pending_changes_survive_restart(self, app_factory):
        app = app_factory(probe=lambda: False)
        app.start()
        entry = app.record("create", "owner", {"fullName": "Jane"})
        app.shutdown()

        app.start()

        assert app.state.pending_changes == 1
        assert app.change_log.get(entry.local_id) == entry

    @pytest.mark.unit
    def test_context_manager(self, test_app_config):
        with SyncApplication(test_app_config, probe=lambda: True, transport=RecordingTransport()) as app:
            assert app.is_running is True
        assert app.is_running is False

    @pytest.mark.unit
    def test_record_requires_start(self, test_app_config):
        app = SyncApplication(test_app_config)

        with pytest.raises(RuntimeError):
            app.record("create", "owner", {})
        with pytest.raises(RuntimeError):
            app.sync_now()


class TestSyncApplicationSync:
    """Recording and syncing through the application."""

    @pytest.mark.unit
    def test_record_updates_pending_count(self, app_factory):
        app = app_factory(probe=lambda: False)
        app.start()

        app.record("create", "owner", {"fullName": "Jane"})
        app.record("create", "animal", {"name": "Rex"})

        assert app.state.pending_changes == 2

    @pytest.mark.unit
    def test_manual_sync(self, app_factory):
        transport = RecordingTransport()
        app = app_factory(transport=transport)
        app.start()
        app.record("create", "owner", {"fullName": "Jane"})

        result = app.sync_now()

        assert result.accepted == 1
        assert len(transport.batches) == 1
        assert app.state.status is ServiceStatus.ONLINE
        assert app.state.message == "Changes synced successfully"
        assert app.state.pending_changes == 0
        assert app.state.last_sync == result.completed_at

    @pytest.mark.unit
    def test_conflicts_are_surfaced(self, app_factory):
        def refuse_all(entries):
            return {
                "synced": [],
                "conflicts": [
                    {"localId": e.local_id, "existing": {"id": "o1", "phone": "X"}, "incoming": e.payload}
                    for e in entries
                ],
            }

        app = app_factory(transport=RecordingTransport(responder=refuse_all))
        app.start()
        app.record("update", "owner", {"id": "o1", "phone": "Y"})

        app.sync_now()
        summary = app.get_status_summary()

        assert summary["message"] == "1 changes need review"
        assert summary["conflict_count"] == 1
        assert summary["pending_changes"] == 1
        assert app.state.conflicts[0].existing == {"id": "o1", "phone": "X"}

    @pytest.mark.unit
    def test_sync_failure_sets_error(self, app_factory):
        failing = Mock()
        failing.submit.side_effect = SyncTransportError("connection refused")
        app = app_factory(transport=failing)
        app.start()
        app.record("create", "owner", {"fullName": "Jane"})

        with pytest.raises(SyncTransportError):
            app.sync_now()

        assert app.state.status is ServiceStatus.ERROR
        assert app.state.error_count == 1
        assert app.state.errors[-1]["error"] == "connection refused"
        assert app.state.pending_changes == 1

    @pytest.mark.unit
    def test_record_failure_sets_error(self, app_factory):
        app = app_factory()
        app.start()

        with patch.object(app.change_log, "record", side_effect=LocalPersistenceError("disk full")):
            with pytest.raises(LocalPersistenceError):
                app.record("create", "owner", {"fullName": "Jane"})

        assert app.state.status is ServiceStatus.ERROR
        assert app.state.message == "Change could not be saved locally"

    @pytest.mark.unit
    def test_errors_are_capped(self, app_factory):
        app = app_factory()
        app.start()

        for i in range(15):
            app._update_status(ServiceStatus.ERROR, "boom", error=RuntimeError(f"e{i}"))

        assert app.state.error_count == 15
        assert len(app.state.errors) == 10
        assert app.get_status_summary()["recent_errors"][-1]["error"] == "e14"


class TestSyncApplicationConnectivity:
    """Connectivity-driven behaviour."""

    @pytest.mark.unit
    def test_regain_triggers_sync(self, app_factory):
        transport = RecordingTransport()
        statuses = []
        app = app_factory(
            transport=transport,
            probe=lambda: False,
            on_status_change=lambda state: statuses.append(state.status)
        )
        app.start()
        app.record("create", "owner", {"fullName": "Jane"})

        app.monitor.observe(True)
        assert app.sync_client.wait_idle(timeout=5)

        assert len(transport.batches) == 1
        assert app.state.pending_changes == 0
        assert ServiceStatus.SYNCING in statuses
        assert statuses[-1] is ServiceStatus.ONLINE

    @pytest.mark.unit
    def test_loss_is_reported(self, app_factory):
        app = app_factory()
        app.start()

        app.monitor.observe(False)

        assert app.state.status is ServiceStatus.OFFLINE
        assert "kept locally" in app.state.message

    @pytest.mark.unit
    def test_auto_sync_disabled(self, test_app_config):
        test_app_config.sync.auto_sync = False
        transport = RecordingTransport()
        app = SyncApplication(test_app_config, probe=lambda: False, transport=transport)
        app.start()
        try:
            app.record("create", "owner", {"fullName": "Jane"})
            app.monitor.observe(True)
            assert app.sync_client.wait_idle(timeout=5)

            assert transport.batches == []
            assert app.state.status is ServiceStatus.ONLINE
        finally:
            app.shutdown()

    @pytest.mark.unit
    def test_polling_starts_with_interval(self, test_app_config):
        test_app_config.sync.check_interval = 60
        app = SyncApplication(test_app_config, probe=lambda: True, transport=RecordingTransport())
        app.start()
        try:
            assert app.monitor.is_running is True
        finally:
            app.shutdown()
        assert app.monitor is None

    @pytest.mark.unit
    def test_broken_status_callback(self, app_factory):
        app = app_factory(on_status_change=Mock(side_effect=RuntimeError("ui gone")))

        app.start()

        assert app.state.status is ServiceStatus.ONLINE


class TestDemoMode:
    """In-process reconciliation when no server is configured."""

    @pytest.mark.integration
    def test_demo_round_trip(self, test_app_config):
        test_app_config.sync.demo_mode = True
        test_app_config.sync.demo_tenant = "demo-clinic"
        app = SyncApplication(test_app_config)
        app.start()
        try:
            assert isinstance(app._transport, LocalSyncTransport)
            assert app.monitor.is_online is True

            created = app.record("create", "owner", {"fullName": "Jane"})
            app.record("update", "owner", {"id": created.local_id, "phone": "555"})
            result = app.sync_now()

            assert result.accepted == 2
            store = app._demo_store
            assert store.count("demo-clinic") == 1
            assert store.list_records("demo-clinic", "owner")[0]["phone"] == "555"
        finally:
            app.shutdown()

        assert app._transport is None
        assert app._demo_store is None
