"""
Client-side sync application context.

Owns the change log, transport, sync client and connectivity monitor for one
client process and tracks a status summary for the UI's sync indicator.
Construct it on startup, call ``start()``, and ``shutdown()`` on exit (or
use it as a context manager).
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..config.app_config import AppConfig
from ..errors import ClinicSyncError
from ..models import ChangeEntry, ConflictReport, SyncResult
from ..server.reconciliation import ReconciliationService
from ..server.record_store import RecordStore
from ..sync.change_log import ChangeLog
from ..sync.connectivity import ConnectivityMonitor
from ..sync.sync_client import SyncClient
from ..sync.transport import HttpSyncTransport, LocalSyncTransport


class ServiceStatus(Enum):
    """Status states for the sync application."""
    STOPPED = "stopped"
    STARTING = "starting"
    ONLINE = "online"
    OFFLINE = "offline"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass
class ServiceState:
    """Current state of the sync application."""
    status: ServiceStatus = ServiceStatus.STOPPED
    message: str = ""
    last_sync: Optional[datetime] = None
    pending_changes: int = 0
    conflicts: List[ConflictReport] = field(default_factory=list)
    error_count: int = 0
    errors: list = field(default_factory=list)


class SyncApplication:
    """
    Explicit lifecycle wrapper around the client sync components.

    Platform hooks (reachability probe, transport) can be injected so tests
    run without real network events.
    """

    def __init__(
        self,
        config: AppConfig,
        probe: Optional[Callable[[], bool]] = None,
        transport: Optional[Any] = None,
        on_status_change: Optional[Callable[[ServiceState], None]] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the sync application.

        Args:
            config: Application configuration
            probe: Reachability probe; defaults to the transport's health check
            transport: Batch transport; built from config if None
            on_status_change: Callback for status updates
            logger: Optional logger instance
        """
        self.config = config
        self.on_status_change = on_status_change
        self.logger = logger or logging.getLogger(__name__)

        self._probe = probe
        self._transport = transport
        self._state = ServiceState()
        self._lock = threading.Lock()
        self._detach: Optional[Callable[[], None]] = None
        self._demo_store: Optional[RecordStore] = None

        self.change_log: Optional[ChangeLog] = None
        self.sync_client: Optional[SyncClient] = None
        self.monitor: Optional[ConnectivityMonitor] = None

    @property
    def state(self) -> ServiceState:
        """Get current application state."""
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.sync_client is not None

    def _update_status(
        self,
        status: ServiceStatus,
        message: str = "",
        error: Optional[Exception] = None
    ) -> None:
        """
        Update status and notify callback.

        Args:
            status: New status
            message: Optional status message
            error: Optional error that occurred
        """
        with self._lock:
            self._state.status = status
            self._state.message = message

            if error:
                self._state.error_count += 1
                self._state.errors.append({
                    'time': datetime.now(),
                    'error': str(error)
                })
                # Keep only last 10 errors
                self._state.errors = self._state.errors[-10:]

            if self.change_log is not None:
                self._state.pending_changes = self.change_log.count_pending()

        self.logger.info(f"Status: {status.value} - {message}")

        if self.on_status_change:
            try:
                self.on_status_change(self._state)
            except Exception as e:
                self.logger.error(f"Error in status callback: {e}")

    def _build_transport(self) -> Any:
        sync_config = self.config.sync
        if sync_config.demo_mode:
            self.logger.warning(
                "Demo mode: changes are reconciled in-process and never reach the server"
            )
            self._demo_store = RecordStore()
            return LocalSyncTransport(ReconciliationService(self._demo_store), sync_config.demo_tenant)
        return HttpSyncTransport(
            base_url=sync_config.base_url,
            api_key=sync_config.api_key,
            timeout=sync_config.timeout
        )

    def start(self) -> None:
        """Build the sync components and begin watching connectivity."""
        if self.is_running:
            self.logger.warning("Sync application is already running")
            return

        self._update_status(ServiceStatus.STARTING, "Opening change log...")
        self.change_log = ChangeLog(self.config.storage.path, self.config.storage.namespace)

        if self._transport is None:
            self._transport = self._build_transport()

        self.sync_client = SyncClient(
            self.change_log,
            self._transport,
            on_sync_started=self._on_sync_started,
            on_sync_finished=self._on_sync_finished
        )

        probe = self._probe or self._transport.is_available
        self.monitor = ConnectivityMonitor(probe, check_interval=self.config.sync.check_interval)
        self.monitor.subscribe(self._on_connectivity_change)
        if self.config.sync.auto_sync:
            self._detach = self.sync_client.attach(self.monitor)
            if self.config.sync.check_interval > 0:
                self.monitor.start()

        if self.monitor.is_online:
            self._update_status(ServiceStatus.ONLINE, "Connected")
        else:
            self._update_status(ServiceStatus.OFFLINE, "Working offline")

    def _require_running(self) -> None:
        if not self.is_running:
            raise RuntimeError("Sync application is not started")

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self._update_status(ServiceStatus.ONLINE, "Connection restored")
        else:
            self._update_status(ServiceStatus.OFFLINE, "Connection lost, changes will be kept locally")

    def _on_sync_started(self) -> None:
        self._update_status(ServiceStatus.SYNCING, "Syncing changes...")

    def _on_sync_finished(self, result: Optional[SyncResult], error: Optional[Exception]) -> None:
        online = self.monitor.is_online if self.monitor else False
        settled = ServiceStatus.ONLINE if online else ServiceStatus.OFFLINE

        if error is not None:
            self._update_status(ServiceStatus.ERROR, "Sync failed. Will retry later.", error=error)
            return

        with self._lock:
            self._state.last_sync = result.completed_at
            self._state.conflicts = list(result.conflicts)

        if result.conflicted:
            self._update_status(settled, f"{result.conflicted} changes need review")
        else:
            self._update_status(settled, "Changes synced successfully")

    def record(self, operation_kind: str, entity_type: str, payload: Dict[str, Any]) -> ChangeEntry:
        """
        Record an edit in the change log.

        Raises:
            LocalPersistenceError: If the edit could not be stored; the caller
                                   must tell the user it was not saved
        """
        self._require_running()
        try:
            entry = self.change_log.record(operation_kind, entity_type, payload)
        except ClinicSyncError as e:
            self._update_status(ServiceStatus.ERROR, "Change could not be saved locally", error=e)
            raise
        with self._lock:
            self._state.pending_changes = self.change_log.count_pending()
        return entry

    def sync_now(self) -> SyncResult:
        """Run a manual sync; see SyncClient.sync_now."""
        self._require_running()
        return self.sync_client.sync_now()

    def shutdown(self, timeout: float = 10.0) -> None:
        """Stop background work and release local storage."""
        if not self.is_running:
            return

        self.logger.info("Shutting down sync application...")
        if self.monitor is not None:
            self.monitor.stop()
        if self._detach is not None:
            self._detach()
            self._detach = None
        if not self.sync_client.wait_idle(timeout=timeout):
            self.logger.warning("Background sync did not finish within timeout")

        self.change_log.close()
        self.change_log = None
        if self._demo_store is not None:
            self._demo_store.close()
            self._demo_store = None
            self._transport = None

        self.sync_client = None
        self.monitor = None
        self._update_status(ServiceStatus.STOPPED, "Sync application stopped")

    def __enter__(self) -> 'SyncApplication':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def get_status_summary(self) -> dict:
        """
        Get a summary of current sync status.

        Returns:
            Dictionary with status information
        """
        state = self.state
        return {
            'status': state.status.value,
            'message': state.message,
            'running': self.is_running,
            'online': self.monitor.is_online if self.monitor else False,
            'last_sync': state.last_sync.isoformat() if state.last_sync else None,
            'pending_changes': state.pending_changes,
            'conflict_count': len(state.conflicts),
            'error_count': state.error_count,
            'recent_errors': state.errors[-3:] if state.errors else []
        }
