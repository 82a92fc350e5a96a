"""
Sync client that drains the change log into the reconciliation service.
"""

import logging
import threading
from concurrent.futures import Future
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..errors import ClinicSyncError, SyncTransportError
from ..models import ChangeEntry, ConflictReport, SyncResult
from .change_log import ChangeLog
from .connectivity import ConnectivityMonitor

logger = logging.getLogger(__name__)


class SyncClient:
    """
    Sends pending change entries in one batch and applies the verdicts.

    This class provides:
    - Single-flight sync: overlapping calls share the in-flight result
    - Mark-synced and prune for accepted entries
    - Conflict reports for refused entries, which stay pending
    - Background sync triggered by connectivity regain
    """

    def __init__(
        self,
        change_log: ChangeLog,
        transport: Any,
        on_sync_started: Optional[Callable[[], None]] = None,
        on_sync_finished: Optional[Callable[[Optional[SyncResult], Optional[Exception]], None]] = None
    ):
        """
        Initialize the sync client.

        Args:
            change_log: Local log to drain
            transport: Object with ``submit(entries)`` returning the
                       endpoint's synced/conflicts lists
            on_sync_started: Called when a batch is about to be sent
            on_sync_finished: Called with the result or the error of a batch
        """
        self.change_log = change_log
        self.transport = transport
        self.on_sync_started = on_sync_started
        self.on_sync_finished = on_sync_finished

        self.last_result: Optional[SyncResult] = None
        self.last_sync_at: Optional[datetime] = None
        self.last_error: Optional[Exception] = None

        self._lock = threading.Lock()
        self._in_flight: Optional[Future] = None
        self._followers = 0
        self._background_thread: Optional[threading.Thread] = None

    @property
    def is_syncing(self) -> bool:
        with self._lock:
            return self._in_flight is not None

    @property
    def waiting_callers(self) -> int:
        """Number of sync_now callers waiting on the sync in flight."""
        with self._lock:
            return self._followers

    def sync_now(self) -> SyncResult:
        """
        Sync all pending entries.

        If a sync is already running, waits for it and returns its result
        instead of sending another batch.

        Returns:
            Counts of accepted and conflicted entries plus conflict reports

        Raises:
            SyncTransportError: If the batch could not be delivered; the log
                                is left unchanged
        """
        with self._lock:
            future = self._in_flight
            leader = future is None
            if leader:
                future = Future()
                self._in_flight = future
            else:
                self._followers += 1

        if not leader:
            logger.debug("Sync already in flight, waiting for its result")
            try:
                return future.result()
            finally:
                with self._lock:
                    self._followers -= 1

        try:
            result = self._run_sync()
        except Exception as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._in_flight = None

    def _run_sync(self) -> SyncResult:
        entries = self.change_log.pending_entries()
        if not entries:
            return SyncResult(completed_at=datetime.now())

        logger.info(f"Syncing {len(entries)} pending changes")
        self._notify_started()

        try:
            response = self.transport.submit(entries)
        except SyncTransportError as e:
            self._record_failure(e)
            raise
        except Exception as e:
            error = SyncTransportError(f"Sync batch failed: {e}")
            self._record_failure(error)
            raise error from e

        result = self._apply_response(entries, response)
        self.change_log.prune_synced()

        self.last_result = result
        self.last_sync_at = result.completed_at
        self.last_error = None
        logger.info(f"Sync finished: {result.accepted} accepted, {result.conflicted} conflicted")
        self._notify_finished(result, None)
        return result

    def _apply_response(
        self,
        entries: Sequence[ChangeEntry],
        response: Dict[str, List[Dict[str, Any]]]
    ) -> SyncResult:
        by_id = {entry.local_id: entry for entry in entries}
        answered = set()
        result = SyncResult()

        for item in response.get("synced", []):
            local_id = item.get("localId")
            if local_id not in by_id:
                logger.warning(f"Server acknowledged unknown change {local_id!r}")
                continue
            self.change_log.mark_synced(local_id)
            answered.add(local_id)
            result.accepted += 1
            result.assigned_ids[local_id] = item.get("assignedId")

        for item in response.get("conflicts", []):
            local_id = item.get("localId")
            entry = by_id.get(local_id)
            if entry is None:
                logger.warning(f"Server reported conflict for unknown change {local_id!r}")
                continue
            answered.add(local_id)
            result.conflicted += 1
            result.conflicts.append(ConflictReport(
                local_id=local_id,
                entity_type=entry.entity_type,
                existing=item.get("existing") or {},
                incoming=item.get("incoming", entry.payload),
            ))
            logger.warning(f"Conflict on {entry.entity_type} change {local_id}; left pending")

        missing = len(by_id) - len(answered)
        if missing:
            logger.warning(f"{missing} changes got no verdict and stay pending")

        result.completed_at = datetime.now()
        return result

    def _record_failure(self, error: Exception) -> None:
        self.last_error = error
        logger.error(f"Sync attempt failed: {error}")
        self._notify_finished(None, error)

    def _notify_started(self) -> None:
        if self.on_sync_started:
            try:
                self.on_sync_started()
            except Exception as e:
                logger.error(f"Error in sync started callback: {e}")

    def _notify_finished(self, result: Optional[SyncResult], error: Optional[Exception]) -> None:
        if self.on_sync_finished:
            try:
                self.on_sync_finished(result, error)
            except Exception as e:
                logger.error(f"Error in sync finished callback: {e}")

    def request_sync(self) -> bool:
        """
        Start a sync in a background thread unless one is already running.

        Returns:
            True if a new background sync was started
        """
        if self.is_syncing:
            logger.debug("Sync request coalesced with the one in flight")
            return False

        self._background_thread = threading.Thread(
            target=self._background_sync,
            name="SyncClient",
            daemon=True
        )
        self._background_thread.start()
        return True

    def _background_sync(self) -> None:
        try:
            self.sync_now()
        except ClinicSyncError as e:
            logger.warning(f"Background sync failed, will retry on next reconnect: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error in background sync: {e}")

    def attach(self, monitor: ConnectivityMonitor) -> Callable[[], None]:
        """
        Sync automatically whenever the monitor reports connectivity regained.

        Returns:
            A callable that detaches the client from the monitor
        """
        def on_change(online: bool) -> None:
            if online:
                self.request_sync()

        return monitor.subscribe(on_change)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the latest background sync to finish.

        Returns:
            True if no background sync is still running
        """
        thread = self._background_thread
        if thread is not None:
            thread.join(timeout=timeout)
            return not thread.is_alive()
        return True
