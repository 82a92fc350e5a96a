"""
Local SQLite change log for offline-first editing.

Every mutation made on the client is appended here first, online or not.
Entries stay pending until the server accepts them, then they are marked
synced and pruned. Rows are addressed by an autoincrement sequence so the
insertion order survives restarts.
"""

import json
import logging
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from ..errors import LocalPersistenceError
from ..models import ChangeEntry, OperationKind, SyncState
from ..utils.serialization import dumps

logger = logging.getLogger(__name__)


class ChangeLog:
    """
    SQLite-based append log of client mutations.

    This class provides:
    - Durable storage of every recorded mutation before it is acknowledged
    - Insertion-ordered retrieval of pending entries
    - Idempotent pending -> synced transitions
    - Removal of synced entries only
    """

    DEFAULT_DB_PATH = "clinicsync_changes.db"
    DEFAULT_NAMESPACE = "clinicsync_offline_changes"

    def __init__(
        self,
        db_path: Optional[str] = None,
        namespace: Optional[str] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the change log.

        Args:
            db_path: Path to the SQLite database file. If None, uses default.
                     Use ":memory:" for in-memory database (useful for testing).
            namespace: Storage key the entries are filed under
            clock: Source of client timestamps
        """
        self.db_path = db_path or self.DEFAULT_DB_PATH
        self.namespace = namespace or self.DEFAULT_NAMESPACE
        self._clock = clock
        self._lock = threading.Lock()
        self._is_memory = self.db_path == ":memory:"
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._init_database()

    def _init_database(self) -> None:
        """Initialize the SQLite database schema."""
        try:
            with self._connection() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS change_log (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        namespace TEXT NOT NULL,
                        local_id TEXT NOT NULL UNIQUE,
                        operation_kind TEXT NOT NULL,
                        entity_type TEXT NOT NULL,
                        payload TEXT NOT NULL,
                        client_timestamp REAL NOT NULL,
                        sync_state TEXT NOT NULL DEFAULT 'pending'
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_change_log_state
                    ON change_log(namespace, sync_state, seq)
                """)
        except sqlite3.Error as e:
            raise LocalPersistenceError(f"Cannot open change log at {self.db_path}: {e}") from e

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction."""
        # For in-memory databases, reuse the same connection
        if self._is_memory:
            if self._shared_conn is None:
                self._shared_conn = sqlite3.connect(":memory:", check_same_thread=False)
                self._shared_conn.row_factory = sqlite3.Row
            with self._shared_conn:
                yield self._shared_conn
            return

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> ChangeEntry:
        return ChangeEntry(
            local_id=row['local_id'],
            operation_kind=OperationKind(row['operation_kind']),
            entity_type=row['entity_type'],
            payload=json.loads(row['payload']),
            client_timestamp=row['client_timestamp'],
            sync_state=SyncState(row['sync_state']),
        )

    def record(
        self,
        operation_kind: Union[OperationKind, str],
        entity_type: str,
        payload: Dict[str, Any]
    ) -> ChangeEntry:
        """
        Append a mutation to the log.

        The entry is committed before this returns.

        Args:
            operation_kind: "create" or "update"
            entity_type: Collection name, e.g. "owner"
            payload: Entity fields; partial for updates

        Returns:
            The recorded pending entry

        Raises:
            ValueError: If the arguments do not describe a valid mutation
            LocalPersistenceError: If the entry could not be stored
        """
        kind = OperationKind(operation_kind)
        if not isinstance(entity_type, str) or not entity_type:
            raise ValueError("entity_type must be a non-empty string")
        if not isinstance(payload, dict):
            raise ValueError("payload must be a dict")

        try:
            encoded = dumps(payload)
        except (TypeError, ValueError) as e:
            raise LocalPersistenceError(f"Payload for {entity_type} is not serializable: {e}") from e

        entry = ChangeEntry(
            local_id=f"offline-{uuid.uuid4().hex}",
            operation_kind=kind,
            entity_type=entity_type,
            payload=json.loads(encoded),
            client_timestamp=self._clock(),
        )

        with self._lock:
            try:
                with self._connection() as conn:
                    conn.execute(
                        """
                        INSERT INTO change_log
                            (namespace, local_id, operation_kind, entity_type,
                             payload, client_timestamp, sync_state)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (self.namespace, entry.local_id, kind.value, entity_type,
                         encoded, entry.client_timestamp, SyncState.PENDING.value)
                    )
            except sqlite3.Error as e:
                logger.error(f"Failed to persist {kind.value} on {entity_type}: {e}")
                raise LocalPersistenceError(f"Failed to persist change: {e}") from e

        logger.debug(f"Recorded {kind.value} on {entity_type} as {entry.local_id}")
        return entry

    def pending_entries(self, limit: Optional[int] = None) -> List[ChangeEntry]:
        """
        Get pending entries in insertion order.

        Args:
            limit: Maximum number of entries to return, all if None

        Returns:
            List of pending change entries
        """
        with self._lock:
            with self._connection() as conn:
                cursor = conn.execute(
                    """
                    SELECT local_id, operation_kind, entity_type, payload,
                           client_timestamp, sync_state
                    FROM change_log
                    WHERE namespace = ? AND sync_state = ?
                    ORDER BY seq ASC
                    LIMIT ?
                    """,
                    (self.namespace, SyncState.PENDING.value, -1 if limit is None else limit)
                )
                return [self._row_to_entry(row) for row in cursor.fetchall()]

    def get(self, local_id: str) -> Optional[ChangeEntry]:
        """Look up a single entry regardless of its state."""
        with self._lock:
            with self._connection() as conn:
                row = conn.execute(
                    """
                    SELECT local_id, operation_kind, entity_type, payload,
                           client_timestamp, sync_state
                    FROM change_log
                    WHERE namespace = ? AND local_id = ?
                    """,
                    (self.namespace, local_id)
                ).fetchone()
                return self._row_to_entry(row) if row else None

    def mark_synced(self, local_id: str) -> bool:
        """
        Move a pending entry to synced.

        Missing or already synced entries are left alone.

        Args:
            local_id: The entry to mark

        Returns:
            True if the entry changed state
        """
        with self._lock:
            with self._connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE change_log SET sync_state = ?
                    WHERE namespace = ? AND local_id = ? AND sync_state = ?
                    """,
                    (SyncState.SYNCED.value, self.namespace, local_id, SyncState.PENDING.value)
                )
                return cursor.rowcount > 0

    def prune_synced(self) -> int:
        """
        Delete all synced entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            with self._connection() as conn:
                cursor = conn.execute(
                    "DELETE FROM change_log WHERE namespace = ? AND sync_state = ?",
                    (self.namespace, SyncState.SYNCED.value)
                )
                removed = cursor.rowcount
        if removed:
            logger.debug(f"Pruned {removed} synced entries")
        return removed

    def count_pending(self) -> int:
        """
        Get the count of pending entries.

        Returns:
            Number of pending entries
        """
        with self._lock:
            with self._connection() as conn:
                cursor = conn.execute(
                    "SELECT COUNT(*) AS count FROM change_log WHERE namespace = ? AND sync_state = ?",
                    (self.namespace, SyncState.PENDING.value)
                )
                return cursor.fetchone()['count']

    def count(self) -> int:
        """Count every stored entry, synced ones not yet pruned included."""
        with self._lock:
            with self._connection() as conn:
                cursor = conn.execute(
                    "SELECT COUNT(*) AS count FROM change_log WHERE namespace = ?",
                    (self.namespace,)
                )
                return cursor.fetchone()['count']

    def close(self) -> None:
        """Close the log and any open connections."""
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None
