"""
System-of-record store for reconciled entities.

Records are addressed by (tenant, entity type, entity id) and kept as JSON
documents in SQLite. Alongside them the store remembers which client
local id produced which entity, so later changes can address an entity by
the local id it was created under.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Iterator, List, Optional

from ..utils.serialization import dumps


@dataclass(frozen=True)
class RecordKey:
    tenant: str
    entity_type: str
    entity_id: str

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.tenant}:{self.entity_id}"


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class RecordStore:
    """
    SQLite-backed key-value store of entity records.

    Each operation is a single transaction. ``locked(key)`` serializes
    read-compare-write sequences on one key across threads while leaving
    other keys free.
    """

    DEFAULT_DB_PATH = ":memory:"

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the store.

        Args:
            db_path: Path to the SQLite database file, in-memory if None
        """
        self.db_path = db_path or self.DEFAULT_DB_PATH
        self._is_memory = self.db_path == ":memory:"
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._db_lock = threading.RLock()
        self._guard = threading.Lock()
        self._key_locks: Dict[Hashable, _KeyLock] = {}
        self._init_database()

    def _init_database(self) -> None:
        with self._connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    tenant TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    body TEXT NOT NULL,
                    updated_at REAL,
                    PRIMARY KEY (tenant, entity_type, entity_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS aliases (
                    tenant TEXT NOT NULL,
                    local_id TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    PRIMARY KEY (tenant, local_id)
                )
            """)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with self._db_lock:
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

    @contextmanager
    def locked(self, key: Hashable) -> Iterator[None]:
        """
        Hold the lock for ``key`` during a read-compare-write sequence.

        Any hashable works as a key; reconciliation locks a RecordKey for a
        record and a (tenant, local_id) pair for a create. A lock lives only
        while someone holds or waits for it.
        """
        with self._guard:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._key_locks[key]

    @property
    def active_locks(self) -> int:
        """Number of keys currently locked or waited on."""
        with self._guard:
            return len(self._key_locks)

    def get(self, key: RecordKey) -> Optional[Dict[str, Any]]:
        """Return a copy of the stored record, or None."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT body FROM records
                WHERE tenant = ? AND entity_type = ? AND entity_id = ?
                """,
                (key.tenant, key.entity_type, key.entity_id)
            ).fetchone()
            return json.loads(row['body']) if row else None

    def put(self, key: RecordKey, record: Dict[str, Any], alias: Optional[str] = None) -> None:
        """
        Write a record, replacing any previous body.

        Args:
            key: Record address
            record: Full record body; ``updatedAt`` is indexed if present
            alias: Client local id to bind to this entity in the same transaction
        """
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO records (tenant, entity_type, entity_id, body, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (tenant, entity_type, entity_id)
                DO UPDATE SET body = excluded.body, updated_at = excluded.updated_at
                """,
                (key.tenant, key.entity_type, key.entity_id, dumps(record), record.get("updatedAt"))
            )
            if alias is not None:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO aliases (tenant, local_id, entity_type, entity_id)
                    VALUES (?, ?, ?, ?)
                    """,
                    (key.tenant, alias, key.entity_type, key.entity_id)
                )

    def resolve_alias(self, tenant: str, local_id: str) -> Optional[str]:
        """Return the entity id created under ``local_id``, if any."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT entity_id FROM aliases WHERE tenant = ? AND local_id = ?",
                (tenant, local_id)
            ).fetchone()
            return row['entity_id'] if row else None

    def list_records(self, tenant: str, entity_type: str) -> List[Dict[str, Any]]:
        """All records of one type for one tenant, in creation order."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT body FROM records
                WHERE tenant = ? AND entity_type = ?
                ORDER BY rowid ASC
                """,
                (tenant, entity_type)
            ).fetchall()
            return [json.loads(row['body']) for row in rows]

    def count(self, tenant: Optional[str] = None) -> int:
        with self._connection() as conn:
            if tenant is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM records").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM records WHERE tenant = ?", (tenant,)
                ).fetchone()
            return row['count']

    def close(self) -> None:
        """Close any open connections."""
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None
