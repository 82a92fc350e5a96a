"""
Error types for the sync core.

Persistence and transport errors abort the whole operation they occur in.
Conflict and not-found errors belong to a single change entry and are turned
into conflicted verdicts without touching sibling entries.
"""
from typing import Any, Dict, Optional


class ClinicSyncError(Exception):
    """Base class for all sync core errors."""


class LocalPersistenceError(ClinicSyncError):
    """A change entry could not be durably written; it was not recorded."""


class SyncTransportError(ClinicSyncError):
    """The sync request did not complete. The local log is unchanged."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConflictError(ClinicSyncError):
    """The server holds a newer version of the entity than the incoming change."""

    def __init__(self, message: str, existing: Dict[str, Any], incoming: Dict[str, Any]):
        super().__init__(message)
        self.existing = existing
        self.incoming = incoming


class NotFoundError(ClinicSyncError):
    """A change addresses an entity the server has no record of."""
