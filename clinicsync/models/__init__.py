"""Models package for the sync core."""

from .change_entry import ChangeEntry, OperationKind, SyncState
from .verdict import ConflictReport, SyncResult, Verdict, VerdictStatus

__all__ = [
    'ChangeEntry', 'OperationKind', 'SyncState',
    'ConflictReport', 'SyncResult', 'Verdict', 'VerdictStatus',
]
