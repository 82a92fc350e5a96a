"""
Server-side reconciliation module.

- RecordStore: system-of-record key-value store
- ReconciliationService: last-write-wins batch reconciliation
"""

from .record_store import RecordKey, RecordStore
from .reconciliation import ReconciliationService

__all__ = ['RecordKey', 'RecordStore', 'ReconciliationService']
