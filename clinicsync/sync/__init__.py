"""
Client-side synchronization module.

This module provides components for getting offline edits to the server:
- ChangeLog: SQLite-based durable log of pending mutations
- ConnectivityMonitor: reachability state with transition listeners
- SyncClient: single-flight batch sync with conflict reporting
- HttpSyncTransport / LocalSyncTransport: how batches reach the server
"""

from .change_log import ChangeLog
from .connectivity import ConnectivityMonitor
from .sync_client import SyncClient
from .transport import HttpSyncTransport, LocalSyncTransport

__all__ = ['ChangeLog', 'ConnectivityMonitor', 'SyncClient', 'HttpSyncTransport', 'LocalSyncTransport']
