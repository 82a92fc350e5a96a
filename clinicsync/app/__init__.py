"""Client application lifecycle."""

from .sync_application import ServiceState, ServiceStatus, SyncApplication

__all__ = ['ServiceState', 'ServiceStatus', 'SyncApplication']
