"""Configuration for the sync core."""

from .app_config import AppConfig, ServerConfig, StorageConfig, SyncConfig

__all__ = ['AppConfig', 'ServerConfig', 'StorageConfig', 'SyncConfig']
