"""
Application configuration for the sync client and server.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_api_keys(value: str) -> Dict[str, str]:
    """Parse "key:tenant,key2:tenant2" into a key -> tenant mapping."""
    keys = {}
    for pair in value.split(","):
        pair = pair.strip()
        if not pair:
            continue
        key, sep, tenant = pair.partition(":")
        if not sep or not key.strip() or not tenant.strip():
            raise ValueError(f"Invalid API key entry: {pair!r} (expected key:tenant)")
        keys[key.strip()] = tenant.strip()
    return keys


@dataclass
class StorageConfig:
    """Local change log storage."""
    path: str = "clinicsync_changes.db"
    namespace: str = "clinicsync_offline_changes"


@dataclass
class SyncConfig:
    """Client sync configuration."""
    base_url: str = "http://localhost:8080"
    api_key: Optional[str] = None
    timeout: float = 30.0
    check_interval: float = 30.0
    auto_sync: bool = True
    demo_mode: bool = False
    demo_tenant: str = "demo-clinic"


@dataclass
class ServerConfig:
    """Reconciliation server configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    db_path: str = ":memory:"
    api_keys: Dict[str, str] = field(default_factory=dict)


@dataclass
class AppConfig:
    """Main application configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AppConfig':
        """
        Create configuration from CLINICSYNC_* environment variables.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        config = cls()

        if "CLINICSYNC_BUFFER_PATH" in env:
            config.storage.path = env["CLINICSYNC_BUFFER_PATH"]
        if "CLINICSYNC_NAMESPACE" in env:
            config.storage.namespace = env["CLINICSYNC_NAMESPACE"]

        if "CLINICSYNC_BASE_URL" in env:
            config.sync.base_url = env["CLINICSYNC_BASE_URL"]
        if "CLINICSYNC_API_KEY" in env:
            config.sync.api_key = env["CLINICSYNC_API_KEY"] or None
        if "CLINICSYNC_TIMEOUT" in env:
            config.sync.timeout = float(env["CLINICSYNC_TIMEOUT"])
        if "CLINICSYNC_CHECK_INTERVAL" in env:
            config.sync.check_interval = float(env["CLINICSYNC_CHECK_INTERVAL"])
        if "CLINICSYNC_AUTO_SYNC" in env:
            config.sync.auto_sync = _parse_bool(env["CLINICSYNC_AUTO_SYNC"])
        if "CLINICSYNC_DEMO_MODE" in env:
            config.sync.demo_mode = _parse_bool(env["CLINICSYNC_DEMO_MODE"])
        if "CLINICSYNC_DEMO_TENANT" in env:
            config.sync.demo_tenant = env["CLINICSYNC_DEMO_TENANT"]

        if "CLINICSYNC_SERVER_HOST" in env:
            config.server.host = env["CLINICSYNC_SERVER_HOST"]
        if "CLINICSYNC_SERVER_PORT" in env:
            config.server.port = int(env["CLINICSYNC_SERVER_PORT"])
        if "CLINICSYNC_SERVER_DB" in env:
            config.server.db_path = env["CLINICSYNC_SERVER_DB"]
        if "CLINICSYNC_API_KEYS" in env:
            config.server.api_keys = _parse_api_keys(env["CLINICSYNC_API_KEYS"])

        return config
