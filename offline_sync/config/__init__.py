from __future__ import annotations

from .remote import RemoteConfig, RetryConfig
from .runtime import DatabaseConfig, RuntimeConfig
from .settings import AppConfig, Settings, load_config
from .sync import SessionConfig, SyncConfig

__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "RemoteConfig",
    "RetryConfig",
    "RuntimeConfig",
    "SessionConfig",
    "Settings",
    "SyncConfig",
    "load_config",
]
