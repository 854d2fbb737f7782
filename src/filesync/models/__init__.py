"""Configuration models for the file synchronization task."""

from filesync.models.config import AppConfig, LoggingConfig, RemoteConfig, SyncConfig

__all__ = [
    "AppConfig",
    "LoggingConfig",
    "RemoteConfig",
    "SyncConfig",
]
