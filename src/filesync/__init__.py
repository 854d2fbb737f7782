"""One-way file synchronization between two replica folders."""

from filesync.share import CommandShareMounter, RemoteCredentials, network_share_access
from filesync.sync import ChangeFilter, RunResult, SyncOrchestrator
from filesync.task import TaskResult, TaskStatus, run, run_from_config

__all__ = [
    "ChangeFilter",
    "CommandShareMounter",
    "RemoteCredentials",
    "RunResult",
    "SyncOrchestrator",
    "TaskResult",
    "TaskStatus",
    "network_share_access",
    "run",
    "run_from_config",
]

__version__ = "0.1.0"
