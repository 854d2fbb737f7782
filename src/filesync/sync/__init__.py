"""Synchronization components for detecting and propagating replica changes."""

from filesync.sync.change_detector import ChangeDetector
from filesync.sync.change_filter import ChangeFilter
from filesync.sync.errors import (
    DetectionError,
    FilesystemAccessError,
    FileSyncError,
    ItemApplyError,
    RemoteAccessError,
    SyncCancelledError,
)
from filesync.sync.models import (
    ApplyOutcome,
    ChangeKind,
    ChangeRecord,
    ChangeSet,
    OutcomeStatus,
    RunResult,
    SignatureMode,
)
from filesync.sync.recycle_bin import RecycleBin
from filesync.sync.replica import ReplicaRoot
from filesync.sync.replica_identity import ReplicaIdentity
from filesync.sync.sync_applier import SyncApplier
from filesync.sync.sync_orchestrator import SyncOrchestrator
from filesync.sync.tracking_store import TrackingStore

__all__ = [
    "ApplyOutcome",
    "ChangeDetector",
    "ChangeFilter",
    "ChangeKind",
    "ChangeRecord",
    "ChangeSet",
    "DetectionError",
    "FileSyncError",
    "FilesystemAccessError",
    "ItemApplyError",
    "OutcomeStatus",
    "RecycleBin",
    "RemoteAccessError",
    "ReplicaIdentity",
    "ReplicaRoot",
    "RunResult",
    "SignatureMode",
    "SyncApplier",
    "SyncCancelledError",
    "SyncOrchestrator",
    "TrackingStore",
]
