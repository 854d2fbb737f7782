"""Error types raised by the synchronization engine."""

from typing import Any


class FileSyncError(Exception):
    """Base class for synchronization errors."""

    pass


class FilesystemAccessError(FileSyncError):
    """Raised when replica metadata or a replica root cannot be read or written."""

    pass


class RemoteAccessError(FileSyncError):
    """Raised when a network share cannot be connected or disconnected."""

    pass


class DetectionError(FileSyncError):
    """Raised when a replica tree cannot be enumerated or its baseline persisted."""

    pass


class ItemApplyError(FileSyncError):
    """Raised for a single change that cannot be applied to the destination.

    Never escapes the applier: it is converted into a skipped outcome.
    """

    def __init__(self, reason: str, cause: BaseException | None = None):
        super().__init__(reason)
        self.reason = reason
        self.cause = cause


class SyncCancelledError(FileSyncError):
    """Raised when a run is cancelled from outside.

    Cancellation is a terminal state of its own and is not reported as an error.

    Args:
        outcomes: Outcomes of the records applied before cancellation
        remaining: Records that were never attempted

    Attributes:
        diagnostics: Diagnostic lines of the task run, filled in by ``filesync.task.run``
    """

    def __init__(
        self,
        message: str = "Synchronization cancelled",
        outcomes: list[Any] | None = None,
        remaining: list[Any] | None = None,
    ):
        super().__init__(message)
        self.outcomes = outcomes or []
        self.remaining = remaining or []
        self.diagnostics: list[str] = []
