"""Data models for synchronization operations."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class ChangeKind(str, Enum):
    """Kind of change detected on a replica."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RENAME = "rename"


class SignatureMode(str, Enum):
    """How file content is fingerprinted for update and rename detection."""

    METADATA = "metadata"
    HASH = "hash"


class ChangeRecord(BaseModel):
    """One detected change, identified by relative POSIX paths."""

    kind: ChangeKind = Field(default=..., description="Kind of change")
    old_path: str | None = Field(default=None, description="Previous path (delete, rename)")
    new_path: str | None = Field(default=None, description="Current path (create, update, rename)")
    version: int = Field(default=0, ge=0, description="Tracked version at detection time")
    size: int | None = Field(default=None, ge=0, description="File size at detection time")
    mtime_ns: int | None = Field(default=None, description="Modification time at detection time")

    @model_validator(mode="after")
    def validate_paths_for_kind(self) -> "ChangeRecord":
        """Check that the path fields required by the change kind are present."""
        if self.kind in (ChangeKind.DELETE, ChangeKind.RENAME) and not self.old_path:
            raise ValueError(f"{self.kind.value} change requires old_path")
        if self.kind in (ChangeKind.CREATE, ChangeKind.UPDATE, ChangeKind.RENAME) and not self.new_path:
            raise ValueError(f"{self.kind.value} change requires new_path")
        return self

    @property
    def path(self) -> str:
        """The path this change is reported under."""
        return self.new_path or self.old_path or ""

    def touched_paths(self) -> set[str]:
        """All relative paths this change reads or writes."""
        return {p for p in (self.old_path, self.new_path) if p}

    def describe(self) -> str:
        """Human readable description, e.g. ``RENAME a.txt -> b.txt``."""
        if self.kind == ChangeKind.RENAME:
            return f"RENAME {self.old_path} -> {self.new_path}"
        return f"{self.kind.value.upper()} {self.path}"


class ChangeSet(BaseModel):
    """Ordered changes detected on one replica during one detection pass."""

    replica_id: UUID = Field(default=..., description="Replica the changes were detected on")
    root_path: Path = Field(default=..., description="Root directory of the replica")
    detected_at: datetime = Field(default_factory=datetime.now, description="Detection timestamp")
    changes: list[ChangeRecord] = Field(default_factory=list, description="Detected changes")
    unreadable: list[str] = Field(
        default_factory=list, description="Entries skipped because they could not be read"
    )

    @property
    def has_changes(self) -> bool:
        """Check if there are any changes to process."""
        return bool(self.changes)

    @property
    def total_changes(self) -> int:
        """Get total number of changes."""
        return len(self.changes)

    def paths(self) -> set[str]:
        """All relative paths touched by this change set."""
        touched: set[str] = set()
        for record in self.changes:
            touched |= record.touched_paths()
        return touched

    def of_kind(self, kind: ChangeKind) -> list[ChangeRecord]:
        return [record for record in self.changes if record.kind == kind]


class TrackedFile(BaseModel):
    """Last observed state of one file in a replica."""

    size: int = Field(default=..., ge=0)
    mtime_ns: int = Field(default=...)
    digest: str | None = Field(default=None, description="sha256 of the content (hash mode)")
    version: int = Field(default=1, ge=1, description="Incremented each time the file changes")


class TrackingState(BaseModel):
    """Persisted change-tracking metadata for one replica."""

    version: int = Field(default=1, description="Format version")
    replica_id: UUID = Field(default=...)
    updated_at: datetime = Field(default_factory=datetime.now)
    files: dict[str, TrackedFile] = Field(default_factory=dict)
    pending: dict[str, list[ChangeRecord]] = Field(
        default_factory=dict,
        description="Changes still to be applied, keyed by destination replica id",
    )


class OutcomeStatus(str, Enum):
    """Result of applying one change."""

    APPLIED = "applied"
    SKIPPED = "skipped"


class ApplyOutcome(BaseModel):
    """Result of applying one change record to the destination."""

    record: ChangeRecord
    status: OutcomeStatus
    reason: str | None = Field(default=None, description="Why the change was skipped")
    error: str | None = Field(default=None, description="Underlying cause of the skip")
    transient: bool = Field(default=False, description="Skip was caused by a transient error")
    conflict: bool = Field(
        default=False, description="Destination had changed the same path; source won"
    )
    recycled_path: str | None = Field(
        default=None, description="Where superseded destination content was moved"
    )

    @property
    def applied(self) -> bool:
        return self.status == OutcomeStatus.APPLIED


class RunResult(BaseModel):
    """Report of a synchronization run."""

    source_root: Path
    destination_root: Path
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: datetime | None = None
    outcomes: list[ApplyOutcome] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list, description="Run-level failures")
    warnings: list[str] = Field(default_factory=list, description="Soft failures")

    @property
    def applied_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.applied)

    @property
    def skipped_count(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.applied)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def success(self) -> bool:
        """True when the run completed and no change was skipped for a permanent reason."""
        if self.errors:
            return False
        return all(outcome.applied or outcome.transient for outcome in self.outcomes)
