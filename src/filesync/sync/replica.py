"""Replica roots and the on-disk layout of replica metadata."""

from pathlib import Path
from uuid import UUID

from pydantic import BaseModel, Field

from filesync.sync.recycle_bin import RecycleBin
from filesync.sync.tracking_store import TrackingStore

# Identity file at the root of every replica
ID_FILE_NAME: str = "filesync.id"

# Directory holding tracking metadata and the recycle area
METADATA_DIR_NAME: str = ".filesync"

# Suffix of in-flight copies, replaced atomically once complete
TEMP_FILE_SUFFIX: str = ".filesync-tmp"


class ReplicaRoot(BaseModel):
    """A replica directory together with its identity.

    Owned by a single run; concurrent runs on the same root must be
    serialized by the caller.
    """

    path: Path = Field(default=..., description="Resolved root directory")
    replica_id: UUID = Field(default=..., description="Stable replica identifier")

    @property
    def metadata_dir(self) -> Path:
        return self.path / METADATA_DIR_NAME

    def tracking_store(self) -> TrackingStore:
        """Tracking store for this replica's baseline."""
        return TrackingStore(self.metadata_dir / "tracking", self.replica_id)

    def recycle_bin(self, retention_days: int | None = None) -> RecycleBin:
        """Recycle area receiving superseded content of this replica."""
        return RecycleBin(self.path, self.metadata_dir / "recycle", retention_days)

    def resolve(self, relative_path: str) -> Path:
        """Absolute path of a POSIX relative path inside this replica."""
        return self.path.joinpath(*relative_path.split("/"))
