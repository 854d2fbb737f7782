"""Persistence of per-replica change-tracking metadata."""

import os
from datetime import datetime
from pathlib import Path
from uuid import UUID

import structlog
from pydantic import ValidationError

from filesync.sync.errors import DetectionError, FilesystemAccessError
from filesync.sync.models import ChangeRecord, TrackingState

log = structlog.stdlib.get_logger()


class TrackingStore:
    """Stores the baseline of one replica as a JSON document."""

    def __init__(self, tracking_dir: Path, replica_id: UUID):
        """
        Initialize tracking store.

        Args:
            tracking_dir: Directory holding tracking files of the replica root
            replica_id: Replica whose baseline is stored
        """
        self._tracking_dir: Path = Path(tracking_dir)
        self._replica_id: UUID = replica_id

    @property
    def path(self) -> Path:
        return self._tracking_dir / f"{self._replica_id}.json"

    def load(self) -> TrackingState:
        """
        Load the baseline of the replica.

        Returns:
            The persisted state, or an empty state on the first run

        Raises:
            DetectionError: If the tracking file exists but cannot be read or parsed
        """
        if not self.path.exists():
            log.info("no_tracking_state_found", replica_id=str(self._replica_id))
            return TrackingState(replica_id=self._replica_id)

        try:
            state = TrackingState.model_validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            log.error("failed_to_load_tracking_state", path=str(self.path), error=str(e))
            raise DetectionError(f"Failed to load tracking state {self.path}: {e}") from e

        if state.replica_id != self._replica_id:
            raise DetectionError(
                f"Tracking state {self.path} belongs to replica {state.replica_id}, "
                f"expected {self._replica_id}"
            )

        log.debug(
            "tracking_state_loaded",
            replica_id=str(self._replica_id),
            file_count=len(state.files),
            updated_at=state.updated_at,
        )
        return state

    def save(self, state: TrackingState) -> None:
        """
        Persist the baseline atomically.

        Raises:
            FilesystemAccessError: If the state cannot be written
        """
        state.updated_at = datetime.now()
        temp_path = self.path.parent / f".{self.path.name}.tmp"
        try:
            self._tracking_dir.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except OSError as e:
            log.error("failed_to_save_tracking_state", path=str(self.path), error=str(e))
            temp_path.unlink(missing_ok=True)
            raise FilesystemAccessError(f"Failed to save tracking state {self.path}: {e}") from e

        log.debug("tracking_state_saved", replica_id=str(self._replica_id), file_count=len(state.files))

    def pending_for(self, destination_id: UUID) -> list[ChangeRecord]:
        """Changes still waiting to be applied to a destination replica."""
        return list(self.load().pending.get(str(destination_id), []))

    def set_pending(self, destination_id: UUID, records: list[ChangeRecord]) -> None:
        """Replace the pending changes for a destination replica."""
        state = self.load()
        if records:
            state.pending[str(destination_id)] = list(records)
        else:
            state.pending.pop(str(destination_id), None)
        self.save(state)
        log.info("pending_changes_stored", destination_id=str(destination_id), count=len(records))
