"""One-way application of a source change set to a destination replica."""

import errno
import filecmp
import os
import shutil
import threading
import uuid
from pathlib import Path
from typing import Callable, Iterable

import structlog

from filesync.sync.change_filter import ChangeFilter
from filesync.sync.errors import ItemApplyError, SyncCancelledError
from filesync.sync.models import (
    ApplyOutcome,
    ChangeKind,
    ChangeRecord,
    ChangeSet,
    OutcomeStatus,
    TrackedFile,
    TrackingState,
)
from filesync.sync.recycle_bin import RecycleBin
from filesync.sync.replica import TEMP_FILE_SUFFIX, ReplicaRoot
from filesync.utils.retry import exponential_backoff_retry, is_transient_error

log = structlog.stdlib.get_logger()

EXCLUDED_REASON = "excluded by filter"

_ERRNO_REASONS = {
    errno.EACCES: "permission denied",
    errno.EPERM: "permission denied",
    errno.ENOSPC: "disk full",
    errno.EDQUOT: "disk quota exceeded",
    errno.ENAMETOOLONG: "path too long",
    errno.ENOENT: "file not found",
    errno.EROFS: "read-only filesystem",
}


class SyncApplier:
    """Applies source changes to a destination, recycling anything it supersedes."""

    def __init__(
        self,
        max_retries: int = 2,
        retry_base_delay: float = 0.5,
        recycle_retention_days: int | None = None,
    ):
        """
        Initialize sync applier.

        Args:
            max_retries: Retries for an item failing with a transient error
            retry_base_delay: Initial backoff delay in seconds
            recycle_retention_days: Retention of the destination recycle area
        """
        self._max_retries: int = max_retries
        self._retry_base_delay: float = retry_base_delay
        self._recycle_retention_days: int | None = recycle_retention_days

    def apply_one_way(
        self,
        change_set: ChangeSet,
        destination: ReplicaRoot,
        change_filter: ChangeFilter | None = None,
        cancel_event: threading.Event | None = None,
        conflicting_paths: Iterable[str] = (),
    ) -> list[ApplyOutcome]:
        """
        Apply every record of a source change set to the destination.

        A failing record is reported as skipped and never stops the records
        after it. Applied records are written into the destination baseline.

        Args:
            change_set: Changes detected on the source replica
            destination: Destination replica
            change_filter: Exclusion rules shared with detection
            cancel_event: Checked between records; when set the run stops
            conflicting_paths: Paths the destination changed in its own pass

        Returns:
            One outcome per record, in change set order

        Raises:
            SyncCancelledError: If cancel_event is set before all records are attempted
        """
        change_filter = change_filter or ChangeFilter()
        conflicting = set(conflicting_paths)
        recycle_bin = destination.recycle_bin(self._recycle_retention_days)
        store = destination.tracking_store()
        state = store.load()

        log.info(
            "applying_changes",
            source_root=str(change_set.root_path),
            destination_root=str(destination.path),
            total_changes=change_set.total_changes,
        )

        outcomes: list[ApplyOutcome] = []
        records = change_set.changes

        try:
            for index, record in enumerate(records):
                if cancel_event is not None and cancel_event.is_set():
                    log.warning(
                        "apply_cancelled",
                        applied=len(outcomes),
                        remaining=len(records) - index,
                    )
                    raise SyncCancelledError(outcomes=outcomes, remaining=list(records[index:]))

                outcome = self._apply_record(
                    record, change_set.root_path, destination, recycle_bin, change_filter, conflicting
                )
                outcomes.append(outcome)
                if outcome.applied:
                    self._record_in_baseline(state, record, destination)
        except SyncCancelledError:
            store.save(state)
            raise

        store.save(state)

        log.info(
            "changes_applied",
            applied=sum(1 for o in outcomes if o.applied),
            skipped=sum(1 for o in outcomes if not o.applied),
        )

        return outcomes

    def _apply_record(
        self,
        record: ChangeRecord,
        source_root: Path,
        destination: ReplicaRoot,
        recycle_bin: RecycleBin,
        change_filter: ChangeFilter,
        conflicting: set[str],
    ) -> ApplyOutcome:
        """Apply one record, converting any failure into a skipped outcome."""
        is_conflict = bool(record.touched_paths() & conflicting)

        if any(change_filter.excludes_file(path) for path in record.touched_paths()):
            log.info("change_excluded", change=record.describe())
            return ApplyOutcome(record=record, status=OutcomeStatus.SKIPPED, reason=EXCLUDED_REASON)

        handlers: dict[ChangeKind, Callable[..., Path | None]] = {
            ChangeKind.CREATE: self._apply_copy,
            ChangeKind.UPDATE: self._apply_copy,
            ChangeKind.DELETE: self._apply_delete,
            ChangeKind.RENAME: self._apply_rename,
        }
        handler = exponential_backoff_retry(
            max_retries=self._max_retries,
            base_delay=self._retry_base_delay,
            exceptions=(OSError,),
            retry_if=is_transient_error,
        )(handlers[record.kind])

        try:
            recycled = handler(record, source_root, destination, recycle_bin, conflicting)
        except ItemApplyError as e:
            return self._skipped(record, e.reason, e.cause, is_conflict)
        except OSError as e:
            return self._skipped(record, self._describe_os_error(e), e, is_conflict)

        if is_conflict:
            log.warning("conflict_resolved_source_wins", change=record.describe())
        log.info("change_applied", change=record.describe(), recycled_to=str(recycled) if recycled else None)

        return ApplyOutcome(
            record=record,
            status=OutcomeStatus.APPLIED,
            conflict=is_conflict,
            recycled_path=str(recycled) if recycled else None,
        )

    def _apply_copy(
        self,
        record: ChangeRecord,
        source_root: Path,
        destination: ReplicaRoot,
        recycle_bin: RecycleBin,
        conflicting: set[str],
    ) -> Path | None:
        """Create or overwrite the destination file with the source content."""
        relative_path = record.new_path
        source = source_root.joinpath(*relative_path.split("/"))
        target = destination.resolve(relative_path)

        if not source.is_file():
            raise ItemApplyError(f"source file no longer exists: {relative_path}")
        if target.is_dir():
            raise ItemApplyError(f"destination path is a directory: {relative_path}")
        if target.is_file() and filecmp.cmp(source, target, shallow=False):
            return None

        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}{TEMP_FILE_SUFFIX}")
        try:
            self._copy_file(source, temp_path)
            recycled = recycle_bin.recycle(relative_path) if target.exists() else None
            os.replace(temp_path, target)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        return recycled

    def _apply_delete(
        self,
        record: ChangeRecord,
        source_root: Path,
        destination: ReplicaRoot,
        recycle_bin: RecycleBin,
        conflicting: set[str],
    ) -> Path | None:
        """Move the destination file into the recycle area."""
        target = destination.resolve(record.old_path)
        if not target.exists() and not target.is_symlink():
            return None
        if target.is_dir():
            raise ItemApplyError(f"destination path is a directory: {record.old_path}")

        recycled = recycle_bin.recycle(record.old_path)
        self._prune_empty_parents(target, destination.path)
        return recycled

    def _apply_rename(
        self,
        record: ChangeRecord,
        source_root: Path,
        destination: ReplicaRoot,
        recycle_bin: RecycleBin,
        conflicting: set[str],
    ) -> Path | None:
        """Move the destination file to its new path.

        Falls back to copying the source when the destination has no usable
        file at the old path, changed it itself, or holds content that differs
        from the source (an earlier update never reached it).
        """
        old_target = destination.resolve(record.old_path)
        new_target = destination.resolve(record.new_path)
        source = source_root.joinpath(*record.new_path.split("/"))

        stale = (
            old_target.is_file()
            and source.is_file()
            and not filecmp.cmp(source, old_target, shallow=False)
        )
        if not old_target.is_file() or record.old_path in conflicting or stale:
            if stale:
                log.info("rename_target_stale", change=record.describe())
            recycled = self._apply_copy(record, source_root, destination, recycle_bin, conflicting)
            if old_target.is_file():
                recycle_bin.recycle(record.old_path)
                self._prune_empty_parents(old_target, destination.path)
            return recycled

        if new_target.is_dir():
            raise ItemApplyError(f"destination path is a directory: {record.new_path}")

        recycled = None
        if new_target.exists():
            # Conflict loser
            recycled = recycle_bin.recycle(record.new_path)
        new_target.parent.mkdir(parents=True, exist_ok=True)
        os.replace(old_target, new_target)
        self._prune_empty_parents(old_target, destination.path)
        return recycled

    def _copy_file(self, source: Path, target: Path) -> None:
        shutil.copy2(source, target)

    def _record_in_baseline(
        self, state: TrackingState, record: ChangeRecord, destination: ReplicaRoot
    ) -> None:
        """Update the destination baseline so applied changes are not detected again."""
        if record.old_path and record.kind in (ChangeKind.DELETE, ChangeKind.RENAME):
            state.files.pop(record.old_path, None)
        if record.kind == ChangeKind.DELETE:
            return

        try:
            file_stat = os.stat(destination.resolve(record.new_path))
        except OSError as e:
            log.warning("applied_file_not_tracked", path=record.new_path, error=str(e))
            return

        previous = state.files.get(record.new_path)
        if previous is not None and (previous.size, previous.mtime_ns) == (
            file_stat.st_size,
            file_stat.st_mtime_ns,
        ):
            return
        state.files[record.new_path] = TrackedFile(
            size=file_stat.st_size,
            mtime_ns=file_stat.st_mtime_ns,
            version=previous.version + 1 if previous is not None else 1,
        )

    @staticmethod
    def _prune_empty_parents(path: Path, root: Path) -> None:
        parent = path.parent
        while parent != root and root in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                return
            parent = parent.parent

    @staticmethod
    def _describe_os_error(error: OSError) -> str:
        if error.errno in _ERRNO_REASONS:
            return _ERRNO_REASONS[error.errno]
        return error.strerror or type(error).__name__

    @staticmethod
    def _skipped(
        record: ChangeRecord,
        reason: str,
        cause: BaseException | None,
        is_conflict: bool,
    ) -> ApplyOutcome:
        transient = cause is not None and is_transient_error(cause)
        log.error(
            "change_skipped",
            change=record.describe(),
            reason=reason,
            error=str(cause) if cause else None,
            transient=transient,
        )
        return ApplyOutcome(
            record=record,
            status=OutcomeStatus.SKIPPED,
            reason=reason,
            error=str(cause) if cause else None,
            transient=transient,
            conflict=is_conflict,
        )
