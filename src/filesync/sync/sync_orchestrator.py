"""Synchronization orchestrator for one-way runs between two replicas."""

import threading
from datetime import datetime
from pathlib import Path

import structlog

from filesync.sync.change_detector import ChangeDetector
from filesync.sync.change_filter import ChangeFilter
from filesync.sync.errors import FileSyncError, SyncCancelledError
from filesync.sync.models import ApplyOutcome, ChangeRecord, ChangeSet, RunResult
from filesync.sync.replica import ReplicaRoot
from filesync.sync.replica_identity import ReplicaIdentity
from filesync.sync.sync_applier import EXCLUDED_REASON, SyncApplier

log = structlog.stdlib.get_logger()


class SyncOrchestrator:
    """Orchestrates detection on both replicas and one-way application."""

    def __init__(
        self,
        identity: ReplicaIdentity | None = None,
        detector: ChangeDetector | None = None,
        applier: SyncApplier | None = None,
        recycle_retention_days: int | None = None,
    ):
        """
        Initialize sync orchestrator.

        Args:
            identity: Replica identity resolver
            detector: Change detector used on both replicas
            applier: Applier used against the destination
            recycle_retention_days: Retention of the destination recycle area
        """
        self._identity: ReplicaIdentity = identity or ReplicaIdentity()
        self._detector: ChangeDetector = detector or ChangeDetector()
        self._applier: SyncApplier = applier or SyncApplier(
            recycle_retention_days=recycle_retention_days
        )
        self._recycle_retention_days: int | None = recycle_retention_days

    def sync(
        self,
        source_root: Path,
        destination_root: Path,
        change_filter: ChangeFilter | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RunResult:
        """
        Propagate the changes of the source replica to the destination replica.

        This method:
        1. Resolves or creates the replica ids of both roots
        2. Detects changes on the source and stores them, with changes left
           over from earlier runs, as pending for the destination
        3. Detects changes on the destination
        4. Applies the pending changes
        5. Keeps only the skipped changes pending so the next run retries them

        Args:
            source_root: Root directory of the source replica
            destination_root: Root directory of the destination replica
            change_filter: Exclusion rules applied on both sides
            cancel_event: Set from another thread to cancel the run

        Returns:
            RunResult with one outcome per attempted change; run-level
            failures are recorded in ``errors``

        Raises:
            SyncCancelledError: If cancel_event is set during the run
        """
        change_filter = change_filter or ChangeFilter()
        result = RunResult(source_root=Path(source_root), destination_root=Path(destination_root))
        log.info("sync_started", source_root=str(source_root), destination_root=str(destination_root))

        source: ReplicaRoot | None = None
        destination: ReplicaRoot | None = None
        one_way: ChangeSet | None = None

        try:
            source = ReplicaRoot(
                path=Path(source_root), replica_id=self._identity.get_or_create(source_root)
            )
            destination = ReplicaRoot(
                path=Path(destination_root),
                replica_id=self._identity.get_or_create(destination_root),
            )
            if source.replica_id == destination.replica_id:
                raise FileSyncError(
                    f"Source and destination share replica id {source.replica_id}; "
                    f"remove the copied id file from {destination_root}"
                )

            destination.recycle_bin(self._recycle_retention_days).purge()

            self._check_cancelled(cancel_event)

            # Both baselines are captured before anything is mutated
            source_changes = self._detector.detect_changes(source.replica_id, source.path, change_filter)

            # The source baseline already includes these changes, so they stay
            # pending until applied
            one_way = self.build_one_way_change_set(source, destination, source_changes)
            self._store_pending(source, destination, one_way.changes)

            destination_changes = self._detector.detect_changes(
                destination.replica_id, destination.path, change_filter
            )
            result.warnings.extend(f"Unreadable on source: {entry}" for entry in source_changes.unreadable)
            result.warnings.extend(
                f"Unreadable on destination: {entry}" for entry in destination_changes.unreadable
            )

            self._check_cancelled(cancel_event, remaining=one_way.changes)

            outcomes = self._applier.apply_one_way(
                one_way,
                destination,
                change_filter,
                cancel_event=cancel_event,
                conflicting_paths=destination_changes.paths(),
            )
            result.outcomes = outcomes
            self._store_pending(source, destination, self._retryable(outcomes))
            result.warnings.extend(
                f"Transient failure applying {o.record.describe()}: {o.reason}"
                for o in outcomes
                if not o.applied and o.transient
            )

        except SyncCancelledError as e:
            if source is not None and destination is not None and one_way is not None:
                self._store_pending(source, destination, self._retryable(e.outcomes) + list(e.remaining))
            log.warning("sync_cancelled", source_root=str(source_root), destination_root=str(destination_root))
            raise

        except Exception as e:
            result.errors.append(f"Sync failed: {e}")
            log.error(
                "sync_failed",
                source_root=str(source_root),
                destination_root=str(destination_root),
                error=str(e),
                error_type=type(e).__name__,
            )

        result.end_time = datetime.now()

        log.info(
            "sync_completed",
            source_root=str(source_root),
            destination_root=str(destination_root),
            applied=result.applied_count,
            skipped=result.skipped_count,
            warnings=len(result.warnings),
            duration_seconds=result.duration_seconds,
            success=result.success,
        )

        return result

    def build_one_way_change_set(
        self,
        source: ReplicaRoot,
        destination: ReplicaRoot,
        source_changes: ChangeSet,
    ) -> ChangeSet:
        """
        Combine changes left over from earlier runs with freshly detected ones.

        A leftover change is dropped when a fresh change touches one of its
        paths, since the fresh change describes the newer state.

        Returns:
            ChangeSet rooted at the source replica
        """
        pending = source.tracking_store().pending_for(destination.replica_id)
        fresh_paths = source_changes.paths()
        carried = [record for record in pending if not (record.touched_paths() & fresh_paths)]

        if pending:
            log.info(
                "pending_changes_loaded",
                destination_id=str(destination.replica_id),
                pending=len(pending),
                carried=len(carried),
            )

        return ChangeSet(
            replica_id=source_changes.replica_id,
            root_path=source_changes.root_path,
            detected_at=source_changes.detected_at,
            changes=carried + list(source_changes.changes),
            unreadable=list(source_changes.unreadable),
        )

    def _store_pending(
        self, source: ReplicaRoot, destination: ReplicaRoot, records: list[ChangeRecord]
    ) -> None:
        source.tracking_store().set_pending(destination.replica_id, records)

    @staticmethod
    def _retryable(outcomes: list[ApplyOutcome]) -> list[ChangeRecord]:
        return [o.record for o in outcomes if not o.applied and o.reason != EXCLUDED_REASON]

    @staticmethod
    def _check_cancelled(
        cancel_event: threading.Event | None, remaining: list[ChangeRecord] | None = None
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelledError(remaining=list(remaining or []))
