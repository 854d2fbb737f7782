"""Property-based tests for applying a source change set to a destination.

Feature: folder-sync
"""

import errno
import os
import tempfile
import threading
import uuid
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from filesync.sync.change_detector import ChangeDetector
from filesync.sync.change_filter import ChangeFilter
from filesync.sync.errors import SyncCancelledError
from filesync.sync.models import ChangeKind, ChangeRecord, ChangeSet, OutcomeStatus
from filesync.sync.replica import TEMP_FILE_SUFFIX, ReplicaRoot
from filesync.sync.sync_applier import EXCLUDED_REASON, SyncApplier


def make_replicas(base: Path) -> tuple[Path, ReplicaRoot]:
    source = base / "source"
    destination = base / "destination"
    source.mkdir()
    destination.mkdir()
    return source, ReplicaRoot(path=destination, replica_id=uuid.uuid4())


def change_set(source: Path, *records: ChangeRecord) -> ChangeSet:
    return ChangeSet(replica_id=uuid.uuid4(), root_path=source, changes=list(records))


def create(path: str) -> ChangeRecord:
    return ChangeRecord(kind=ChangeKind.CREATE, new_path=path, version=1)


def recycled_contents(destination: ReplicaRoot) -> list[bytes]:
    return [p.read_bytes() for p in destination.recycle_bin().entries()]


def temp_files(root: Path) -> list[Path]:
    return [p for p in root.rglob(f"*{TEMP_FILE_SUFFIX}")]


class TestCreateAndUpdate:
    """Copies of source content into the destination."""

    @given(content=st.binary(max_size=4096))
    @settings(max_examples=40, deadline=None)
    def test_created_file_matches_source_bytes(self, content: bytes) -> None:
        """Property: round-trip, destination bytes equal source bytes."""
        with tempfile.TemporaryDirectory() as tmp:
            source, destination = make_replicas(Path(tmp))
            (source / "nested" / "dir").mkdir(parents=True)
            (source / "nested" / "dir" / "file.bin").write_bytes(content)

            outcomes = SyncApplier().apply_one_way(
                change_set(source, create("nested/dir/file.bin")), destination
            )

            assert [o.status for o in outcomes] == [OutcomeStatus.APPLIED]
            assert (destination.path / "nested" / "dir" / "file.bin").read_bytes() == content
            assert temp_files(destination.path) == []

    def test_create_over_unrelated_content_recycles_it(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "a.txt").write_bytes(b"from source")
        (destination.path / "a.txt").write_bytes(b"already here")

        outcomes = SyncApplier().apply_one_way(change_set(source, create("a.txt")), destination)

        assert outcomes[0].applied
        assert outcomes[0].recycled_path is not None
        assert (destination.path / "a.txt").read_bytes() == b"from source"
        assert recycled_contents(destination) == [b"already here"]

    def test_create_over_identical_content_recycles_nothing(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "a.txt").write_bytes(b"same")
        (destination.path / "a.txt").write_bytes(b"same")

        outcomes = SyncApplier().apply_one_way(change_set(source, create("a.txt")), destination)

        assert outcomes[0].applied
        assert recycled_contents(destination) == []

    def test_update_recycles_prior_destination_content(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "doc.txt").write_bytes(b"v2")
        (destination.path / "doc.txt").write_bytes(b"v1")

        record = ChangeRecord(kind=ChangeKind.UPDATE, new_path="doc.txt", version=2)
        outcomes = SyncApplier().apply_one_way(change_set(source, record), destination)

        assert outcomes[0].applied
        assert (destination.path / "doc.txt").read_bytes() == b"v2"
        assert recycled_contents(destination) == [b"v1"]

    def test_missing_source_file_is_skipped(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)

        outcomes = SyncApplier().apply_one_way(change_set(source, create("vanished.txt")), destination)

        assert outcomes[0].status == OutcomeStatus.SKIPPED
        assert "no longer exists" in outcomes[0].reason


class TestDeleteAndRename:
    """Removal and moves inside the destination."""

    def test_delete_moves_content_to_recycle_area(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)
        (destination.path / "old" / "deep").mkdir(parents=True)
        (destination.path / "old" / "deep" / "x.txt").write_bytes(b"keep me somewhere")

        record = ChangeRecord(kind=ChangeKind.DELETE, old_path="old/deep/x.txt", version=1)
        outcomes = SyncApplier().apply_one_way(change_set(source, record), destination)

        assert outcomes[0].applied
        assert not (destination.path / "old").exists()
        assert recycled_contents(destination) == [b"keep me somewhere"]

    def test_delete_of_absent_file_is_applied(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)

        record = ChangeRecord(kind=ChangeKind.DELETE, old_path="never.txt", version=1)
        outcomes = SyncApplier().apply_one_way(change_set(source, record), destination)

        assert outcomes[0].applied

    def test_rename_moves_destination_content(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "b.txt").write_bytes(b"payload")
        (destination.path / "a.txt").write_bytes(b"payload")

        record = ChangeRecord(kind=ChangeKind.RENAME, old_path="a.txt", new_path="b.txt", version=2)
        outcomes = SyncApplier().apply_one_way(change_set(source, record), destination)

        assert outcomes[0].applied
        assert not (destination.path / "a.txt").exists()
        assert (destination.path / "b.txt").read_bytes() == b"payload"
        assert recycled_contents(destination) == []

    def test_rename_onto_occupied_path_recycles_loser(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "b.txt").write_bytes(b"payload")
        (destination.path / "a.txt").write_bytes(b"payload")
        (destination.path / "b.txt").write_bytes(b"loser")

        record = ChangeRecord(kind=ChangeKind.RENAME, old_path="a.txt", new_path="b.txt", version=2)
        outcomes = SyncApplier().apply_one_way(change_set(source, record), destination)

        assert outcomes[0].applied
        assert (destination.path / "b.txt").read_bytes() == b"payload"
        assert recycled_contents(destination) == [b"loser"]

    def test_rename_without_destination_original_copies_source(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "b.txt").write_bytes(b"payload")

        record = ChangeRecord(kind=ChangeKind.RENAME, old_path="a.txt", new_path="b.txt", version=2)
        outcomes = SyncApplier().apply_one_way(change_set(source, record), destination)

        assert outcomes[0].applied
        assert (destination.path / "b.txt").read_bytes() == b"payload"

    def test_rename_of_outdated_destination_copies_source(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "b.txt").write_bytes(b"new")
        (destination.path / "a.txt").write_bytes(b"old")

        record = ChangeRecord(kind=ChangeKind.RENAME, old_path="a.txt", new_path="b.txt", version=2)
        outcomes = SyncApplier().apply_one_way(change_set(source, record), destination)

        assert outcomes[0].applied
        assert not (destination.path / "a.txt").exists()
        assert (destination.path / "b.txt").read_bytes() == b"new"
        assert recycled_contents(destination) == [b"old"]

    def test_excluded_paths_are_skipped(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "debug.log").write_bytes(b"noise")

        outcomes = SyncApplier().apply_one_way(
            change_set(source, create("debug.log")),
            destination,
            ChangeFilter(file_name_excludes=["*.log"]),
        )

        assert outcomes[0].status == OutcomeStatus.SKIPPED
        assert outcomes[0].reason == EXCLUDED_REASON
        assert not (destination.path / "debug.log").exists()


class TestFailureIsolation:
    """Property: one failing item never prevents the others from being applied."""

    def test_third_of_five_fails_others_applied(self, tmp_path: Path, monkeypatch) -> None:
        source, destination = make_replicas(tmp_path)
        names = [f"file{i}.txt" for i in range(1, 6)]
        for name in names:
            (source / name).write_text(name)

        applier = SyncApplier(max_retries=0)
        real_copy = applier._copy_file

        def copy_or_fail(src: Path, dst: Path) -> None:
            if src.name == "file3.txt":
                raise PermissionError(errno.EACCES, "Permission denied", str(dst))
            real_copy(src, dst)

        monkeypatch.setattr(applier, "_copy_file", copy_or_fail)
        outcomes = applier.apply_one_way(change_set(source, *[create(n) for n in names]), destination)

        assert [o.applied for o in outcomes] == [True, True, False, True, True]
        skipped = [o for o in outcomes if not o.applied]
        assert len(skipped) == 1
        assert skipped[0].record.new_path == "file3.txt"
        assert skipped[0].reason == "permission denied"
        assert skipped[0].error
        assert not skipped[0].transient
        for name in ("file1.txt", "file2.txt", "file4.txt", "file5.txt"):
            assert (destination.path / name).read_text() == name
        assert not (destination.path / "file3.txt").exists()
        assert temp_files(destination.path) == []

    def test_transient_error_is_retried(self, tmp_path: Path, monkeypatch) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "busy.txt").write_bytes(b"eventually")

        applier = SyncApplier(max_retries=2, retry_base_delay=0.0)
        real_copy = applier._copy_file
        attempts = []

        def busy_once(src: Path, dst: Path) -> None:
            attempts.append(dst)
            if len(attempts) == 1:
                raise OSError(errno.EBUSY, "Device or resource busy")
            real_copy(src, dst)

        monkeypatch.setattr(applier, "_copy_file", busy_once)
        outcomes = applier.apply_one_way(change_set(source, create("busy.txt")), destination)

        assert outcomes[0].applied
        assert len(attempts) == 2
        assert (destination.path / "busy.txt").read_bytes() == b"eventually"

    def test_persistent_transient_error_is_flagged(self, tmp_path: Path, monkeypatch) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "busy.txt").write_bytes(b"never")

        applier = SyncApplier(max_retries=1, retry_base_delay=0.0)

        def always_busy(src: Path, dst: Path) -> None:
            raise OSError(errno.EBUSY, "Device or resource busy")

        monkeypatch.setattr(applier, "_copy_file", always_busy)
        outcomes = applier.apply_one_way(change_set(source, create("busy.txt")), destination)

        assert outcomes[0].status == OutcomeStatus.SKIPPED
        assert outcomes[0].transient


class TestCancellation:
    """Cancellation between items leaves no partial destination content."""

    def test_preset_cancel_attempts_nothing(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "a.txt").write_bytes(b"a")
        event = threading.Event()
        event.set()

        with pytest.raises(SyncCancelledError) as excinfo:
            SyncApplier().apply_one_way(change_set(source, create("a.txt")), destination, cancel_event=event)

        assert excinfo.value.outcomes == []
        assert [r.new_path for r in excinfo.value.remaining] == ["a.txt"]
        assert not (destination.path / "a.txt").exists()

    def test_cancel_mid_run_finishes_in_flight_item(self, tmp_path: Path, monkeypatch) -> None:
        source, destination = make_replicas(tmp_path)
        names = ["a.txt", "b.txt", "c.txt"]
        for name in names:
            (source / name).write_bytes(name.encode())
        event = threading.Event()
        applier = SyncApplier()
        real_copy = applier._copy_file

        def copy_then_cancel(src: Path, dst: Path) -> None:
            real_copy(src, dst)
            event.set()

        monkeypatch.setattr(applier, "_copy_file", copy_then_cancel)

        with pytest.raises(SyncCancelledError) as excinfo:
            applier.apply_one_way(
                change_set(source, *[create(n) for n in names]), destination, cancel_event=event
            )

        assert [o.record.new_path for o in excinfo.value.outcomes] == ["a.txt"]
        assert [r.new_path for r in excinfo.value.remaining] == ["b.txt", "c.txt"]
        assert (destination.path / "a.txt").read_bytes() == b"a.txt"
        assert temp_files(destination.path) == []


class TestDestinationBaseline:
    """Applied changes are recorded in the destination baseline."""

    def test_applied_changes_not_redetected_on_destination(self, tmp_path: Path) -> None:
        source, destination = make_replicas(tmp_path)
        (source / "a.txt").write_bytes(b"a")
        (source / "b.txt").write_bytes(b"bb")
        detector = ChangeDetector()
        detector.detect_changes(destination.replica_id, destination.path)

        SyncApplier().apply_one_way(change_set(source, create("a.txt"), create("b.txt")), destination)

        assert not detector.detect_changes(destination.replica_id, destination.path).has_changes
