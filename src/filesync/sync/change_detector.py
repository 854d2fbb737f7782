"""Change detection for identifying created, updated, deleted and renamed files."""

import hashlib
import os
import stat
from pathlib import Path
from uuid import UUID

import structlog

from filesync.sync.change_filter import ChangeFilter
from filesync.sync.errors import DetectionError, FilesystemAccessError
from filesync.sync.models import (
    ChangeKind,
    ChangeRecord,
    ChangeSet,
    SignatureMode,
    TrackedFile,
)
from filesync.sync.replica import ReplicaRoot

log = structlog.stdlib.get_logger()

HASH_CHUNK_SIZE = 1024 * 1024

_KIND_ORDER = {
    ChangeKind.DELETE: 0,
    ChangeKind.RENAME: 1,
    ChangeKind.CREATE: 2,
    ChangeKind.UPDATE: 3,
}


class ChangeDetector:
    """Detects changes between a replica tree and its recorded baseline."""

    def __init__(self, signature_mode: SignatureMode = SignatureMode.METADATA):
        """
        Initialize change detector.

        Args:
            signature_mode: ``metadata`` compares size and modification time;
                ``hash`` compares size and a sha256 digest of the content
        """
        self._signature_mode: SignatureMode = SignatureMode(signature_mode)

    def detect_changes(
        self,
        replica_id: UUID,
        root_path: Path,
        change_filter: ChangeFilter | None = None,
    ) -> ChangeSet:
        """
        Detect changes on a replica and persist the new baseline.

        Args:
            replica_id: Identifier of the replica
            root_path: Root directory of the replica
            change_filter: Exclusion rules; replica metadata is always excluded

        Returns:
            ChangeSet with deletes, renames, creates and updates in that order

        Raises:
            DetectionError: If the root cannot be enumerated or the baseline written
        """
        change_filter = change_filter or ChangeFilter()
        replica = ReplicaRoot(path=Path(root_path), replica_id=replica_id)
        store = replica.tracking_store()

        log.info(
            "detecting_changes",
            replica_id=str(replica_id),
            root_path=str(root_path),
            signature_mode=self._signature_mode.value,
        )

        state = store.load()
        baseline = state.files
        observed, unreadable, blocked = self._scan(replica.path, change_filter)

        current: dict[str, TrackedFile] = {}
        for relative_path, file_stat in observed.items():
            try:
                current[relative_path] = self._fingerprint(
                    replica.path, relative_path, file_stat, baseline.get(relative_path)
                )
            except OSError as e:
                unreadable.append(f"{relative_path}: {e}")
                blocked.add(relative_path)
                log.warning("unreadable_file_skipped", path=relative_path, error=str(e))

        # Entries that could not be read keep their previous baseline
        for relative_path, previous in baseline.items():
            if relative_path not in current and self._is_blocked(relative_path, blocked):
                current[relative_path] = previous

        disappeared = {
            path: entry
            for path, entry in baseline.items()
            if path not in current and not change_filter.excludes_file(path)
        }
        appeared = {path: entry for path, entry in current.items() if path not in baseline}

        changes: list[ChangeRecord] = []

        renames = self._detect_renames(disappeared, appeared)
        for old_path, new_path in renames.items():
            previous = disappeared.pop(old_path)
            entry = appeared.pop(new_path)
            entry.version = previous.version + 1
            changes.append(self._record(ChangeKind.RENAME, entry, old_path=old_path, new_path=new_path))

        for path, previous in disappeared.items():
            changes.append(self._record(ChangeKind.DELETE, previous, old_path=path))

        for path, entry in appeared.items():
            changes.append(self._record(ChangeKind.CREATE, entry, new_path=path))

        for path, entry in current.items():
            previous = baseline.get(path)
            if previous is not None and entry.version != previous.version:
                changes.append(self._record(ChangeKind.UPDATE, entry, new_path=path))

        changes.sort(key=lambda record: (_KIND_ORDER[record.kind], record.path))

        state.files = current
        try:
            store.save(state)
        except FilesystemAccessError as e:
            raise DetectionError(f"Failed to persist baseline for {root_path}: {e}") from e

        change_set = ChangeSet(
            replica_id=replica_id,
            root_path=replica.path,
            changes=changes,
            unreadable=unreadable,
        )

        log.info(
            "changes_detected",
            replica_id=str(replica_id),
            created=len(change_set.of_kind(ChangeKind.CREATE)),
            updated=len(change_set.of_kind(ChangeKind.UPDATE)),
            deleted=len(change_set.of_kind(ChangeKind.DELETE)),
            renamed=len(change_set.of_kind(ChangeKind.RENAME)),
            unreadable=len(unreadable),
            total_changes=change_set.total_changes,
        )

        return change_set

    def _scan(
        self, root: Path, change_filter: ChangeFilter
    ) -> tuple[dict[str, os.stat_result], list[str], set[str]]:
        """
        Enumerate the regular files of a replica.

        Returns:
            Tuple of (stat results keyed by relative path, unreadable entry
            messages, relative paths of unreadable files and directories)

        Raises:
            DetectionError: If the root itself cannot be listed
        """
        try:
            with os.scandir(root):
                pass
        except OSError as e:
            log.error("replica_root_unreadable", root_path=str(root), error=str(e))
            raise DetectionError(f"Cannot enumerate replica root {root}: {e}") from e

        observed: dict[str, os.stat_result] = {}
        unreadable: list[str] = []
        blocked: set[str] = set()

        def on_walk_error(error: OSError) -> None:
            relative = Path(error.filename or root).relative_to(root).as_posix()
            unreadable.append(f"{relative}: {error}")
            blocked.add(relative)
            log.warning("unreadable_directory_skipped", path=relative, error=str(error))

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_walk_error):
            relative_dir = Path(dirpath).relative_to(root).as_posix()
            prefix = "" if relative_dir == "." else f"{relative_dir}/"

            dirnames[:] = sorted(d for d in dirnames if not change_filter.excludes_directory(prefix + d))

            for name in filenames:
                relative_path = prefix + name
                if change_filter.excludes_file(relative_path):
                    continue
                try:
                    file_stat = os.stat(os.path.join(dirpath, name))
                except OSError as e:
                    unreadable.append(f"{relative_path}: {e}")
                    blocked.add(relative_path)
                    log.warning("unreadable_file_skipped", path=relative_path, error=str(e))
                    continue
                if stat.S_ISREG(file_stat.st_mode):
                    observed[relative_path] = file_stat

        return observed, unreadable, blocked

    def _fingerprint(
        self,
        root: Path,
        relative_path: str,
        file_stat: os.stat_result,
        previous: TrackedFile | None,
    ) -> TrackedFile:
        """Build the tracked state of a file, bumping the version if it changed."""
        size = file_stat.st_size
        mtime_ns = file_stat.st_mtime_ns
        metadata_unchanged = (
            previous is not None and previous.size == size and previous.mtime_ns == mtime_ns
        )

        if self._signature_mode == SignatureMode.METADATA:
            if metadata_unchanged:
                return previous
            version = previous.version + 1 if previous is not None else 1
            return TrackedFile(size=size, mtime_ns=mtime_ns, version=version)

        if metadata_unchanged and previous.digest is not None:
            return previous

        digest = self._digest(root.joinpath(*relative_path.split("/")))
        if previous is None:
            return TrackedFile(size=size, mtime_ns=mtime_ns, digest=digest, version=1)
        if metadata_unchanged or (previous.size == size and previous.digest == digest):
            # Touched but identical content
            return TrackedFile(size=size, mtime_ns=mtime_ns, digest=digest, version=previous.version)
        return TrackedFile(size=size, mtime_ns=mtime_ns, digest=digest, version=previous.version + 1)

    def _detect_renames(
        self, disappeared: dict[str, TrackedFile], appeared: dict[str, TrackedFile]
    ) -> dict[str, str]:
        """
        Pair disappeared and appeared files that share a unique signature.

        A signature shared by several disappeared or several appeared files is
        ambiguous and those files are reported as deletes and creates.

        Returns:
            Mapping of old path to new path
        """
        by_signature_old: dict[tuple, list[str]] = {}
        for path, entry in disappeared.items():
            by_signature_old.setdefault(self._signature(entry), []).append(path)

        by_signature_new: dict[tuple, list[str]] = {}
        for path, entry in appeared.items():
            by_signature_new.setdefault(self._signature(entry), []).append(path)

        renames: dict[str, str] = {}
        for signature, new_paths in by_signature_new.items():
            old_paths = by_signature_old.get(signature, [])
            if len(old_paths) == 1 and len(new_paths) == 1:
                renames[old_paths[0]] = new_paths[0]
                log.debug("rename_detected", old_path=old_paths[0], new_path=new_paths[0])

        return renames

    def _signature(self, entry: TrackedFile) -> tuple:
        if self._signature_mode == SignatureMode.HASH:
            return (entry.size, entry.digest)
        return (entry.size, entry.mtime_ns)

    @staticmethod
    def _digest(path: Path) -> str:
        digest = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                digest.update(chunk)
        return digest.hexdigest()

    @staticmethod
    def _is_blocked(relative_path: str, blocked: set[str]) -> bool:
        if relative_path in blocked or "." in blocked:
            return True
        return any(relative_path.startswith(f"{prefix}/") for prefix in blocked)

    @staticmethod
    def _record(
        kind: ChangeKind,
        entry: TrackedFile,
        old_path: str | None = None,
        new_path: str | None = None,
    ) -> ChangeRecord:
        return ChangeRecord(
            kind=kind,
            old_path=old_path,
            new_path=new_path,
            version=entry.version,
            size=entry.size,
            mtime_ns=entry.mtime_ns,
        )
