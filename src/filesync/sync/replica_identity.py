"""Stable replica identifiers persisted at the root of each replica."""

import os
import uuid
from pathlib import Path

import structlog

from filesync.sync.errors import FilesystemAccessError
from filesync.sync.replica import ID_FILE_NAME, TEMP_FILE_SUFFIX

log = structlog.stdlib.get_logger()


class ReplicaIdentity:
    """Reads and creates the identity file of a replica root."""

    def __init__(self, id_file_name: str = ID_FILE_NAME):
        self._id_file_name: str = id_file_name

    def id_file(self, root_path: Path) -> Path:
        return Path(root_path) / self._id_file_name

    def read(self, root_path: Path) -> uuid.UUID | None:
        """
        Read the persisted replica id without creating one.

        Args:
            root_path: Replica root directory

        Returns:
            The replica id, or None if the file is absent, empty or malformed

        Raises:
            FilesystemAccessError: If the root or the id file cannot be read
        """
        root = Path(root_path)
        if not root.is_dir():
            raise FilesystemAccessError(f"Replica root is not an accessible directory: {root}")

        id_file = self.id_file(root)
        try:
            with open(id_file, "r", encoding="utf-8") as f:
                first_line = f.readline().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise FilesystemAccessError(f"Failed to read replica id file {id_file}: {e}") from e

        if not first_line:
            return None

        try:
            return uuid.UUID(first_line)
        except ValueError:
            log.warning("malformed_replica_id", id_file=str(id_file), content=first_line[:64])
            return None

    def get_or_create(self, root_path: Path) -> uuid.UUID:
        """
        Return the replica id of a root, creating and persisting one if needed.

        An existing valid id file is never rewritten, so the same root always
        resolves to the same id.

        Args:
            root_path: Replica root directory

        Returns:
            The replica id

        Raises:
            FilesystemAccessError: If the root is inaccessible or the id cannot be persisted
        """
        replica_id = self.read(root_path)
        if replica_id is not None:
            log.debug("replica_id_loaded", root_path=str(root_path), replica_id=str(replica_id))
            return replica_id

        replica_id = uuid.uuid4()
        id_file = self.id_file(Path(root_path))
        temp_path = id_file.with_name(f".{id_file.name}.{uuid.uuid4().hex[:8]}{TEMP_FILE_SUFFIX}")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(f"{replica_id}\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, id_file)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise FilesystemAccessError(f"Failed to write replica id file {id_file}: {e}") from e

        log.info("replica_id_created", root_path=str(root_path), replica_id=str(replica_id))
        return replica_id
