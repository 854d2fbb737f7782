"""Exclusion rules shared by change detection and change application."""

from fnmatch import fnmatchcase
from posixpath import basename

from pydantic import BaseModel, Field

from filesync.sync.replica import ID_FILE_NAME, METADATA_DIR_NAME, TEMP_FILE_SUFFIX


class ChangeFilter(BaseModel):
    """Excluded file names and subdirectories of a replica.

    Replica metadata (the id file, the metadata directory and in-flight
    temporary copies) is always excluded, whatever the configured patterns.
    """

    file_name_excludes: list[str] = Field(
        default_factory=list, description="fnmatch patterns matched against file names"
    )
    subdirectory_excludes: list[str] = Field(
        default_factory=list,
        description="Relative directory paths or fnmatch patterns excluded with their contents",
    )

    def excludes_file(self, relative_path: str) -> bool:
        """
        Check whether a file is excluded.

        Args:
            relative_path: POSIX path relative to the replica root

        Returns:
            True if the file must be ignored
        """
        name = basename(relative_path)
        if name == ID_FILE_NAME or name.endswith(TEMP_FILE_SUFFIX):
            return True
        if any(fnmatchcase(name, pattern) for pattern in self.file_name_excludes):
            return True

        parts = relative_path.split("/")[:-1]
        for depth in range(1, len(parts) + 1):
            if self.excludes_directory("/".join(parts[:depth])):
                return True
        return False

    def excludes_directory(self, relative_path: str) -> bool:
        """Check whether a directory, and everything below it, is excluded."""
        if relative_path == METADATA_DIR_NAME:
            return True
        return any(fnmatchcase(relative_path, pattern) for pattern in self.subdirectory_excludes)
