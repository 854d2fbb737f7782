"""Recycle area keeping content superseded or removed by a sync run."""

import os
import shutil
from datetime import datetime, timedelta
from pathlib import Path

import structlog

log = structlog.stdlib.get_logger()

STAMP_FORMAT = "%Y%m%dT%H%M%S"


class RecycleBin:
    """Moves replica files into a dated recycle folder instead of deleting them.

    Each instance recycles into one folder named after its creation time, so
    content recycled by one run stays together.
    """

    def __init__(
        self,
        root_path: Path,
        recycle_dir: Path,
        retention_days: int | None = None,
        now: datetime | None = None,
    ):
        self._root_path: Path = Path(root_path)
        self._recycle_dir: Path = Path(recycle_dir)
        self._retention_days: int | None = retention_days
        self._stamp: str = (now or datetime.now()).strftime(STAMP_FORMAT)

    @property
    def run_dir(self) -> Path:
        return self._recycle_dir / self._stamp

    def recycle(self, relative_path: str) -> Path:
        """
        Move a replica file into the recycle area.

        Args:
            relative_path: POSIX path of the file relative to the replica root

        Returns:
            Location of the recycled file

        Raises:
            OSError: If the file cannot be moved
        """
        source = self._root_path.joinpath(*relative_path.split("/"))
        target = self._free_slot(self.run_dir.joinpath(*relative_path.split("/")))
        target.parent.mkdir(parents=True, exist_ok=True)
        os.replace(source, target)

        log.info("file_recycled", path=relative_path, recycled_to=str(target))
        return target

    def entries(self) -> list[Path]:
        """All files currently held in the recycle area."""
        if not self._recycle_dir.is_dir():
            return []
        return sorted(p for p in self._recycle_dir.rglob("*") if p.is_file())

    def purge(self, now: datetime | None = None) -> int:
        """
        Remove run folders older than the retention period.

        Args:
            now: Reference time, defaults to the current time

        Returns:
            Number of run folders removed
        """
        if self._retention_days is None or not self._recycle_dir.is_dir():
            return 0

        cutoff = (now or datetime.now()) - timedelta(days=self._retention_days)
        removed = 0
        for run_dir in self._recycle_dir.iterdir():
            try:
                stamp = datetime.strptime(run_dir.name, STAMP_FORMAT)
            except ValueError:
                continue
            if stamp < cutoff and run_dir.is_dir():
                shutil.rmtree(run_dir)
                removed += 1

        if removed:
            log.info("recycle_area_purged", removed_runs=removed, retention_days=self._retention_days)
        return removed

    @staticmethod
    def _free_slot(target: Path) -> Path:
        """Return target, or target with a counter suffix if it is already used."""
        if not target.exists():
            return target
        counter = 2
        candidate = target.with_name(f"{target.stem} ({counter}){target.suffix}")
        while candidate.exists():
            counter += 1
            candidate = target.with_name(f"{target.stem} ({counter}){target.suffix}")
        return candidate
