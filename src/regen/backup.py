"""Snapshots of generated pickle files, taken before each update."""

from __future__ import annotations

import shutil
from datetime import datetime
from pathlib import Path

import structlog

from regen.exceptions import RegenError

logger = structlog.get_logger()

BACKUP_PREFIX = "backup_"


class BackupManager:
    """Copies ``*.pkl`` from the output directories into timestamped folders.

    Each snapshot is ``<backups_dir>/backup_<YYYYmmdd_HHMMSS>/<subdir>/*.pkl``
    where ``subdir`` is the output directory's name (``mgdb``, ``wild``).
    Only the newest ``max_backups`` snapshots are kept.
    """

    def __init__(
        self,
        backups_dir: Path,
        output_dirs: dict[str, Path],
        *,
        max_backups: int = 10,
    ) -> None:
        """Initialize the backup manager.

        Args:
            backups_dir: Directory holding snapshots.
            output_dirs: Output directories keyed by snapshot subdirectory name.
            max_backups: Number of snapshots to keep.
        """
        self.backups_dir = backups_dir
        self.output_dirs = output_dirs
        self.max_backups = max_backups

    @staticmethod
    def _copy_pickles(src: Path, dest: Path) -> int:
        dest.mkdir(parents=True, exist_ok=True)
        count = 0
        for file in src.glob("*.pkl"):
            if file.is_file():
                shutil.copy2(file, dest / file.name)
                count += 1
        return count

    def _new_backup_path(self) -> Path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = self.backups_dir / f"{BACKUP_PREFIX}{timestamp}"
        suffix = 1
        while path.exists():
            path = self.backups_dir / f"{BACKUP_PREFIX}{timestamp}_{suffix}"
            suffix += 1
        return path

    def create(self) -> Path | None:
        """Snapshot the current outputs.

        Errors are logged, not raised, so a failed backup never blocks an
        update.

        Returns:
            The snapshot directory, or None if the backup failed.
        """
        try:
            backup_path = self._new_backup_path()
            backup_path.mkdir(parents=True)
            total = 0
            for name, directory in self.output_dirs.items():
                if directory.is_dir():
                    total += self._copy_pickles(directory, backup_path / name)
            logger.info("Backup created", path=str(backup_path), files=total)
        except OSError as e:
            logger.error("Error creating backup", error=str(e))
            return None

        self.prune()
        return backup_path

    def list_backups(self) -> list[str]:
        """List snapshot names, newest first."""
        if not self.backups_dir.is_dir():
            return []
        backups = [
            d
            for d in self.backups_dir.iterdir()
            if d.is_dir() and d.name.startswith(BACKUP_PREFIX)
        ]
        backups.sort(key=lambda d: d.name, reverse=True)
        return [d.name for d in backups]

    def prune(self) -> list[str]:
        """Delete snapshots beyond ``max_backups``.

        Returns:
            Names of deleted snapshots.
        """
        deleted: list[str] = []
        for name in self.list_backups()[self.max_backups :]:
            try:
                shutil.rmtree(self.backups_dir / name)
            except OSError as e:
                logger.error("Error deleting old backup", backup=name, error=str(e))
                continue
            deleted.append(name)
            logger.info("Old backup deleted", backup=name)
        return deleted

    def restore(self, name: str) -> int:
        """Copy a snapshot's files back into the output directories.

        Args:
            name: Snapshot name, as returned by list_backups().

        Returns:
            Number of files restored.

        Raises:
            RegenError: If the snapshot doesn't exist or cannot be copied back.
        """
        if name not in self.list_backups():
            msg = f"Backup not found: {name}"
            raise RegenError(msg)
        backup_path = self.backups_dir / name

        restored = 0
        try:
            for subdir, directory in self.output_dirs.items():
                snapshot = backup_path / subdir
                if snapshot.is_dir():
                    restored += self._copy_pickles(snapshot, directory)
        except OSError as e:
            msg = f"Error restoring backup {name}: {e}"
            raise RegenError(msg) from e

        logger.info("Backup restored", backup=name, files=restored)
        return restored
