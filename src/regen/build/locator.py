"""Finds a built tool executable inside a repository checkout."""

from __future__ import annotations

import os
from pathlib import Path

import structlog

logger = structlog.get_logger()


def is_backup_path(path: Path | str) -> bool:
    """Check whether a path lies under or names a backup."""
    return "backup" in str(path).lower()


class ExecutableLocator:
    """Searches conventional build output directories for an executable.

    Directories are tried in order (release before debug, newer runtime
    target before older), top level only. When none of them holds a
    match the whole repository is walked, skipping backup paths.

    Example:
        >>> locator = ExecutableLocator(["PoGo"], search_dirs=["bin/Release", "."])
        >>> locator.find(Path("/repos/PoGoEncTool"))
        PosixPath('/repos/PoGoEncTool/bin/Release/PoGoEncTool.exe')
    """

    def __init__(
        self,
        name_patterns: list[str],
        *,
        search_dirs: list[str] | None = None,
        extension: str = ".exe",
    ) -> None:
        """Initialize the locator.

        Args:
            name_patterns: Substrings, one of which the file name must contain.
            search_dirs: Conventional dirs relative to the repository, in priority order.
            extension: Executable extension.
        """
        self.name_patterns = [p.lower() for p in name_patterns]
        self.search_dirs = search_dirs if search_dirs is not None else ["."]
        self.extension = extension.lower()

    def matches(self, path: Path) -> bool:
        """Check a file against the extension and name heuristics."""
        name = path.name.lower()
        if not name.endswith(self.extension):
            return False
        if not self.name_patterns:
            return True
        return any(pattern in name for pattern in self.name_patterns)

    def find(self, repo_path: Path) -> Path | None:
        """Locate the executable.

        Args:
            repo_path: Repository root, or the executable itself.

        Returns:
            Absolute path to the executable, or None if nothing matches.
        """
        log = logger.bind(repo=str(repo_path))

        if repo_path.is_file():
            return repo_path.resolve() if self.matches(repo_path) else None

        for relative in self.search_dirs:
            directory = repo_path / relative
            if not directory.is_dir():
                continue
            for candidate in sorted(directory.iterdir()):
                if candidate.is_file() and self.matches(candidate):
                    log.debug("Found executable", directory=str(directory))
                    return candidate.resolve()

        if not repo_path.is_dir():
            return None

        log.warning("Executable not found in common locations, searching all subdirectories")
        for dirpath, dirnames, filenames in os.walk(repo_path):
            dirnames[:] = [
                d for d in sorted(dirnames) if d != ".git" and not is_backup_path(d)
            ]
            for name in sorted(filenames):
                candidate = Path(dirpath) / name
                if not is_backup_path(candidate.relative_to(repo_path)) and self.matches(
                    candidate
                ):
                    return candidate.resolve()

        return None
