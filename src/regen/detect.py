"""Locate known repositories on disk to pre-fill the configuration."""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from regen.exceptions import CommandError
from regen.infra.command import CommandRunner

logger = structlog.get_logger()

MAX_DEPTH = 3

# Marker paths per repository type; at least half must exist.
REPO_IDENTIFIERS: dict[str, list[str]] = {
    "PKHeX": ["PKHeX.Core", "PKHeX.WinForms", "PKHeX.sln", "Resources/legality"],
    "EventsGallery": ["Released/Gen 9", "Released/Gen 8", "Released/Gen 7", "Released/Gen 6"],
    "PoGoEncTool": [
        "PoGoEncTool.WinForms",
        "PoGoEncTool.Core",
        "pget.sln",
        "PoGoEncounterTool.sln",
    ],
}

SYSTEM_DIRS = (
    "windows",
    "program files",
    "programdata",
    "$recycle.bin",
    "system volume information",
    "recovery",
    "perflogs",
    "appdata",
    "temp",
    "tmp",
)


def default_search_roots() -> list[Path]:
    """Folders where checkouts usually live."""
    home = Path.home()
    return [
        home,
        home / "source" / "repos",
        home / "Documents",
        home / "GitHub",
        home / "GitLab",
        home / "Projects",
    ]


def is_system_directory(path: Path) -> bool:
    """Whether a directory name looks like an OS or scratch folder."""
    name = path.name.lower()
    return any(marker in name for marker in SYSTEM_DIRS)


@dataclass(frozen=True)
class DetectedRepository:
    """A repository identified on disk.

    Attributes:
        type: Repository type key from REPO_IDENTIFIERS.
        path: Repository root.
        last_modified: Last commit time, or the directory mtime.
    """

    type: str
    path: Path
    last_modified: datetime

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type,
            "path": str(self.path),
            "last_modified": self.last_modified.isoformat(),
        }


class RepositoryDetector:
    """Walks candidate folders looking for known git repositories.

    Example:
        >>> detector = RepositoryDetector(CommandRunner())
        >>> [r.type for r in detector.detect([Path("~/source/repos").expanduser()])]
        ['EventsGallery', 'PKHeX', 'PoGoEncTool']
    """

    def __init__(
        self,
        cmd: CommandRunner | None = None,
        *,
        identifiers: dict[str, list[str]] | None = None,
        max_depth: int = MAX_DEPTH,
    ) -> None:
        self.cmd = cmd or CommandRunner()
        self.identifiers = identifiers or REPO_IDENTIFIERS
        self.max_depth = max_depth

    def identify(self, path: Path) -> str | None:
        """Return the repository type of ``path``, if it matches one."""
        for repo_type, markers in self.identifiers.items():
            matches = sum(1 for marker in markers if (path / marker).exists())
            if matches * 2 >= len(markers):
                return repo_type
        return None

    def _last_modified(self, path: Path) -> datetime:
        try:
            returncode, stdout, _ = self.cmd.run_git(
                ["log", "-1", "--format=%cI"], cwd=path, check=False
            )
            if returncode == 0 and stdout.strip():
                return datetime.fromisoformat(stdout.strip())
        except (CommandError, ValueError) as e:
            logger.debug("Could not read last commit", path=str(path), error=str(e))
        return datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)

    def _search(self, root: Path) -> list[DetectedRepository]:
        found: list[DetectedRepository] = []
        root_depth = len(root.parts)

        for dirpath, dirnames, _filenames in os.walk(root):
            current = Path(dirpath)
            depth = len(current.parts) - root_depth

            if (current / ".git").is_dir():
                repo_type = self.identify(current)
                if repo_type is not None:
                    logger.debug("Found repository", type=repo_type, path=str(current))
                    found.append(
                        DetectedRepository(
                            type=repo_type,
                            path=current,
                            last_modified=self._last_modified(current),
                        )
                    )
                    dirnames[:] = []
                    continue

            if depth >= self.max_depth:
                dirnames[:] = []
                continue
            dirnames[:] = [
                d
                for d in dirnames
                if not d.startswith(".git")
                and d != "node_modules"
                and not is_system_directory(current / d)
            ]
        return found

    def detect(self, roots: list[Path] | None = None) -> list[DetectedRepository]:
        """Search every existing root in parallel.

        Args:
            roots: Folders to search (default_search_roots() when None).

        Returns:
            Detected repositories, unique by lower-cased path, sorted by
            type then path.
        """
        roots = [r for r in (roots or default_search_roots()) if r.is_dir()]
        if not roots:
            return []

        with ThreadPoolExecutor(max_workers=min(len(roots), 8)) as pool:
            batches = list(pool.map(self._search, roots))

        unique: dict[str, DetectedRepository] = {}
        for repo in (r for batch in batches for r in batch):
            unique.setdefault(str(repo.path).lower(), repo)

        results = sorted(unique.values(), key=lambda r: (r.type, str(r.path)))
        logger.debug("Repository detection finished", found=len(results))
        return results
