"""Copies generated files from a tool's output into the wild directory."""

from __future__ import annotations

import os
import shutil
from collections.abc import Iterable, Iterator
from pathlib import Path

import structlog

from regen.build.locator import is_backup_path
from regen.models import CollectResult

logger = structlog.get_logger()


def iter_matching_files(root: Path, extension: str) -> Iterator[Path]:
    """Yield files under ``root`` ending in ``.<extension>``, in walk order.

    The match is case-insensitive. Directory enumeration order is kept as
    the filesystem yields it.
    """
    suffix = f".{extension.lower()}"
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            if name.lower().endswith(suffix):
                yield Path(dirpath) / name


def _expected_match(filename: str, expected: str) -> bool:
    return expected in filename or filename in expected


class ArtifactCollector:
    """Gathers files of one extension from several roots into a directory.

    Example:
        >>> collector = ArtifactCollector()
        >>> result = collector.collect([exe_dir, repo], wild_dir, "pkl", ["encounter_go_home.pkl"])
        >>> result.missing_expected
        []
    """

    def find(self, search_roots: Iterable[Path], extension: str) -> list[Path]:
        """List matching files under every existing root, without duplicates.

        Paths containing "backup" are skipped.
        """
        seen: set[Path] = set()
        files: list[Path] = []
        for root in search_roots:
            if not root.is_dir():
                continue
            for path in iter_matching_files(root, extension):
                if is_backup_path(path.relative_to(root)):
                    continue
                resolved = path.resolve()
                if resolved in seen:
                    continue
                seen.add(resolved)
                files.append(path)
        return files

    def collect(
        self,
        search_roots: list[Path],
        destination: Path,
        extension: str,
        expected: Iterable[str] = (),
    ) -> CollectResult:
        """Copy every matching file into ``destination``.

        Args:
            search_roots: Directories to search, in priority order.
            destination: Directory to copy into; created if missing.
            extension: Extension to match, without the dot.
            expected: File names expected to be found.

        Returns:
            CollectResult with counts and expected-file diagnostics.
        """
        log = logger.bind(destination=str(destination), extension=extension)
        expected = list(expected)
        result = CollectResult(destination=destination)

        if not destination.exists():
            destination.mkdir(parents=True, exist_ok=True)
            log.info("Created destination directory")

        files = self.find(search_roots, extension)
        log.info("Found files", count=len(files))

        for file in files:
            target = destination / file.name
            try:
                shutil.copyfile(file, target)
                size = target.stat().st_size
            except OSError as e:
                log.warning("Failed to copy file", file=file.name, error=str(e))
                result.failed += 1
                continue
            result.copied.append(file.name)
            result.total_bytes += size
            log.debug("Copied file", file=file.name)

        for name in expected:
            if any(_expected_match(copied, name) for copied in result.copied):
                result.found_expected.append(name)
            else:
                result.missing_expected.append(name)

        if not result.copied:
            first_root = search_roots[0] if search_roots else None
            listing: list[str] = []
            if first_root is not None and first_root.is_dir():
                listing = sorted(p.name for p in first_root.iterdir())[:10]
            log.error(
                "No files found; the tool may have failed to generate them",
                searched=[str(r) for r in search_roots],
                first_root_contents=listing,
            )
            return result

        log.info(
            "Copied files",
            copied=result.count,
            failed=result.failed,
            size_mb=round(result.total_bytes / (1024.0 * 1024.0), 2),
        )
        if result.found_expected:
            log.info("Found expected files", files=result.found_expected)
        if result.missing_expected:
            log.warning("Missing expected files", files=result.missing_expected)
        return result
