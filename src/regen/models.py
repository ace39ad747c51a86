"""Core data types shared by the sync, build and packing stages."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType


@dataclass(frozen=True)
class RepositorySource:
    """One externally managed git checkout.

    Attributes:
        name: Display name used in logs.
        url: Remote URL to clone from.
        path: Local checkout path.
        branch: Branch to track.
    """

    name: str
    url: str
    path: Path
    branch: str = "main"


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a single clone-or-update call.

    Attributes:
        success: Whether the repository is now at the remote branch tip.
        was_updated: Whether the working tree changed.
        commit_hash: SHA of the branch tip after the sync.
        commit_message: Subject line of that commit.
        author: Author name of that commit.
        error_message: Reason for failure.
    """

    success: bool
    was_updated: bool = False
    commit_hash: str | None = None
    commit_message: str | None = None
    author: str | None = None
    error_message: str | None = None

    @classmethod
    def failed(cls, message: str) -> SyncResult:
        """Create a failed result."""
        return cls(success=False, error_message=message)

    @property
    def short_hash(self) -> str:
        """First seven characters of the commit hash."""
        return (self.commit_hash or "")[:7]


@dataclass(frozen=True)
class BuildTarget:
    """A resolved project descriptor to build.

    Attributes:
        project_file: Solution or project file.
        configuration: Build configuration (e.g. Release).
        working_dir: Directory to run the build from.
    """

    project_file: Path
    configuration: str
    working_dir: Path


@dataclass(frozen=True)
class OverrideTable:
    """Filename substitutions applied while packing.

    Maps a known-bad source filename to a replacement file that lives in
    ``directory``. The mapping is read-only once constructed.
    """

    entries: Mapping[str, str] = field(default_factory=dict)
    directory: Path | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    def __contains__(self, filename: object) -> bool:
        return filename in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def replacement_path(self, filename: str) -> Path | None:
        """Path the override for ``filename`` would live at, if one is listed."""
        redirect = self.entries.get(filename)
        if redirect is None or self.directory is None:
            return None
        return self.directory / redirect


@dataclass(frozen=True)
class GenerationGroup:
    """One packing job: every extension under ``input_dir`` becomes a blob.

    Attributes:
        name: Logical name (e.g. "Gen 8").
        input_dir: Directory to search recursively.
        extensions: Extensions to pack, in order, without leading dots.
    """

    name: str
    input_dir: Path
    extensions: tuple[str, ...]


@dataclass(frozen=True)
class PackResult:
    """Counts reported by a single pack call."""

    extension: str
    output_file: Path
    processed: int = 0
    skipped: int = 0
    total_bytes: int = 0

    @property
    def total_mb(self) -> float:
        """Bytes written, in MiB."""
        return self.total_bytes / (1024.0 * 1024.0)


@dataclass
class CollectResult:
    """Counts and diagnostics reported by the artifact collector.

    Attributes:
        destination: Directory files were copied into.
        copied: Names of files copied.
        failed: Number of files that could not be copied.
        total_bytes: Bytes copied.
        found_expected: Expected names that were present.
        missing_expected: Expected names that were absent.
    """

    destination: Path
    copied: list[str] = field(default_factory=list)
    failed: int = 0
    total_bytes: int = 0
    found_expected: list[str] = field(default_factory=list)
    missing_expected: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        """Number of files copied."""
        return len(self.copied)
