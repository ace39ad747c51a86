"""Output and state directory layout for regen."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from regen.config import RegenConfig


@dataclass(frozen=True)
class RegenPaths:
    """Directories regen reads from and writes to.

    Attributes:
        output_root: Destination folder of the consuming application.
        mgdb_dir: Receives concatenated ``<ext>.pkl`` blobs.
        wild_dir: Receives individually copied tool outputs.
        state_dir: Holds run state, logs and backups.
        backups_dir: Holds backup snapshots.

    Example:
        >>> paths = RegenPaths(Path("/legality"), Path("/legality/mgdb"),
        ...                    Path("/legality/wild"), Path("/state"), Path("/state/backups"))
        >>> paths.state_json
        PosixPath('/state/state.json')
    """

    output_root: Path
    mgdb_dir: Path
    wild_dir: Path
    state_dir: Path
    backups_dir: Path

    @property
    def state_json(self) -> Path:
        """Path to state.json."""
        return self.state_dir / "state.json"

    @property
    def logs_dir(self) -> Path:
        """Directory for log files."""
        return self.state_dir / "logs"

    def build_log(self, source: str) -> Path:
        """Path of the captured build output for a source."""
        return self.logs_dir / f"build_{source}.log"

    @property
    def output_dirs(self) -> dict[str, Path]:
        """Output subdirectories keyed by their backup name."""
        return {self.mgdb_dir.name: self.mgdb_dir, self.wild_dir.name: self.wild_dir}

    def create_directories(self) -> None:
        """Create state directories.

        The output directories are created by the stages that write them,
        after the output root has been validated.
        """
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        self.backups_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config: RegenConfig) -> RegenPaths:
        """Resolve all directories from a configuration.

        Args:
            config: The loaded configuration.

        Returns:
            A RegenPaths instance.
        """
        output_root = config.resolve_path(config.output_path)
        state_dir = Path(config.state_dir).expanduser()
        backups_dir = Path(config.backups.directory).expanduser()
        if not backups_dir.is_absolute():
            backups_dir = state_dir / backups_dir
        return cls(
            output_root=output_root,
            mgdb_dir=output_root / config.mgdb_dirname,
            wild_dir=output_root / config.wild_dirname,
            state_dir=state_dir,
            backups_dir=backups_dir,
        )
