"""Custom exceptions for regen."""

from pathlib import Path


class RegenError(Exception):
    """Base exception for all regen errors."""

    pass


class ConfigError(RegenError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        *,
        config_path: Path | None = None,
        field: str = "",
    ) -> None:
        super().__init__(message)
        self.config_path = config_path
        self.field = field


class CommandError(RegenError):
    """Raised when a subprocess command cannot run, fails, or times out."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        cwd: Path | None = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.cwd = cwd
        self.timed_out = timed_out


class SyncError(RegenError):
    """Raised when a repository cannot be brought to its branch tip."""

    def __init__(
        self,
        message: str,
        *,
        source: str = "",
        path: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.source = source
        self.path = path


class BuildError(RegenError):
    """Raised when an external build fails."""

    def __init__(
        self,
        message: str,
        *,
        project_file: Path | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.project_file = project_file
        self.returncode = returncode


class DownloadError(RegenError):
    """Raised when a seed file cannot be downloaded."""

    def __init__(self, message: str, *, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class StateError(RegenError):
    """Raised when persisted run state cannot be read."""

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class RunInProgressError(RegenError):
    """Raised when a run is requested for a target that is already running."""

    def __init__(self, message: str, *, target: str = "") -> None:
        super().__init__(message)
        self.target = target
