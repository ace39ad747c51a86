"""Builds a source's tool with an external build command."""

from __future__ import annotations

import os
from pathlib import Path

import structlog

from regen.exceptions import CommandError
from regen.infra.command import CommandRunner
from regen.models import BuildTarget

logger = structlog.get_logger()


class BuildRunner:
    """Resolves a project descriptor and runs ``<tool> build`` against it.

    Example:
        >>> runner = BuildRunner(CommandRunner(), preferred="WinForms")
        >>> runner.build(Path("/repos/PoGoEncTool"), "Release")
        True
    """

    def __init__(
        self,
        cmd: CommandRunner,
        *,
        tool: str = "dotnet",
        descriptor_suffixes: list[str] | tuple[str, ...] = (".sln", ".csproj"),
        preferred: str = "",
        timeout: int | None = 1800,
        log_path: Path | None = None,
    ) -> None:
        """Initialize the build runner.

        Args:
            cmd: CommandRunner instance.
            tool: Build tool binary.
            descriptor_suffixes: Recognised descriptor suffixes, most preferred first.
            preferred: Substring preferred in the descriptor name.
            timeout: Build timeout in seconds.
            log_path: Where to write the combined build output.
        """
        self.cmd = cmd
        self.tool = tool
        self.descriptor_suffixes = tuple(s.lower() for s in descriptor_suffixes)
        self.preferred = preferred.lower()
        self.timeout = timeout
        self.log_path = log_path

    def is_descriptor(self, path: Path) -> bool:
        """Check whether ``path`` is a recognised project descriptor file."""
        return path.is_file() and path.suffix.lower() in self.descriptor_suffixes

    def _rank(self, path: Path) -> tuple[int, int, str]:
        preferred = 0 if self.preferred and self.preferred in path.stem.lower() else 1
        suffix = self.descriptor_suffixes.index(path.suffix.lower())
        return (preferred, suffix, str(path))

    def _find_descriptors(self, root: Path) -> list[Path]:
        top_level = [p for p in root.iterdir() if self.is_descriptor(p)]
        if top_level:
            return sorted(top_level, key=self._rank)

        found: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            found.extend(
                Path(dirpath) / name
                for name in filenames
                if Path(name).suffix.lower() in self.descriptor_suffixes
            )
        return sorted(found, key=self._rank)

    def resolve_target(self, project_path: Path, configuration: str) -> BuildTarget | None:
        """Resolve the descriptor to build.

        Args:
            project_path: A descriptor file, or a directory to search.
            configuration: Build configuration.

        Returns:
            The BuildTarget, or None if no descriptor was found.
        """
        log = logger.bind(project_path=str(project_path))

        if self.is_descriptor(project_path):
            project_file = project_path
        elif project_path.is_dir():
            candidates = self._find_descriptors(project_path)
            if not candidates:
                log.error("No project descriptor found", suffixes=self.descriptor_suffixes)
                return None
            project_file = candidates[0]
            if len(candidates) > 1:
                log.debug(
                    "Multiple project descriptors found",
                    chosen=project_file.name,
                    count=len(candidates),
                )
        else:
            log.error("Project path does not exist")
            return None

        return BuildTarget(
            project_file=project_file,
            configuration=configuration,
            working_dir=project_file.parent,
        )

    def build(self, project_path: Path, configuration: str = "Release") -> bool:
        """Build the project at ``project_path``.

        Args:
            project_path: A descriptor file, or a directory to search.
            configuration: Build configuration.

        Returns:
            True if the build exited with code 0.
        """
        target = self.resolve_target(project_path, configuration)
        if target is None:
            return False

        command = [
            self.tool,
            "build",
            str(target.project_file),
            "-c",
            target.configuration,
        ]
        log = logger.bind(project=target.project_file.name, configuration=configuration)
        log.info("Building project")

        try:
            returncode, stdout, stderr = self.cmd.run_capture(
                command, cwd=target.working_dir, timeout=self.timeout
            )
        except CommandError as e:
            log.error("Build could not run", error=str(e))
            return False

        output = stdout + stderr
        if self.log_path is not None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self.log_path.write_text(output, encoding="utf-8")

        if returncode != 0:
            tail = "\n".join(output.splitlines()[-20:])
            log.error("Build failed", returncode=returncode, output_tail=tail)
            return False

        log.info("Build succeeded")
        return True
