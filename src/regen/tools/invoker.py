"""Runs a located data generation tool."""

from __future__ import annotations

from pathlib import Path

import structlog

from regen.infra.command import CommandRunner

logger = structlog.get_logger()


class ToolInvoker:
    """Launches a tool with its update arguments and relays its output.

    The exit code is reported but never treated as fatal here: the tool
    may still have written usable files, and the presence of those files is
    what the caller checks. A timeout kills the process and raises
    CommandError.

    Example:
        >>> invoker = ToolInvoker(CommandRunner(), timeout=300)
        >>> invoker.run_update(Path("/repos/PoGoEncTool/bin/Release/PoGoEncTool.exe"))
        0
    """

    def __init__(
        self,
        cmd: CommandRunner,
        *,
        args: list[str] | None = None,
        timeout: float | None = 300,
    ) -> None:
        """Initialize the invoker.

        Args:
            cmd: CommandRunner instance.
            args: Arguments passed to the tool.
            timeout: Timeout in seconds.
        """
        self.cmd = cmd
        self.args = args if args is not None else ["--update"]
        self.timeout = timeout

    def run_update(self, executable: Path) -> int:
        """Run the tool from its own directory and wait for it.

        Args:
            executable: Path to the tool.

        Returns:
            The tool's exit code.

        Raises:
            CommandError: If the tool cannot start or times out.
        """
        tool = executable.name
        log = logger.bind(tool=tool)
        log.info("Running tool", args=self.args)

        stream = self.cmd.stream(
            [str(executable), *self.args],
            cwd=executable.parent,
            timeout=self.timeout,
        )
        for line in stream:
            if not line.text:
                continue
            if line.is_error:
                log.warning("Tool error output", line=line.text)
            else:
                log.debug("Tool output", line=line.text)

        returncode = stream.wait()
        if returncode != 0:
            log.warning(
                "Tool exited with non-zero code, continuing to check for generated files",
                returncode=returncode,
            )
        else:
            log.info("Tool completed")
        return returncode
