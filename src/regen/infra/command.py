"""Subprocess command runner with logging."""

from __future__ import annotations

import os
import subprocess
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from queue import Empty, Queue
from typing import IO

import structlog

from regen.exceptions import CommandError

logger = structlog.get_logger()


@dataclass(frozen=True)
class OutputLine:
    """A single line of output from a running process.

    Attributes:
        stream: Either "stdout" or "stderr".
        text: The line without its trailing newline.
    """

    stream: str
    text: str

    @property
    def is_error(self) -> bool:
        """Whether the line came from stderr."""
        return self.stream == "stderr"


class ProcessStream:
    """Synchronous line iterator over a running process.

    Each pipe is drained by its own reader thread into a queue; iterating
    yields lines in arrival order until both pipes close. If the timeout
    elapses first the process is killed and CommandError is raised.

    Example:
        >>> stream = CommandRunner().stream(["tool", "--update"], cwd=Path("/opt/tool"))
        >>> for line in stream:
        ...     print(line.text)
        >>> stream.returncode
        0
    """

    def __init__(
        self,
        process: subprocess.Popen[str],
        *,
        command: list[str],
        cwd: Path | None,
        timeout: float | None,
    ) -> None:
        self.process = process
        self.command = command
        self.cwd = cwd
        self.timeout = timeout
        self._queue: Queue[OutputLine | None] = Queue()
        self._started = time.monotonic()
        self._readers = [
            threading.Thread(
                target=self._pump, args=("stdout", process.stdout), daemon=True
            ),
            threading.Thread(
                target=self._pump, args=("stderr", process.stderr), daemon=True
            ),
        ]
        for reader in self._readers:
            reader.start()

    def _pump(self, name: str, pipe: IO[str] | None) -> None:
        if pipe is None:
            self._queue.put(None)
            return
        try:
            for raw in iter(pipe.readline, ""):
                self._queue.put(OutputLine(stream=name, text=raw.rstrip("\r\n")))
        finally:
            pipe.close()
            self._queue.put(None)

    def _remaining(self) -> float | None:
        if self.timeout is None:
            return None
        return self.timeout - (time.monotonic() - self._started)

    def _expire(self) -> CommandError:
        logger.error("Command timed out", command=self.command, timeout=self.timeout)
        self.kill()
        msg = f"Command timed out after {self.timeout}s: {' '.join(self.command)}"
        return CommandError(msg, command=self.command, cwd=self.cwd, timed_out=True)

    def __iter__(self) -> Iterator[OutputLine]:
        open_pipes = len(self._readers)
        while open_pipes:
            remaining = self._remaining()
            if remaining is not None and remaining <= 0:
                raise self._expire()
            try:
                item = self._queue.get(timeout=remaining)
            except Empty:
                continue
            if item is None:
                open_pipes -= 1
                continue
            yield item

    def wait(self) -> int:
        """Wait for the process to exit within whatever is left of the timeout.

        Returns:
            The process exit code.

        Raises:
            CommandError: If the timeout elapses first.
        """
        remaining = self._remaining()
        try:
            returncode = self.process.wait(
                timeout=None if remaining is None else max(remaining, 0)
            )
        except subprocess.TimeoutExpired as e:
            raise self._expire() from e
        for reader in self._readers:
            reader.join(timeout=1)
        return returncode

    @property
    def returncode(self) -> int | None:
        """Exit code once the process has finished."""
        return self.process.poll()

    def kill(self) -> None:
        """Forcibly terminate the process."""
        if self.process.poll() is None:
            self.process.kill()
            self.process.wait()


class CommandRunner:
    """Runs subprocess commands with consistent logging.

    All subprocess calls in regen, git included, go through this class to
    ensure consistent logging and error handling.

    Example:
        >>> runner = CommandRunner()
        >>> runner.run_capture(["echo", "hello"], cwd=Path("/tmp"))
        (0, 'hello\\n', '')
    """

    def __init__(self, heartbeat_interval: int = 30) -> None:
        """Initialize the command runner.

        Args:
            heartbeat_interval: Interval in seconds for heartbeat logging (0 to disable).
        """
        self.heartbeat_interval = heartbeat_interval

    @staticmethod
    def _heartbeat_logger(
        log: structlog.BoundLogger, stop_event: threading.Event, interval: int
    ) -> None:
        """Log heartbeat messages while a command is running.

        Args:
            log: Logger instance.
            stop_event: Event to signal when to stop.
            interval: Interval in seconds between heartbeats.
        """
        elapsed = 0
        while not stop_event.wait(timeout=interval):
            elapsed += interval
            log.info("Command still running", elapsed_seconds=elapsed)

    @staticmethod
    def _merge_env(env: dict[str, str] | None) -> dict[str, str]:
        full_env = os.environ.copy()
        if env:
            full_env.update(env)
        return full_env

    def run_capture(
        self,
        command: list[str],
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
        check: bool = False,
        env: dict[str, str] | None = None,
    ) -> tuple[int, str, str]:
        """Run a command and capture stdout/stderr in memory.

        Args:
            command: Command and arguments to run.
            cwd: Working directory for the command.
            timeout: Timeout in seconds.
            check: If True, raise on non-zero exit code.
            env: Environment variables (merged with current env).

        Returns:
            Tuple of (returncode, stdout, stderr).

        Raises:
            CommandError: If command cannot be started or times out, or if check=True and command fails.
        """
        log = logger.bind(command=command, cwd=str(cwd) if cwd else None)
        log.debug("Running command")

        stop_heartbeat = threading.Event()
        heartbeat_thread = None
        if self.heartbeat_interval > 0 and (
            timeout is None or timeout > self.heartbeat_interval
        ):
            heartbeat_thread = threading.Thread(
                target=self._heartbeat_logger,
                args=(log, stop_heartbeat, self.heartbeat_interval),
                daemon=True,
            )
            heartbeat_thread.start()

        try:
            result = subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                env=self._merge_env(env),
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            log.error("Command timed out", timeout=timeout)
            msg = f"Command timed out after {timeout}s: {' '.join(command)}"
            raise CommandError(msg, command=command, cwd=cwd, timed_out=True) from e
        except FileNotFoundError as e:
            log.error("Command not found", command=command[0])
            msg = f"Command not found: {command[0]}"
            raise CommandError(msg, command=command, cwd=cwd) from e
        except OSError as e:
            log.error("Command could not start", error=str(e))
            msg = f"Failed to start command: {' '.join(command)}: {e}"
            raise CommandError(msg, command=command, cwd=cwd) from e
        finally:
            if heartbeat_thread:
                stop_heartbeat.set()
                heartbeat_thread.join(timeout=1)

        log.debug("Command completed", returncode=result.returncode)

        if check and result.returncode != 0:
            msg = (
                f"Command failed with exit code {result.returncode}: "
                f"{' '.join(command)}: {result.stderr.strip()}"
            )
            raise CommandError(
                msg,
                command=command,
                returncode=result.returncode,
                cwd=cwd,
            )

        return result.returncode, result.stdout, result.stderr

    def stream(
        self,
        command: list[str],
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> ProcessStream:
        """Start a command and return a line iterator over its output.

        Args:
            command: Command and arguments to run.
            cwd: Working directory for the command.
            timeout: Overall timeout in seconds, covering iteration and wait().
            env: Environment variables (merged with current env).

        Returns:
            ProcessStream for the started process.

        Raises:
            CommandError: If the command cannot be started.
        """
        log = logger.bind(command=command, cwd=str(cwd) if cwd else None)
        log.info("Starting process")

        try:
            process = subprocess.Popen(
                command,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=self._merge_env(env),
            )
        except OSError as e:
            log.error("Failed to start process", error=str(e))
            msg = f"Failed to start process: {' '.join(command)}: {e}"
            raise CommandError(msg, command=command, cwd=cwd) from e

        log.info("Process started", pid=process.pid)
        return ProcessStream(process, command=command, cwd=cwd, timeout=timeout)

    def run_git(
        self,
        args: list[str],
        *,
        cwd: Path,
        check: bool = True,
    ) -> tuple[int, str, str]:
        """Run a git command.

        Convenience method for running git commands. Prompts for credentials
        are disabled so an auth failure surfaces as an error instead of
        blocking the worker.

        Args:
            args: Git subcommand and arguments.
            cwd: Working directory.
            check: If True, raise on non-zero exit code.

        Returns:
            Tuple of (returncode, stdout, stderr).
        """
        return self.run_capture(
            ["git", *args],
            cwd=cwd,
            check=check,
            env={"GIT_TERMINAL_PROMPT": "0"},
        )
