"""Clone-or-update of tracked data repositories."""

from __future__ import annotations

from pathlib import Path

import structlog

from regen.exceptions import CommandError, SyncError
from regen.infra.command import CommandRunner
from regen.models import RepositorySource, SyncResult

logger = structlog.get_logger()


class GitSync:
    """Brings a local checkout to the tip of its remote branch.

    A missing or invalid checkout is cloned. An existing checkout is
    fetched and, when its branch tip differs from ``origin/<branch>``,
    force-checked-out and hard-reset onto the remote tip. Local
    modifications are discarded.

    Example:
        >>> sync = GitSync(CommandRunner())
        >>> result = sync.clone_or_update(source)
        >>> result.was_updated
        False
    """

    def __init__(self, cmd: CommandRunner, remote: str = "origin") -> None:
        """Initialize the syncer.

        Args:
            cmd: CommandRunner instance.
            remote: Name of the remote to fetch from.
        """
        self.cmd = cmd
        self.remote = remote

    def is_repository(self, path: Path) -> bool:
        """Check whether ``path`` is the top level of a git working tree."""
        if not path.is_dir():
            return False
        try:
            returncode, stdout, _ = self.cmd.run_git(
                ["rev-parse", "--show-toplevel"], cwd=path, check=False
            )
        except CommandError:
            return False
        if returncode != 0:
            return False
        return Path(stdout.strip()).resolve() == path.resolve()

    def clone_or_update(self, source: RepositorySource) -> SyncResult:
        """Clone the repository if needed, otherwise update it in place.

        Never raises; every failure is reported in the result.

        Args:
            source: The repository to sync.

        Returns:
            SyncResult describing the outcome.
        """
        log = logger.bind(source=source.name, path=str(source.path))
        try:
            if not self.is_repository(source.path):
                return self._clone(source)
            return self._update(source)
        except (SyncError, CommandError) as e:
            log.error("Git error updating repository", error=str(e))
            return SyncResult.failed(str(e))
        except OSError as e:
            log.error("Unexpected error updating repository", error=str(e))
            return SyncResult.failed(f"Unexpected error updating {source.name}: {e}")

    def _clone(self, source: RepositorySource) -> SyncResult:
        log = logger.bind(source=source.name, branch=source.branch)
        if not source.url:
            msg = f"{source.name}: no remote URL configured and {source.path} is not a repository"
            raise SyncError(msg, source=source.name, path=source.path)

        log.info("Cloning repository", url=source.url, path=str(source.path))
        source.path.parent.mkdir(parents=True, exist_ok=True)

        returncode, _, stderr = self.cmd.run_git(
            [
                "clone",
                "--branch",
                source.branch,
                "--origin",
                self.remote,
                source.url,
                str(source.path),
            ],
            cwd=source.path.parent,
            check=False,
        )
        if returncode != 0:
            msg = f"Failed to clone {source.name}: {stderr.strip()}"
            raise SyncError(msg, source=source.name, path=source.path)

        sha = self._rev_parse("HEAD", source.path)
        subject, author = self._describe(sha, source.path)
        log.info("Repository cloned", sha=sha[:7], message=subject)
        return SyncResult(
            success=True,
            was_updated=True,
            commit_hash=sha,
            commit_message=subject,
            author=author,
        )

    def _update(self, source: RepositorySource) -> SyncResult:
        log = logger.bind(source=source.name, branch=source.branch)
        log.info("Updating repository")
        path = source.path

        _, status, _ = self.cmd.run_git(["status", "--porcelain"], cwd=path, check=False)
        if status.strip():
            log.warning("Repository has uncommitted changes; they will be discarded")

        returncode, _, _ = self.cmd.run_git(
            ["remote", "get-url", self.remote], cwd=path, check=False
        )
        if returncode != 0:
            msg = f"No {self.remote} remote found for {source.name}"
            raise SyncError(msg, source=source.name, path=path)

        log.info("Fetching latest changes")
        returncode, _, stderr = self.cmd.run_git(
            ["fetch", "--prune", self.remote], cwd=path, check=False
        )
        if returncode != 0:
            msg = f"Failed to fetch {source.name}: {stderr.strip()}"
            raise SyncError(msg, source=source.name, path=path)

        local_ref = f"refs/heads/{source.branch}"
        remote_ref = f"refs/remotes/{self.remote}/{source.branch}"
        local_sha = self._rev_parse_optional(local_ref, path)
        if local_sha is None:
            msg = f"Local branch '{source.branch}' not found in {source.name}"
            raise SyncError(msg, source=source.name, path=path)
        remote_sha = self._rev_parse_optional(remote_ref, path)
        if remote_sha is None:
            msg = f"Remote branch '{self.remote}/{source.branch}' not found in {source.name}"
            raise SyncError(msg, source=source.name, path=path)

        if local_sha == remote_sha:
            log.info("Repository is already up to date", sha=local_sha[:7])
            return SyncResult(success=True, was_updated=False, commit_hash=local_sha)

        _, behind, _ = self.cmd.run_git(
            ["rev-list", "--count", f"{local_ref}..{remote_ref}"], cwd=path, check=False
        )
        log.info("Repository is behind", behind_by=behind.strip() or "?")

        self.cmd.run_git(["checkout", "--force", source.branch], cwd=path)
        self.cmd.run_git(["reset", "--hard", remote_sha], cwd=path)

        subject, author = self._describe(remote_sha, path)
        log.info(
            "Repository updated",
            sha=remote_sha[:7],
            author=author,
            message=subject,
        )
        return SyncResult(
            success=True,
            was_updated=True,
            commit_hash=remote_sha,
            commit_message=subject,
            author=author,
        )

    def _rev_parse(self, ref: str, cwd: Path) -> str:
        _, stdout, _ = self.cmd.run_git(["rev-parse", "--verify", ref], cwd=cwd)
        return stdout.strip()

    def _rev_parse_optional(self, ref: str, cwd: Path) -> str | None:
        returncode, stdout, _ = self.cmd.run_git(
            ["rev-parse", "--verify", "--quiet", ref], cwd=cwd, check=False
        )
        if returncode != 0:
            return None
        return stdout.strip() or None

    def _describe(self, sha: str, cwd: Path) -> tuple[str, str]:
        """Return (subject, author name) of a commit."""
        _, stdout, _ = self.cmd.run_git(
            ["log", "-1", "--format=%s%n%an", sha], cwd=cwd, check=False
        )
        lines = stdout.splitlines()
        subject = lines[0] if lines else ""
        author = lines[1] if len(lines) > 1 else ""
        return subject, author

    def head_sha(self, path: Path) -> str | None:
        """Get the SHA of HEAD, or None if ``path`` is not a repository."""
        if not self.is_repository(path):
            return None
        return self._rev_parse_optional("HEAD", path)
