"""Pytest fixtures for regen tests."""

from __future__ import annotations

import shutil
import stat
import subprocess
import sys
from collections.abc import Callable
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

import pytest

from regen.infra.command import CommandRunner

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
requires_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="POSIX shell not available")


def git(repo: Path, *args: str) -> str:
    """Run git in ``repo`` and return stdout."""
    result = subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


def commit_file(repo: Path, relative: str, content: str | bytes, message: str) -> str:
    """Write a file, commit it and return the new HEAD sha."""
    target = repo / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        target.write_bytes(content)
    else:
        target.write_text(content)
    git(repo, "add", "-A")
    git(repo, "commit", "-m", message)
    return git(repo, "rev-parse", "HEAD")


def init_repo(repo: Path) -> Path:
    """Create a git repository with one commit on ``main``."""
    repo.mkdir(parents=True, exist_ok=True)
    git(repo, "init")
    git(repo, "config", "user.email", "test@test.com")
    git(repo, "config", "user.name", "Test User")
    commit_file(repo, "README.md", "# data\n", "Initial commit")
    git(repo, "branch", "-M", "main")
    return repo


@pytest.fixture
def tmp_git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository.

    Creates a basic git repo with:
    - Initial commit
    - main branch
    """
    return init_repo(tmp_path / "repo")


@pytest.fixture
def upstream_repo(tmp_path: Path) -> Path:
    """Create a repository that plays the role of the remote."""
    return init_repo(tmp_path / "upstream")


@pytest.fixture
def command_runner() -> CommandRunner:
    """Create a CommandRunner instance."""
    return CommandRunner()


@pytest.fixture
def make_script(tmp_path: Path) -> Callable[..., Path]:
    """Return a factory writing executable shell scripts.

    The factory takes the script path (absolute, or relative to tmp_path)
    and the script body.
    """

    def _make(path: Path | str, body: str) -> Path:
        script = Path(path)
        if not script.is_absolute():
            script = tmp_path / script
        script.parent.mkdir(parents=True, exist_ok=True)
        script.write_text(f"#!/bin/sh\n{body}\n")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make


@pytest.fixture
def output_root(tmp_path: Path) -> Path:
    """Create the consuming application's legality folder."""
    root = tmp_path / "legality"
    root.mkdir()
    return root

