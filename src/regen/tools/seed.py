"""Downloads the seed data file a tool reads on startup."""

from __future__ import annotations

from pathlib import Path

import requests
import structlog

from regen.exceptions import DownloadError

logger = structlog.get_logger()

MIN_CONTENT_LENGTH = 10


class SeedFetcher:
    """Fetches a text file and places it next to a tool and in its repository."""

    def __init__(self, url: str, *, filename: str = "data.json", timeout: float = 120) -> None:
        self.url = url
        self.filename = filename
        self.timeout = timeout

    def download(self) -> str:
        """Download the seed content.

        Raises:
            DownloadError: On transport errors, non-2xx responses or implausibly short content.
        """
        log = logger.bind(url=self.url)
        log.info("Downloading seed file")
        try:
            resp = requests.get(self.url, timeout=float(self.timeout))
        except requests.RequestException as e:
            msg = f"Failed to download {self.filename}: {e}"
            raise DownloadError(msg, url=self.url) from e

        if resp.status_code // 100 != 2:
            msg = f"HTTP {resp.status_code} downloading {self.filename}"
            raise DownloadError(msg, url=self.url)

        content = resp.text
        if len(content.strip()) < MIN_CONTENT_LENGTH:
            msg = f"Downloaded {self.filename} appears to be invalid or empty"
            raise DownloadError(msg, url=self.url)

        log.info("Seed file downloaded", characters=len(content))
        return content

    def install(self, executable_dir: Path, repo_dir: Path | None = None) -> Path:
        """Download and write the seed file.

        Writing next to the executable must succeed; the repository copy is
        best effort.

        Args:
            executable_dir: Directory of the tool.
            repo_dir: Directory inside the repository that also receives a copy.

        Returns:
            Path of the file written next to the executable.

        Raises:
            DownloadError: If the download or the primary write fails.
        """
        content = self.download()

        target = executable_dir / self.filename
        try:
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            msg = f"Failed to save {self.filename} to {executable_dir}: {e}"
            raise DownloadError(msg, url=self.url) from e
        logger.info("Seed file saved", path=str(target))

        if repo_dir is not None:
            try:
                repo_dir.mkdir(parents=True, exist_ok=True)
                (repo_dir / self.filename).write_text(content, encoding="utf-8")
                logger.debug("Repository seed file updated", path=str(repo_dir))
            except OSError as e:
                logger.warning("Failed to update repository seed file", error=str(e))

        return target
