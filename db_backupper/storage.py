"""S3 transfers through the AWS command line client."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .commands import CommandError, CommandRunner
from .validation import validate_s3_url

LOGGER = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an upload to or download from S3 fails."""


def join_key(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part and part.strip("/"))


@dataclass
class S3Storage:
    bucket: str
    profile: str
    runner: CommandRunner
    logger: logging.Logger = LOGGER

    def url_for(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    def upload(self, file_path: Path, key: str) -> str:
        file_path = Path(file_path)
        if not file_path.is_file():
            raise StorageError(f"File to upload '{file_path}' not found.")
        url = self.url_for(key)
        self.logger.info("Uploading archive to S3: %s", url)
        try:
            self.runner.run(
                ["aws", "s3", "cp", str(file_path), url, "--profile", self.profile],
                description="S3 upload",
            )
        except CommandError as exc:
            raise StorageError(f"S3 upload failed: {exc}") from exc
        return url

    def download(self, url: str, destination: Path) -> Path:
        """Copy the object at *url* to the local file *destination*."""

        validate_s3_url(url)
        destination = Path(destination)
        self.logger.info("Downloading archive from S3: %s", url)
        try:
            self.runner.run(
                ["aws", "s3", "cp", url, str(destination), "--profile", self.profile],
                description="S3 download",
            )
        except CommandError as exc:
            raise StorageError(f"S3 download failed: {exc}") from exc
        if not destination.is_file() or destination.stat().st_size == 0:
            raise StorageError(f"S3 download failed or downloaded file is empty: {url}")
        self.logger.info("Archive downloaded: %s", destination)
        return destination


__all__ = ["S3Storage", "StorageError", "join_key"]
