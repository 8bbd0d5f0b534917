"""Download and restore actions."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Callable, Optional

from .archive import ArchiveError, find_dump_file, safe_extract
from .commands import CommandRunner
from .config import BackupConfig, parse_postgres_uri
from .database import DatabaseError, PostgresContainer
from .storage import S3Storage, StorageError
from .validation import CONTAINER, require_identifier, validate_s3_url

LOGGER = logging.getLogger(__name__)

PURGE_QUESTION = (
    "Do you want to purge (drop and recreate) the current database before restoring? (y/N): "
)


class RestoreError(Exception):
    """Raised when a download or restore operation fails."""


def ask_yes_no(question: str) -> bool:
    answer = input(question).strip().lower()
    return answer in {"y", "yes"}


@dataclass
class RestoreRunner:
    config: BackupConfig
    runner: CommandRunner = field(default_factory=CommandRunner)
    confirm: Callable[[str], bool] = ask_yes_no
    logger: logging.Logger = LOGGER

    def _storage(self) -> S3Storage:
        return S3Storage(
            bucket=self.config.s3_bucket_name,
            profile=self.config.aws_profile,
            runner=self.runner,
        )

    def _fetch(self, url: str, work_dir: Path, output_dir: Path) -> Path:
        archive_name = url.rsplit("/", 1)[-1]
        try:
            archive_path = self._storage().download(url, work_dir / archive_name)
            self.logger.info("Decompressing archive to %s...", output_dir)
            extracted = safe_extract(archive_path, output_dir)
            dump_path = find_dump_file(extracted)
        except (StorageError, ArchiveError) as exc:
            raise RestoreError(str(exc)) from exc
        self.logger.info("SQL dump extracted: %s", dump_path)
        return dump_path

    # ------------------------------------------------------------------
    def download(self, url: str, output_dir: Optional[Path] = None) -> Path:
        """Download the archive at *url*, extract it and return the dump file."""

        validate_s3_url(url)
        output_dir = Path(output_dir) if output_dir is not None else Path.cwd()
        if not output_dir.is_dir():
            raise RestoreError(f"Output directory does not exist: {output_dir}")
        self.logger.info("Starting database backup download from %s...", url)
        with TemporaryDirectory(prefix="db-backupper-") as tmp_dir:
            dump_path = self._fetch(url, Path(tmp_dir), output_dir)
        self.logger.info("Download and extraction successful!")
        self.logger.info("You can now restore using: db-backupper restore %s", dump_path)
        return dump_path

    def restore(self, dump_path: Path, purge: Optional[bool] = None) -> None:
        """Restore *dump_path* into the configured database.

        With ``purge=None`` the user is asked whether to drop and recreate the
        database first. A failed purge aborts before the restore is attempted.
        """

        dump_path = Path(dump_path)
        if not dump_path.is_file():
            raise RestoreError(f"SQL dump file not found at {dump_path}")
        connection = parse_postgres_uri(self.config.postgres_uri)
        container = require_identifier(self.config.docker_container_name, CONTAINER)

        self.logger.info("Starting database restore from %s...", dump_path)
        if purge is None:
            purge = self.confirm(PURGE_QUESTION)

        with TemporaryDirectory(prefix="db-backupper-") as tmp_dir:
            database = PostgresContainer(
                container=container,
                connection=connection,
                runner=self.runner,
                work_dir=Path(tmp_dir),
            )
            try:
                if purge:
                    database.purge()
                else:
                    self.logger.warning(
                        "Restoring without purge merges data with existing tables. Conflicts may occur."
                    )
                database.restore(dump_path)
            except DatabaseError as exc:
                raise RestoreError(str(exc)) from exc
        self.logger.info("Database restore successful!")

    def restore_legacy(self, url: str) -> None:
        """Download, extract and restore in one step (deprecated)."""

        self.logger.warning(
            "DEPRECATED: 'restore-legacy' will be removed in a future version. "
            "Use 'download' followed by 'restore' instead."
        )
        validate_s3_url(url)
        connection = parse_postgres_uri(self.config.postgres_uri)
        container = require_identifier(self.config.docker_container_name, CONTAINER)

        self.logger.info("Starting database restore from %s...", url)
        with TemporaryDirectory(prefix="db-backupper-") as tmp_dir:
            work_dir = Path(tmp_dir)
            extract_dir = work_dir / "extract"
            extract_dir.mkdir()
            dump_path = self._fetch(url, work_dir, extract_dir)
            database = PostgresContainer(
                container=container,
                connection=connection,
                runner=self.runner,
                work_dir=work_dir,
            )
            self.logger.warning(
                "This will typically overwrite existing data in tables defined in the dump."
            )
            try:
                database.restore(dump_path, single_transaction=True)
            except DatabaseError as exc:
                raise RestoreError(str(exc)) from exc
        self.logger.info("Database restore successful!")


__all__ = ["RestoreRunner", "RestoreError", "ask_yes_no"]
