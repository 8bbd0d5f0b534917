"""Backup action: dump the database, compress it and upload it to S3."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Optional

from .archive import create_archive
from .commands import CommandRunner
from .config import BackupConfig, parse_postgres_uri
from .database import DatabaseError, PostgresContainer
from .storage import S3Storage, StorageError, join_key
from .utils import timestamp_for_filename
from .validation import CONTAINER, require_identifier, sanitize_prefix

LOGGER = logging.getLogger(__name__)


class BackupError(Exception):
    """Raised when a backup operation fails."""


@dataclass
class BackupRunner:
    config: BackupConfig
    runner: CommandRunner = field(default_factory=CommandRunner)
    logger: logging.Logger = LOGGER

    def backup(self, prefix: Optional[str] = None, now: Optional[datetime] = None) -> str:
        """Run the backup and return the ``s3://`` URL of the uploaded archive.

        Parameters
        ----------
        prefix:
            Optional key segment placed between ``S3_BACKUP_PATH`` and the
            archive name, e.g. ``daily`` or ``project/eu``.
        """

        # Everything that reaches a command line is validated before any command runs.
        connection = parse_postgres_uri(self.config.postgres_uri)
        container = require_identifier(self.config.docker_container_name, CONTAINER)
        base_path = sanitize_prefix(self.config.s3_backup_path)
        prefix_path = sanitize_prefix(prefix)

        timestamp = timestamp_for_filename(now)
        dump_filename = f"dump_{connection.database}_{timestamp}.sql"
        archive_filename = f"{connection.database}_{timestamp}.tar.gz"
        key = join_key(base_path, prefix_path, archive_filename)

        self.logger.info("Starting database backup of '%s'.", connection.database)
        storage = S3Storage(
            bucket=self.config.s3_bucket_name,
            profile=self.config.aws_profile,
            runner=self.runner,
        )
        with TemporaryDirectory(prefix="db-backupper-") as tmp_dir:
            work_dir = Path(tmp_dir)
            database = PostgresContainer(
                container=container,
                connection=connection,
                runner=self.runner,
                work_dir=work_dir,
            )
            try:
                dump_path = database.dump(work_dir / dump_filename)
                archive_path = create_archive(dump_path, work_dir / archive_filename)
                url = storage.upload(archive_path, key)
            except (DatabaseError, StorageError, OSError) as exc:
                raise BackupError(str(exc)) from exc

        self.logger.info("Backup successful! Archive uploaded to %s", url)
        self.logger.info(
            "Restore with: db-backupper download %s, then db-backupper restore <dump file>", url
        )
        return url


__all__ = ["BackupRunner", "BackupError"]
