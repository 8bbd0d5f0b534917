"""PostgreSQL operations executed inside the database container."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .commands import CommandError, CommandRunner
from .config import ConnectionInfo
from .validation import CONTAINER, DATABASE, ValidationError, require_identifier

LOGGER = logging.getLogger(__name__)

MAINTENANCE_DATABASE = "postgres"

# Fed to psql on stdin; :'target_db' and :"target_db" are quoted by psql itself.
PURGE_SQL = b"""\
SELECT pg_terminate_backend(pid) FROM pg_stat_activity
 WHERE datname = :'target_db' AND pid <> pg_backend_pid();
DROP DATABASE IF EXISTS :"target_db";
CREATE DATABASE :"target_db";
"""


class DatabaseError(Exception):
    """Raised when a dump, purge or restore step fails."""


def write_credentials_file(
    password: Optional[str], directory: Path, settings: Optional[Dict[str, str]] = None
) -> Path:
    """Write ``PGPASSWORD`` and libpq *settings* to an owner-only env file for ``docker exec``."""

    if password is not None and ("\n" in password or "\r" in password):
        raise ValidationError("Database password must not contain line breaks.")
    lines = [f"PGPASSWORD={password}"] if password else []
    lines += [f"{name}={value}" for name, value in (settings or {}).items()]
    path = Path(directory) / "pg.env"
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write("".join(f"{line}\n" for line in lines))
    return path


@dataclass
class PostgresContainer:
    """``pg_dump`` and ``psql`` run through ``docker exec`` in *container*.

    *work_dir* is the calling action's temporary directory; the credentials
    file lives there and disappears with it.
    """

    container: str
    connection: ConnectionInfo
    runner: CommandRunner
    work_dir: Path
    logger: logging.Logger = LOGGER

    def __post_init__(self) -> None:
        require_identifier(self.container, CONTAINER)
        require_identifier(self.connection.database, DATABASE)
        self._env_file: Optional[Path] = None
        self.runner.add_secret(self.connection.password)

    # ------------------------------------------------------------------
    def _docker_exec(self, program: str) -> List[str]:
        command = ["docker", "exec", "-i"]
        if self.connection.password or self.connection.settings:
            if self._env_file is None:
                self._env_file = write_credentials_file(
                    self.connection.password, self.work_dir, self.connection.settings
                )
            command += ["--env-file", str(self._env_file)]
        command += [self.container, program]
        return command

    def _connection_args(self, database: str) -> List[str]:
        return [
            "-h",
            self.connection.host,
            "-p",
            str(self.connection.port),
            "-U",
            self.connection.user,
            "-d",
            database,
        ]

    def _psql(self, database: str) -> List[str]:
        return self._docker_exec("psql") + self._connection_args(database) + ["--quiet", "--no-psqlrc"]

    # ------------------------------------------------------------------
    def dump(self, dump_path: Path) -> Path:
        """Write a plain-format dump of the database to *dump_path*."""

        dump_path = Path(dump_path)
        command = self._docker_exec("pg_dump") + self._connection_args(self.connection.database)
        command += ["--no-owner", "--no-privileges", "-F", "p"]
        self.logger.info(
            "Dumping database '%s' from container '%s'...", self.connection.database, self.container
        )
        try:
            with dump_path.open("wb") as fh:
                self.runner.run(command, description="pg_dump", stdout=fh)
        except CommandError as exc:
            raise DatabaseError(f"Database dump failed: {exc}") from exc
        if dump_path.stat().st_size == 0:
            raise DatabaseError("Database dump failed: dump file is empty.")
        self.logger.info("Database dump created: %s", dump_path)
        return dump_path

    def purge(self) -> None:
        """Terminate connections, then drop and recreate the database."""

        database = self.connection.database
        self.logger.info("Purging database '%s' before restore...", database)
        command = self._psql(MAINTENANCE_DATABASE) + [
            "--set",
            "ON_ERROR_STOP=1",
            "--set",
            f"target_db={database}",
        ]
        try:
            self.runner.run(command, description="database purge", input=PURGE_SQL)
        except CommandError as exc:
            raise DatabaseError(f"Failed to drop/create database '{database}': {exc}") from exc
        self.logger.info("Database purged successfully.")

    def restore(self, dump_path: Path, single_transaction: bool = False) -> None:
        """Feed *dump_path* to ``psql`` connected to the target database."""

        command = self._psql(self.connection.database) + ["--set", "ON_ERROR_STOP=1"]
        if single_transaction:
            command.append("--single-transaction")
        self.logger.info(
            "Restoring database '%s' in container '%s'...", self.connection.database, self.container
        )
        try:
            with Path(dump_path).open("rb") as fh:
                self.runner.run(command, description="psql restore", stdin=fh)
        except CommandError as exc:
            raise DatabaseError(f"Database restore failed: {exc}") from exc


__all__ = ["DatabaseError", "PostgresContainer", "PURGE_SQL", "write_credentials_file"]
