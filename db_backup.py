"""Command line interface for the PostgreSQL-to-S3 backup tool."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from db_backupper import __version__
from db_backupper.backup import BackupError, BackupRunner
from db_backupper.commands import CommandError, CommandRunner, require_commands
from db_backupper.config import (
    BackupConfig,
    ConfigError,
    find_config_file,
    load_config,
    parse_postgres_uri,
    render_config,
)
from db_backupper.restore import RestoreError, RestoreRunner
from db_backupper.utils import setup_path
from db_backupper.validation import CONTAINER, ValidationError, require_identifier, sanitize_prefix

ACTION_ERRORS = (BackupError, RestoreError, CommandError, ConfigError, ValidationError)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-backupper",
        description="Back up a PostgreSQL database running in Docker to S3 and restore it.",
    )
    parser.add_argument(
        "--config",
        help="Path to backup.conf (default: ./backup.conf, ~/.config/db-backupper/backup.conf, "
        "/etc/db-backupper/backup.conf).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds after which an external command is terminated.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase logging verbosity.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command")

    parser_backup = subparsers.add_parser("backup", help="Dump the database, compress it and upload it to S3.")
    parser_backup.add_argument("--prefix", help="Key segment placed before the archive name, e.g. 'daily'.")

    parser_download = subparsers.add_parser("download", help="Download an archive from S3 and extract the dump.")
    parser_download.add_argument("url", help="s3://bucket/path/to/archive.tar.gz")
    parser_download.add_argument("output_dir", nargs="?", help="Directory for the dump (default: current directory).")

    parser_restore = subparsers.add_parser("restore", help="Restore the database from a SQL dump file.")
    parser_restore.add_argument("dump_path", help="Path to the dump_*.sql file.")
    purge_group = parser_restore.add_mutually_exclusive_group()
    purge_group.add_argument(
        "--purge", dest="purge", action="store_const", const=True, help="Drop and recreate the database first."
    )
    purge_group.add_argument(
        "--no-purge", dest="purge", action="store_const", const=False, help="Restore into the existing database."
    )

    parser_legacy = subparsers.add_parser(
        "restore-legacy", help="Download and restore in one step (deprecated)."
    )
    parser_legacy.add_argument("url", help="s3://bucket/path/to/archive.tar.gz")

    subparsers.add_parser("show-config", help="Print the loaded configuration with secrets hidden.")
    subparsers.add_parser("help", help="Show this help message.")

    return parser


def configure_logging(level: int) -> None:
    log_level = logging.DEBUG if level >= 1 else logging.INFO
    logging.basicConfig(level=log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def load_application_config(path: Optional[str]) -> BackupConfig:
    try:
        config_path = Path(path) if path else find_config_file()
        return load_config(config_path)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)


def check_action_config(config: BackupConfig) -> None:
    """Reject unsafe connection, container and path values before any tool is looked up."""

    try:
        parse_postgres_uri(config.postgres_uri)
        require_identifier(config.docker_container_name, CONTAINER)
        sanitize_prefix(config.s3_backup_path)
    except (ConfigError, ValidationError) as exc:
        fail(str(exc))


def handle_backup(args: argparse.Namespace, config: BackupConfig, runner: CommandRunner) -> None:
    try:
        require_commands("docker", "aws")
        url = BackupRunner(config=config, runner=runner).backup(prefix=args.prefix)
    except ACTION_ERRORS as exc:
        fail(str(exc))
    else:
        print(url)


def handle_download(args: argparse.Namespace, config: BackupConfig, runner: CommandRunner) -> None:
    output_dir = Path(args.output_dir) if args.output_dir else None
    try:
        require_commands("aws")
        dump_path = RestoreRunner(config=config, runner=runner).download(args.url, output_dir)
    except ACTION_ERRORS as exc:
        fail(str(exc))
    else:
        print(dump_path)


def handle_restore(args: argparse.Namespace, config: BackupConfig, runner: CommandRunner) -> None:
    try:
        require_commands("docker")
        RestoreRunner(config=config, runner=runner).restore(Path(args.dump_path), purge=args.purge)
    except ACTION_ERRORS as exc:
        fail(str(exc))
    except (KeyboardInterrupt, EOFError):
        fail("Restore cancelled by user.")


def handle_restore_legacy(args: argparse.Namespace, config: BackupConfig, runner: CommandRunner) -> None:
    try:
        require_commands("docker", "aws")
        RestoreRunner(config=config, runner=runner).restore_legacy(args.url)
    except ACTION_ERRORS as exc:
        fail(str(exc))


HANDLERS = {
    "backup": handle_backup,
    "download": handle_download,
    "restore": handle_restore,
    "restore-legacy": handle_restore_legacy,
}


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)
    if args.command == "help":
        parser.print_help()
        return

    configure_logging(args.verbose)
    setup_path()
    config = load_application_config(args.config)

    if args.command == "show-config":
        print(render_config(config), end="")
        return

    check_action_config(config)
    runner = CommandRunner(timeout=args.timeout)
    HANDLERS[args.command](args, config, runner)


if __name__ == "__main__":
    main()
