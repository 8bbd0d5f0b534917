"""Creation and guarded extraction of the ``tar.gz`` backup archives."""
from __future__ import annotations

import logging
import os
import re
import tarfile
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Iterable, List, Optional

from .utils import has_free_space

LOGGER = logging.getLogger(__name__)

MAX_MEMBER_DEPTH = 10
RESERVED_ROOTS = ("dev", "proc", "sys")
DUMP_FILE_PATTERN = "dump_*.sql"

_DUMP_FILE_RE = re.compile(r"^dump_.+\.sql$")
_SEPARATORS_RE = re.compile(r"[/\\]")
_DRIVE_RE = re.compile(r"^[A-Za-z]:")


class ArchiveError(Exception):
    """Raised when an archive is unreadable or fails the safety checks."""


def create_archive(source: Path, archive_path: Path) -> Path:
    """Compress the single file *source* into *archive_path* at its root."""

    source = Path(source)
    archive_path = Path(archive_path)
    with tarfile.open(archive_path, "w:gz") as archive:
        archive.add(source, arcname=source.name, recursive=False)
    LOGGER.info("Archive created: %s", archive_path)
    return archive_path


def member_path_problem(name: str) -> Optional[str]:
    """Return why the member path *name* is unsafe, or ``None`` when it is fine."""

    if not name:
        return "empty member name"
    if name.startswith(("/", "\\")) or _DRIVE_RE.match(name):
        return "absolute path"
    segments = [segment for segment in _SEPARATORS_RE.split(name) if segment]
    if ".." in segments:
        return "path traversal"
    if "\\" in name:
        return "backslash in member name"
    relative = [segment for segment in segments if segment != "."]
    if relative and relative[0] in RESERVED_ROOTS:
        return "system path"
    if len(segments) > MAX_MEMBER_DEPTH:
        return f"path deeper than {MAX_MEMBER_DEPTH} levels"
    return None


def check_member(member: tarfile.TarInfo) -> None:
    problem = member_path_problem(member.name)
    if problem is None and not (member.isfile() or member.isdir()):
        problem = "not a regular file or directory"
    if problem is not None:
        raise ArchiveError(f"Security violation in archive member {member.name!r}: {problem}.")


def _top_level_name(name: str) -> Optional[str]:
    for segment in name.split("/"):
        if segment and segment != ".":
            return segment
    return None


def _move_into_place(staging: Path, names: List[str], destination: Path) -> List[Path]:
    """Move every staged top-level entry into *destination*, or none of them."""

    moved: List[Path] = []
    try:
        for name in names:
            target = destination / name
            os.replace(staging / name, target)
            moved.append(target)
    except OSError as exc:
        for target in reversed(moved):
            try:
                os.replace(target, staging / target.name)
            except OSError as rollback_exc:
                LOGGER.error("Could not roll back extracted path %s: %s", target, rollback_exc)
        raise ArchiveError(f"Failed to move extracted files into {destination}: {exc}") from exc
    return moved


def _extraction_filter(member: tarfile.TarInfo, path: str) -> tarfile.TarInfo:
    # Stored ownership and permission bits are ignored; the process umask applies.
    member = tarfile.data_filter(member, path)
    return member.replace(mode=None, uid=None, gid=None, uname=None, gname=None, deep=False)


def safe_extract(archive_path: Path, destination: Path) -> List[Path]:
    """Extract *archive_path* into *destination* after checking every member.

    Nothing is written to *destination* unless the whole archive passes:
    members are unpacked into a staging directory first and moved into place
    only after extraction succeeded. Returns the extracted top-level paths.
    """

    archive_path = Path(archive_path)
    destination = Path(destination)
    if not archive_path.is_file() or not os.access(archive_path, os.R_OK):
        raise ArchiveError(f"Archive not found or not readable: {archive_path}")
    if not destination.is_dir():
        raise ArchiveError(f"Extraction directory does not exist: {destination}")

    try:
        tar = tarfile.open(archive_path, "r:gz")
    except (tarfile.TarError, OSError, EOFError) as exc:
        raise ArchiveError(f"Invalid or corrupted archive: {archive_path}") from exc

    with tar:
        members: List[tarfile.TarInfo] = []
        total_size = 0
        try:
            for member in tar:
                check_member(member)
                members.append(member)
                total_size += member.size
        except (tarfile.TarError, OSError, EOFError) as exc:
            raise ArchiveError(f"Invalid or corrupted archive: {archive_path}") from exc

        top_level = sorted({name for name in (_top_level_name(m.name) for m in members) if name})
        collisions = [name for name in top_level if (destination / name).exists()]
        if collisions:
            raise ArchiveError(
                f"Refusing to overwrite existing path(s) in {destination}: {', '.join(collisions)}"
            )
        if not has_free_space(total_size, destination):
            raise ArchiveError(f"Not enough free space in {destination} to extract {archive_path}.")

        with TemporaryDirectory(prefix=".extract-", dir=destination) as staging:
            try:
                tar.extractall(path=staging, members=members, filter=_extraction_filter)
            except (tarfile.TarError, OSError, EOFError) as exc:
                raise ArchiveError(f"Failed to extract {archive_path}: {exc}") from exc
            extracted = _move_into_place(Path(staging), top_level, destination)

    LOGGER.info("Extracted %d member(s) from %s into %s.", len(members), archive_path, destination)
    return extracted


def find_dump_file(paths: Iterable[Path]) -> Path:
    """Return the single non-empty ``dump_*.sql`` file among *paths*."""

    candidates = [Path(path) for path in paths]
    matches = [path for path in candidates if path.is_file() and _DUMP_FILE_RE.match(path.name)]
    if not matches:
        raise ArchiveError(f"No file matching '{DUMP_FILE_PATTERN}' found in the archive root.")
    if len(matches) > 1:
        names = ", ".join(sorted(path.name for path in matches))
        raise ArchiveError(f"Expected one file matching '{DUMP_FILE_PATTERN}', found: {names}")
    dump_file = matches[0]
    if dump_file.stat().st_size == 0:
        raise ArchiveError(f"Extracted dump file is empty: {dump_file}")
    return dump_file


__all__ = [
    "ArchiveError",
    "MAX_MEMBER_DEPTH",
    "check_member",
    "create_archive",
    "find_dump_file",
    "member_path_problem",
    "safe_extract",
]
