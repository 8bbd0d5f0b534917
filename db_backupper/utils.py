"""Helper utilities for the PostgreSQL backup tool."""
from __future__ import annotations

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

LOGGER = logging.getLogger(__name__)

# Directories that are usually missing from PATH when running under cron.
CRON_PATH_DIRECTORIES = (
    "/usr/local/bin",
    "/usr/bin",
    "/bin",
    "/usr/local/sbin",
    "/usr/sbin",
    "/sbin",
)


def timestamp_for_filename(dt: Optional[datetime] = None) -> str:
    dt = dt or datetime.now()
    return dt.strftime("%Y%m%d_%H%M%S")


def mask_sensitive(value: str, secrets: Iterable[Optional[str]]) -> str:
    """Replace occurrences of secret values in *value* with '***'."""

    masked = value
    for secret in secrets:
        if secret:
            masked = masked.replace(secret, "***")
    return masked


def has_free_space(required_bytes: int, directory: Path) -> bool:
    """Return ``True`` when *directory* has at least *required_bytes* free."""

    available = shutil.disk_usage(directory).free
    if available < required_bytes:
        LOGGER.error(
            "Insufficient disk space in '%s'. Required: %d bytes, available: %d bytes.",
            directory,
            required_bytes,
            available,
        )
        return False
    LOGGER.debug("Disk space check passed for '%s': %d bytes available.", directory, available)
    return True


def setup_path(environ: Optional[dict] = None) -> str:
    """Prepend common binary directories to ``PATH`` for cron environments.

    The user's ``~/.local/bin`` and ``/snap/bin`` are added when they exist.
    Returns the new ``PATH`` value.
    """

    env = os.environ if environ is None else environ
    current = [item for item in env.get("PATH", "").split(os.pathsep) if item]
    extra = list(CRON_PATH_DIRECTORIES)
    local_bin = Path.home() / ".local" / "bin"
    if local_bin.is_dir():
        extra.insert(0, str(local_bin))
    if Path("/snap/bin").is_dir():
        extra.insert(0, "/snap/bin")
    combined = []
    for item in extra + current:
        if item not in combined:
            combined.append(item)
    env["PATH"] = os.pathsep.join(combined)
    return env["PATH"]


__all__ = [
    "timestamp_for_filename",
    "mask_sensitive",
    "has_free_space",
    "setup_path",
]
