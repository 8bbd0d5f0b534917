"""Allow-list validation for values that end up on a command line or in SQL."""
from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

LOGGER = logging.getLogger(__name__)

DATABASE = "database"
CONTAINER = "container"

# PostgreSQL truncates identifiers longer than NAMEDATALEN - 1.
MAX_DATABASE_NAME_LENGTH = 63

_DATABASE_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
_CONTAINER_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_PREFIX_SEGMENT_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_SEPARATORS_RE = re.compile(r"[/\\]")

# Key namespaces that shadow AWS credential files in some bucket layouts.
RESERVED_PREFIX_SEGMENTS = (".aws", "aws")


class ValidationError(Exception):
    """Raised when a value fails an allow-list check."""


def validate_identifier(identifier: Optional[str], kind: str) -> Tuple[bool, Optional[str]]:
    """Check *identifier* against the policy for *kind*.

    Returns ``(True, None)`` when accepted, otherwise ``(False, reason)``.
    """

    if kind == DATABASE:
        if not identifier:
            return False, "database name is empty"
        if len(identifier) > MAX_DATABASE_NAME_LENGTH:
            return False, f"database name is longer than {MAX_DATABASE_NAME_LENGTH} characters"
        if not _DATABASE_NAME_RE.match(identifier):
            return False, (
                "database name must start with a letter and contain only letters, "
                "digits, '_' or '-'"
            )
        return True, None
    if kind == CONTAINER:
        if not identifier:
            return False, "container name is empty"
        if not _CONTAINER_NAME_RE.match(identifier):
            return False, "container name may contain only letters, digits, '.', '_' or '-'"
        return True, None
    raise ValueError(f"Unknown identifier kind: {kind!r}")


def require_identifier(identifier: Optional[str], kind: str) -> str:
    """Return *identifier* unchanged or raise :class:`ValidationError`."""

    accepted, reason = validate_identifier(identifier, kind)
    if not accepted:
        raise ValidationError(f"Invalid {kind} name {identifier!r}: {reason}.")
    return identifier  # type: ignore[return-value]


def sanitize_prefix(raw: Optional[str]) -> str:
    """Normalize a user supplied S3 key prefix.

    The value is split into segments on ``/`` and ``\\``; empty, ``.`` and
    ``..`` segments are dropped, so the result is always relative and never
    contains a traversal segment. Returns ``""`` when nothing is left.
    """

    if not raw:
        return ""
    cleaned = _CONTROL_CHARS_RE.sub("", raw)
    segments = [
        segment
        for segment in _SEPARATORS_RE.split(cleaned)
        if segment not in ("", ".", "..")
    ]
    if not segments:
        return ""
    if segments[0] in RESERVED_PREFIX_SEGMENTS:
        raise ValidationError(
            f"Prefix {raw!r} starts with the reserved segment '{segments[0]}'."
        )
    for segment in segments:
        if not _PREFIX_SEGMENT_RE.match(segment):
            raise ValidationError(
                f"Prefix {raw!r} contains invalid characters in segment {segment!r}; "
                "only letters, digits, '.', '_', '-' and '/' are allowed."
            )
    prefix = "/".join(segments)
    if prefix != raw:
        LOGGER.debug("Prefix %r normalized to %r.", raw, prefix)
    return prefix


def validate_s3_url(url: str) -> str:
    """Return *url* if it looks like ``s3://bucket/key``."""

    if not url or not url.startswith("s3://"):
        raise ValidationError(
            "Invalid S3 URL format. Expected: s3://bucket-name/path/to/archive.tar.gz"
        )
    bucket, _, key = url[len("s3://"):].partition("/")
    if not bucket or not key or key.rsplit("/", 1)[-1] in ("", ".", ".."):
        raise ValidationError(f"S3 URL {url!r} must name an object inside a bucket.")
    if _CONTROL_CHARS_RE.search(url):
        raise ValidationError("S3 URL must not contain control characters.")
    return url


__all__ = [
    "CONTAINER",
    "DATABASE",
    "MAX_DATABASE_NAME_LENGTH",
    "ValidationError",
    "require_identifier",
    "sanitize_prefix",
    "validate_identifier",
    "validate_s3_url",
]
