"""Path utilities — relative path normalization, blob keys, expiry parsing.

Everything here is pure: no I/O, no session.
"""

from __future__ import annotations

import mimetypes
import re
import uuid
from datetime import UTC, datetime, timedelta

from .exceptions import InvalidPathError

MAX_PATH_LENGTH = 4096
MAX_NAME_LENGTH = 255

_REPEATED_SLASHES = re.compile(r"/{2,}")
_EXPIRY_RE = re.compile(r"^\s*(\d+)\s*([hd])\s*$")


# =============================================================================
# Validation
# =============================================================================


def _check_characters(value: str) -> None:
    """Reject null bytes, control characters, and overlong input."""
    if "\x00" in value:
        raise InvalidPathError("Path contains null bytes")

    for ch in value:
        code = ord(ch)
        if 0x01 <= code <= 0x1F:
            raise InvalidPathError(f"Path contains control character: 0x{code:02x}")

    if len(value) > MAX_PATH_LENGTH:
        raise InvalidPathError(f"Path too long (max {MAX_PATH_LENGTH} characters)")


def _check_segment(segment: str) -> None:
    if segment in (".", ".."):
        raise InvalidPathError(f"Relative segment not allowed: {segment!r}")
    if len(segment) > MAX_NAME_LENGTH:
        raise InvalidPathError(f"Name too long (max {MAX_NAME_LENGTH} characters)")


def _segments(value: str) -> list[str]:
    segments = [s for s in value.split("/") if s]
    for segment in segments:
        _check_segment(segment)
    return segments


def validate_name(name: str) -> str:
    """Validate a single base name (folder or file) and return it stripped."""
    if name is None:
        raise InvalidPathError("Name is required")
    name = name.strip()
    if not name:
        raise InvalidPathError("Name is required")
    _check_characters(name)
    if "/" in name or "\\" in name:
        raise InvalidPathError(f"Name must not contain path separators: {name!r}")
    _check_segment(name)
    return name


# =============================================================================
# Path Utilities
# =============================================================================


def normalize_relative_path(raw: str) -> tuple[str, str]:
    """Split a client-supplied relative path into ``(parent_path, base_name)``.

    - Strips leading slashes, converts backslashes to forward slashes
    - Collapses repeated slashes
    - Rejects ``.`` and ``..`` segments outright

    Examples:
        normalize_relative_path("report.pdf") -> ("/", "report.pdf")
        normalize_relative_path("/Docs/2024/a.txt") -> ("/Docs/2024/", "a.txt")
        normalize_relative_path("Docs\\a.txt") -> ("/Docs/", "a.txt")
        normalize_relative_path("Docs/") -> InvalidPathError
    """
    if raw is None:
        raise InvalidPathError("Path is required")

    _check_characters(raw)
    path = raw.strip().replace("\\", "/").lstrip("/")

    if not path or path.endswith("/"):
        raise InvalidPathError(f"Path has no file name: {raw!r}")

    segments = _segments(path)
    if len(segments) == 1:
        return "/", segments[0]
    return "/" + "/".join(segments[:-1]) + "/", segments[-1]


def normalize_dir_path(raw: str | None) -> str:
    """Normalize a directory path to ``/`` or ``/seg1/seg2/``.

    Examples:
        normalize_dir_path("") -> "/"
        normalize_dir_path("Docs/2024") -> "/Docs/2024/"
        normalize_dir_path("/Docs//2024/") -> "/Docs/2024/"
    """
    if not raw:
        return "/"

    _check_characters(raw)
    segments = _segments(raw.strip().replace("\\", "/"))
    if not segments:
        return "/"
    return "/" + "/".join(segments) + "/"


def join_dir(parent_path: str, name: str) -> str:
    """Directory path of folder *name* inside *parent_path*."""
    return f"{parent_path}{name}/"


def split_dir(dir_path: str) -> tuple[str, str]:
    """Split a normalized directory path into ``(parent_path, name)``.

    Examples:
        split_dir("/a/b/") -> ("/a/", "b")
        split_dir("/a/") -> ("/", "a")
        split_dir("/") -> ("/", "")
    """
    if dir_path == "/":
        return "/", ""
    segments = dir_path.strip("/").split("/")
    parent = "/" + "/".join(segments[:-1]) + "/" if len(segments) > 1 else "/"
    return parent, segments[-1]


def iter_dir_prefixes(dir_path: str) -> list[tuple[str, str]]:
    """Return ``(parent_path, name)`` for every folder on the way to *dir_path*.

    Examples:
        iter_dir_prefixes("/A/B/") -> [("/", "A"), ("/A/", "B")]
        iter_dir_prefixes("/") -> []
    """
    prefixes: list[tuple[str, str]] = []
    acc = "/"
    for name in dir_path.split("/"):
        if not name:
            continue
        prefixes.append((acc, name))
        acc = join_dir(acc, name)
    return prefixes


def blob_key_for(owner_id: str, parent_path: str, base_name: str) -> str:
    """Deterministic blob key for a file: ``{owner}{parent_path}{name}``.

    Runs of slashes are collapsed and the leading slash is stripped.  The
    owner id may not contain ``/`` so distinct triples never share a key.
    """
    if not owner_id or "/" in owner_id:
        raise InvalidPathError(f"Invalid owner id for blob key: {owner_id!r}")
    base_name = validate_name(base_name)
    key = _REPEATED_SLASHES.sub("/", f"{owner_id}{normalize_dir_path(parent_path)}{base_name}")
    return key[1:] if key.startswith("/") else key


def revision_blob_key(blob_key: str) -> str:
    """A fresh sibling of *blob_key* for when the plain key is still referenced.

    Examples:
        revision_blob_key("u1/a.txt") -> "u1/a.txt~3f9c0a1b2d4e"
    """
    return f"{blob_key}~{uuid.uuid4().hex[:12]}"


# =============================================================================
# Misc
# =============================================================================


def parse_expiry(expiry: str | None) -> timedelta | None:
    """Turn an upload expiry option (``"24h"``, ``"7d"``, ``"never"``) into a duration.

    Unknown formats mean "never", matching the upload form's behavior.
    """
    if not expiry or expiry == "never":
        return None
    match = _EXPIRY_RE.match(expiry)
    if match is None:
        return None
    amount, unit = int(match.group(1)), match.group(2)
    return timedelta(hours=amount) if unit == "h" else timedelta(days=amount)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def guess_mime_type(filename: str) -> str:
    """Guess the MIME type of a file based on its name."""
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or "application/octet-stream"


def short_token(token: str) -> str:
    """Log-safe prefix of a share token."""
    return f"{token[:8]}…" if len(token) > 8 else token
