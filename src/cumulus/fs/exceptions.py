"""Custom exception hierarchy for the Cumulus core.

Every exception carries a closed ``ErrorKind`` tag so boundary layers can
map failures to transport codes without inspecting messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Closed taxonomy of core failures."""

    INVALID_PATH = "invalid_path"
    DUPLICATE_ENTITY = "duplicate_entity"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    UNAUTHORIZED = "unauthorized"
    GONE = "gone"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    STORE = "store"
    BLOB = "blob"


_RETRYABLE = frozenset({ErrorKind.UNAUTHORIZED, ErrorKind.STORE, ErrorKind.BLOB})


class CumulusError(Exception):
    """Base exception for all Cumulus errors."""

    kind: ErrorKind = ErrorKind.STORE

    @property
    def retryable(self) -> bool:
        """True when the caller may retry (after prompting, or later)."""
        return self.kind in _RETRYABLE


class InvalidPathError(CumulusError):
    """Raised when a client-supplied path or name is malformed."""

    kind = ErrorKind.INVALID_PATH


class DuplicateEntityError(CumulusError):
    """Raised when an (owner, parent_path, name) triple is already taken."""

    kind = ErrorKind.DUPLICATE_ENTITY


class NotFoundError(CumulusError):
    """Raised when an entity or share link does not exist."""

    kind = ErrorKind.NOT_FOUND


class ForbiddenError(CumulusError):
    """Raised when the caller lacks permission or a link gate rejects them."""

    kind = ErrorKind.FORBIDDEN


class UnauthorizedError(CumulusError):
    """Raised when a link needs a password that was not supplied."""

    kind = ErrorKind.UNAUTHORIZED


class GoneError(CumulusError):
    """Raised when a link is revoked or expired. Never retry."""

    kind = ErrorKind.GONE


class ConflictError(CumulusError):
    """Raised when an operation collides with existing state."""

    kind = ErrorKind.CONFLICT


class ValidationError(CumulusError):
    """Raised on a malformed request (empty batch, bad options, etc.)."""

    kind = ErrorKind.VALIDATION


class StoreError(CumulusError):
    """Raised on record store failures (DB connection, constraint plumbing, etc.)."""

    kind = ErrorKind.STORE


class BlobError(CumulusError):
    """Raised on blob store failures (disk I/O, network, etc.)."""

    kind = ErrorKind.BLOB


class BlobNotFoundError(BlobError):
    """Raised when a blob key has no stored content."""
