"""Cumulus: multi-tenant file storage with share links.

Per-owner folder trees, blob-backed files, and token-addressed share links
with expiry, access limits, passwords, and recipient restrictions.
"""

__version__ = "0.1.0"

from cumulus._cumulus import Cumulus
from cumulus.config import CumulusSettings
from cumulus.fs.access import Caller
from cumulus.fs.blobs import LocalDiskBlobStore
from cumulus.fs.exceptions import CumulusError, ErrorKind
from cumulus.fs.types import (
    AccessResult,
    EncryptionInfo,
    EntityInfo,
    LinkState,
    ShareLinkInfo,
    ShareOptions,
    StorageUsage,
    UnseenLink,
    UploadItem,
    UploadResult,
    UploadShareOptions,
)
from cumulus.fs.users import StaticUserDirectory

__all__ = [
    "AccessResult",
    "Caller",
    "Cumulus",
    "CumulusError",
    "CumulusSettings",
    "EncryptionInfo",
    "EntityInfo",
    "ErrorKind",
    "LinkState",
    "LocalDiskBlobStore",
    "ShareLinkInfo",
    "ShareOptions",
    "StaticUserDirectory",
    "StorageUsage",
    "UnseenLink",
    "UploadItem",
    "UploadResult",
    "UploadShareOptions",
    "__version__",
]
