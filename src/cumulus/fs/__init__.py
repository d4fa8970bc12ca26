"""Storage core — paths, entities, share links, uploads, blob storage."""

from cumulus.fs.access import Caller, can_read, can_write
from cumulus.fs.blobs import LocalDiskBlobStore
from cumulus.fs.directories import DirectoryService
from cumulus.fs.entities import EntityService
from cumulus.fs.exceptions import (
    BlobError,
    BlobNotFoundError,
    ConflictError,
    CumulusError,
    DuplicateEntityError,
    ErrorKind,
    ForbiddenError,
    GoneError,
    InvalidPathError,
    NotFoundError,
    StoreError,
    UnauthorizedError,
    ValidationError,
)
from cumulus.fs.protocol import BlobStore, IdentityResolver, UserDirectory
from cumulus.fs.share_links import ShareLinkService, link_state
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
from cumulus.fs.uploads import UploadService
from cumulus.fs.users import StaticUserDirectory

__all__ = [
    "AccessResult",
    "BlobError",
    "BlobNotFoundError",
    "BlobStore",
    "Caller",
    "ConflictError",
    "CumulusError",
    "DirectoryService",
    "DuplicateEntityError",
    "EncryptionInfo",
    "EntityInfo",
    "EntityService",
    "ErrorKind",
    "ForbiddenError",
    "GoneError",
    "IdentityResolver",
    "InvalidPathError",
    "LinkState",
    "LocalDiskBlobStore",
    "NotFoundError",
    "ShareLinkInfo",
    "ShareLinkService",
    "ShareOptions",
    "StaticUserDirectory",
    "StorageUsage",
    "StoreError",
    "UnauthorizedError",
    "UnseenLink",
    "UploadItem",
    "UploadResult",
    "UploadService",
    "UploadShareOptions",
    "UserDirectory",
    "ValidationError",
    "can_read",
    "can_write",
    "link_state",
]
