"""Result and option types: EntityInfo, ShareLinkInfo, AccessResult, etc."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


class LinkState(str, Enum):
    """Lifecycle state of a share link, derived from its stored fields."""

    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class EncryptionInfo:
    """Opaque client-side encryption metadata. Never interpreted by the core."""

    type: str | None = None
    iv: str | None = None
    wrapped_key: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.type is None and self.iv is None and self.wrapped_key is None


@dataclass
class EntityInfo:
    """File/folder metadata."""

    id: str
    kind: str
    name: str
    parent_path: str
    owner_id: str
    original_name: str | None = None
    mime_type: str | None = None
    size_bytes: int = 0
    access_level: str = "private"
    encryption: EncryptionInfo = field(default_factory=EncryptionInfo)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ShareLinkInfo:
    """Share link metadata as returned to the link's creator."""

    token: str
    share_url: str
    entity_id: str
    scope: str
    state: LinkState
    allowed_users: list[str] = field(default_factory=list)
    allowed_emails: list[str] = field(default_factory=list)
    protected: bool = False
    expires_at: datetime | None = None
    max_access: int | None = None
    access_count: int = 0
    revoked_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class AccessResult:
    """A time-limited download handle plus display metadata."""

    download_url: str
    expires_in: int
    file: EntityInfo
    encryption: EncryptionInfo = field(default_factory=EncryptionInfo)
    access_count: int | None = None


@dataclass
class UnseenLink:
    """A restricted link naming a user that the user has not opened yet."""

    token: str
    file: EntityInfo
    created_by: str
    created_at: datetime | None = None
    expires_at: datetime | None = None


@dataclass
class ShareOptions:
    """Options accepted by ``ShareLinkService.create``."""

    scope: str = "public"
    allowed_emails: list[str] = field(default_factory=list)
    allowed_user_ids: list[str] = field(default_factory=list)
    password: str | None = None
    expires_in_seconds: int | None = None
    max_access: int | None = None


@dataclass
class UploadItem:
    """One already-validated file from the transport layer."""

    original_name: str
    data: bytes
    mime_type: str | None = None
    size_bytes: int | None = None
    relative_path: str | None = None


@dataclass
class UploadShareOptions:
    """Auto-share requested together with an upload."""

    share_type: str  # "public" | "private"
    emails: list[str] = field(default_factory=list)
    expiry: str | None = None  # "24h" | "7d" | "never"
    password: str | None = None


@dataclass
class UploadResult:
    """Result of an upload batch."""

    created: list[EntityInfo] = field(default_factory=list)
    share_link: ShareLinkInfo | None = None


@dataclass
class StorageUsage:
    """Sum-of-sizes report for one owner."""

    used_bytes: int
    limit_bytes: int
    file_count: int

    @property
    def percentage(self) -> float:
        if self.limit_bytes <= 0:
            return 0.0
        return round(self.used_bytes / self.limit_bytes * 100, 1)
