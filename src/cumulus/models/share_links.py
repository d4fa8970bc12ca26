"""ShareLink model — token-addressable access grants to a single file.

Provides the non-table ``*Base`` classes and the concrete ``ShareLink``,
``ShareLinkView`` and ``ShareLinkRecipient`` tables.  Revocation sets
``revoked_at``; only the expiry purge hard-deletes links.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class LinkScope(str, Enum):
    """Who may use a link besides holding its token."""

    PUBLIC = "public"
    RESTRICTED = "restricted"


class ShareLinkBase(SQLModel):
    """Base fields for a share link. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    token: str = Field(index=True, unique=True)
    entity_id: str = Field(index=True)
    created_by: str = Field(index=True)

    scope: str = Field(default=LinkScope.PUBLIC.value)
    allowed_users: list[str] = Field(default_factory=list, sa_type=JSON)
    allowed_emails: list[str] = Field(default_factory=list, sa_type=JSON)

    password_hash: str | None = Field(default=None)

    expires_at: datetime | None = Field(
        default=None,
        index=True,
        sa_type=DateTime(timezone=True),
    )
    max_access: int | None = Field(default=None)
    access_count: int = Field(default=0)
    revoked_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )

    # Snapshot of the file's encryption metadata at creation time
    encryption_type: str | None = Field(default=None)
    encryption_iv: str | None = Field(default=None)
    encryption_wrapped_key: str | None = Field(default=None)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class ShareLink(ShareLinkBase, table=True):
    """Default share link table — ``share_links``."""

    __tablename__ = "share_links"


class ShareLinkViewBase(SQLModel):
    """One authenticated user having successfully opened a link (``seenBy``)."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    link_id: str = Field(index=True)
    user_id: str = Field(index=True)
    seen_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class ShareLinkView(ShareLinkViewBase, table=True):
    """Default link view table — ``share_link_views``."""

    __tablename__ = "share_link_views"
    __table_args__ = (
        UniqueConstraint("link_id", "user_id", name="uq_share_link_views_link_user"),
    )


class RecipientKind(str, Enum):
    USER = "user"
    EMAIL = "email"


class ShareLinkRecipientBase(SQLModel):
    """One entry of a restricted link's allow-list, indexed for recipient lookups."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    link_id: str = Field(index=True)
    kind: str
    value: str = Field(index=True)


class ShareLinkRecipient(ShareLinkRecipientBase, table=True):
    """Default link recipient table — ``share_link_recipients``."""

    __tablename__ = "share_link_recipients"
    __table_args__ = (
        UniqueConstraint("link_id", "kind", "value", name="uq_share_link_recipients_link_kind_value"),
    )
