"""Entity and EntityGrant models — the virtual filesystem records.

Provides ``EntityBase`` and ``EntityGrantBase`` non-table base classes.
Subclass with ``table=True`` and a custom ``__tablename__`` to use a
different table name per deployment.  Concrete subclasses must carry the
same unique constraints as the defaults below, the services rely on them
for race-free inserts.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class EntityKind(str, Enum):
    """Tag of an entity record."""

    FILE = "file"
    FOLDER = "folder"


class AccessLevel(str, Enum):
    """Display hint only; authoritative access is computed per request."""

    PRIVATE = "private"
    SHARED = "shared"
    PUBLIC = "public"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class EntityBase(SQLModel):
    """Base fields for a file or folder. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    kind: str = Field(default=EntityKind.FILE.value)
    name: str = Field(default="")
    parent_path: str = Field(default="/", index=True)
    owner_id: str = Field(index=True)

    # File-only
    blob_key: str | None = Field(default=None, index=True)
    original_name: str | None = Field(default=None)
    mime_type: str | None = Field(default=None)
    size_bytes: int = Field(default=0)

    # Opaque client-side encryption metadata
    encryption_type: str | None = Field(default=None)
    encryption_iv: str | None = Field(default=None)
    encryption_wrapped_key: str | None = Field(default=None)

    access_level: str = Field(default=AccessLevel.PRIVATE.value)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )

    @property
    def is_folder(self) -> bool:
        return self.kind == EntityKind.FOLDER.value

    @property
    def dir_path(self) -> str:
        """Directory path this entity denotes when it is a folder (``/a/b/``)."""
        return f"{self.parent_path}{self.name}/"


class Entity(EntityBase, table=True):
    """Default entity table — ``entities``."""

    __tablename__ = "entities"
    __table_args__ = (
        UniqueConstraint("owner_id", "parent_path", "name", name="uq_entities_owner_path_name"),
    )


class EntityGrantBase(SQLModel):
    """Direct read grant of one entity to one user (the ``sharedWith`` set)."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    entity_id: str = Field(index=True)
    user_id: str = Field(index=True)
    granted_by: str = Field(default="")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class EntityGrant(EntityGrantBase, table=True):
    """Default grant table — ``entity_grants``."""

    __tablename__ = "entity_grants"
    __table_args__ = (
        UniqueConstraint("entity_id", "user_id", name="uq_entity_grants_entity_user"),
    )
