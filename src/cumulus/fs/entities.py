"""EntityService — file/folder records, direct grants, listing, delete and move.

Stateless service that receives the concrete models at construction and
a session at call time.  Methods flush but never commit, except the
recursive delete cascade which commits after every file so a blob failure
part-way through never leaves a record pointing at a deleted blob.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, delete, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from cumulus.models.entities import AccessLevel, EntityKind

from .dialect import insert_if_absent
from .exceptions import (
    BlobNotFoundError,
    ConflictError,
    DuplicateEntityError,
    ValidationError,
)
from .types import EncryptionInfo, EntityInfo, StorageUsage
from .utils import join_dir, normalize_dir_path, validate_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from cumulus.models.entities import EntityBase, EntityGrantBase

    from .directories import DirectoryService
    from .protocol import BlobStore

logger = logging.getLogger(__name__)

ENTITY_KEY = ["owner_id", "parent_path", "name"]
GRANT_KEY = ["entity_id", "user_id"]


def _escape_like(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class EntityService:
    """Persistent records of files and folders plus their direct grants.

    Constructor receives the concrete entity and grant models so callers
    can use custom SQLModel subclasses with different table names.
    """

    def __init__(
        self,
        entity_model: type[EntityBase],
        grant_model: type[EntityGrantBase],
        directories: DirectoryService,
        dialect: str = "sqlite",
        schema: str | None = None,
    ) -> None:
        self._entity_model = entity_model
        self._grant_model = grant_model
        self._directories = directories
        self.dialect = dialect
        self.schema = schema

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_by_id(self, session: AsyncSession, entity_id: str) -> EntityBase | None:
        model = self._entity_model
        result = await session.execute(select(model).where(model.id == entity_id))
        return result.scalar_one_or_none()

    async def find_by_path(
        self,
        session: AsyncSession,
        owner_id: str,
        parent_path: str,
        name: str,
    ) -> EntityBase | None:
        """Exact lookup on the ``(owner_id, parent_path, name)`` key."""
        model = self._entity_model
        result = await session.execute(
            select(model).where(
                model.owner_id == owner_id,
                model.parent_path == normalize_dir_path(parent_path),
                model.name == name,
            )
        )
        return result.scalar_one_or_none()

    async def list_children(
        self,
        session: AsyncSession,
        owner_id: str,
        parent_path: str,
    ) -> list[EntityBase]:
        """Direct children of *parent_path*, folders first, then by name."""
        model = self._entity_model
        folders_first = case((model.kind == EntityKind.FOLDER.value, 0), else_=1)
        result = await session.execute(
            select(model)
            .where(
                model.owner_id == owner_id,
                model.parent_path == normalize_dir_path(parent_path),
            )
            .order_by(folders_first, model.name)
        )
        return list(result.scalars().all())

    async def list_owned(self, session: AsyncSession, owner_id: str) -> list[EntityBase]:
        """Every entity of *owner_id*, newest first."""
        model = self._entity_model
        result = await session.execute(
            select(model)
            .where(model.owner_id == owner_id)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def list_shared_with(self, session: AsyncSession, user_id: str) -> list[EntityBase]:
        """Entities directly granted to *user_id*, newest grant first."""
        model = self._entity_model
        grant = self._grant_model
        result = await session.execute(
            select(model)
            .join(grant, grant.entity_id == model.id)
            .where(grant.user_id == user_id)
            .order_by(grant.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def shared_with(self, session: AsyncSession, entity_id: str) -> set[str]:
        """User ids holding a direct grant on *entity_id*."""
        grant = self._grant_model
        result = await session.execute(
            select(grant.user_id).where(grant.entity_id == entity_id)
        )
        return set(result.scalars().all())

    async def has_children(self, session: AsyncSession, folder: EntityBase) -> bool:
        model = self._entity_model
        result = await session.execute(
            select(model.id)
            .where(
                model.owner_id == folder.owner_id,
                model.parent_path == folder.dir_path,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _descendants(self, session: AsyncSession, folder: EntityBase) -> list[EntityBase]:
        model = self._entity_model
        prefix = folder.dir_path
        result = await session.execute(
            select(model).where(
                model.owner_id == folder.owner_id,
                model.parent_path.like(_escape_like(prefix) + "%", escape="\\"),  # type: ignore[union-attr]
            )
        )
        return [e for e in result.scalars().all() if e.parent_path.startswith(prefix)]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_file(
        self,
        session: AsyncSession,
        *,
        owner_id: str,
        parent_path: str,
        name: str,
        blob_key: str,
        original_name: str | None = None,
        mime_type: str | None = None,
        size_bytes: int = 0,
        encryption: EncryptionInfo | None = None,
    ) -> EntityBase:
        """Insert a file record. The parent folders must already exist.

        Raises ``DuplicateEntityError`` when the unique key is taken.
        """
        name = validate_name(name)
        parent_path = normalize_dir_path(parent_path)
        encryption = encryption or EncryptionInfo()
        now = datetime.now(UTC)

        rowcount = await insert_if_absent(
            session,
            self.dialect,
            model=self._entity_model,
            values={
                "id": str(uuid.uuid4()),
                "kind": EntityKind.FILE.value,
                "name": name,
                "parent_path": parent_path,
                "owner_id": owner_id,
                "blob_key": blob_key,
                "original_name": original_name or name,
                "mime_type": mime_type,
                "size_bytes": size_bytes,
                "encryption_type": encryption.type,
                "encryption_iv": encryption.iv,
                "encryption_wrapped_key": encryption.wrapped_key,
                "access_level": AccessLevel.PRIVATE.value,
                "created_at": now,
                "updated_at": now,
            },
            conflict_keys=ENTITY_KEY,
            schema=self.schema,
        )
        if rowcount == 0:
            raise DuplicateEntityError(f"File already exists: {parent_path}{name}")

        entity = await self.find_by_path(session, owner_id, parent_path, name)
        assert entity is not None
        return entity

    async def create_folder(
        self,
        session: AsyncSession,
        owner_id: str,
        parent_path: str,
        name: str,
    ) -> EntityBase:
        return await self._directories.create_folder(session, owner_id, parent_path, name)

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    async def grant(
        self,
        session: AsyncSession,
        entity: EntityBase,
        user_id: str,
        granted_by: str,
    ) -> bool:
        """Add *user_id* to the entity's shared-with set. Returns False if already present."""
        if not user_id:
            raise ValidationError("Target user is required")
        if user_id == entity.owner_id:
            raise ValidationError("Cannot share an item with its owner")

        rowcount = await insert_if_absent(
            session,
            self.dialect,
            model=self._grant_model,
            values={
                "id": str(uuid.uuid4()),
                "entity_id": entity.id,
                "user_id": user_id,
                "granted_by": granted_by,
                "created_at": datetime.now(UTC),
            },
            conflict_keys=GRANT_KEY,
            schema=self.schema,
        )
        if entity.access_level == AccessLevel.PRIVATE.value:
            entity.access_level = AccessLevel.SHARED.value
            entity.updated_at = datetime.now(UTC)
            await session.flush()
        return rowcount > 0

    async def revoke_grant(
        self,
        session: AsyncSession,
        entity: EntityBase,
        user_id: str,
    ) -> bool:
        """Remove *user_id* from the shared-with set. Returns True if a grant was removed."""
        grant = self._grant_model
        result = await session.execute(
            delete(grant).where(
                grant.entity_id == entity.id,  # type: ignore[arg-type]
                grant.user_id == user_id,  # type: ignore[arg-type]
            )
        )
        removed = (result.rowcount or 0) > 0  # type: ignore[union-attr]

        if removed and entity.access_level == AccessLevel.SHARED.value:
            if not await self.shared_with(session, entity.id):
                entity.access_level = AccessLevel.PRIVATE.value
                entity.updated_at = datetime.now(UTC)
                await session.flush()
        return removed

    async def set_access_level(
        self,
        session: AsyncSession,
        entity: EntityBase,
        access_level: str,
    ) -> EntityBase:
        """Overwrite the display hint. Never consulted for authorization."""
        valid = {level.value for level in AccessLevel}
        if access_level not in valid:
            raise ValidationError(f"Invalid access level: {access_level!r}")
        entity.access_level = access_level
        entity.updated_at = datetime.now(UTC)
        await session.flush()
        return entity

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def blob_key_in_use(
        self,
        session: AsyncSession,
        blob_key: str,
        exclude_id: str | None = None,
    ) -> bool:
        """True if any entity other than *exclude_id* points at *blob_key*."""
        model = self._entity_model
        stmt = select(model.id).where(model.blob_key == blob_key)
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        result = await session.execute(stmt.limit(1))
        return result.scalar_one_or_none() is not None

    async def _delete_record(self, session: AsyncSession, entity: EntityBase) -> None:
        grant = self._grant_model
        await session.execute(delete(grant).where(grant.entity_id == entity.id))  # type: ignore[arg-type]
        await session.delete(entity)
        await session.flush()

    async def _delete_file(
        self,
        session: AsyncSession,
        entity: EntityBase,
        blob_store: BlobStore,
    ) -> None:
        # Blob first: a failure here leaves the record untouched.
        if entity.blob_key and not await self.blob_key_in_use(session, entity.blob_key, entity.id):
            try:
                await blob_store.delete(entity.blob_key)
            except BlobNotFoundError:
                logger.warning("Blob %s already missing, deleting record %s", entity.blob_key, entity.id)
        await self._delete_record(session, entity)

    async def delete(
        self,
        session: AsyncSession,
        entity: EntityBase,
        blob_store: BlobStore,
        *,
        recursive: bool = False,
    ) -> int:
        """Delete a file, or a folder and (with *recursive*) its contents.

        Returns the number of entity records removed.  A non-empty folder
        without *recursive* raises ``ConflictError``.  In a cascade each
        file is deleted and committed on its own; the first blob failure
        aborts and leaves the remaining records in place.
        """
        if not entity.is_folder:
            await self._delete_file(session, entity, blob_store)
            return 1

        descendants = await self._descendants(session, entity)
        if descendants and not recursive:
            raise ConflictError(f"Folder is not empty: {entity.dir_path}")

        removed = 0
        for child in (d for d in descendants if not d.is_folder):
            await self._delete_file(session, child, blob_store)
            await session.commit()
            removed += 1

        # Deepest folders first
        folders = sorted(
            (d for d in descendants if d.is_folder),
            key=lambda d: d.dir_path.count("/"),
            reverse=True,
        )
        for folder in folders:
            await self._delete_record(session, folder)
            removed += 1

        await self._delete_record(session, entity)
        logger.info("Deleted folder %s for %s (%d records)", entity.dir_path, entity.owner_id, removed + 1)
        return removed + 1

    # ------------------------------------------------------------------
    # Move / rename
    # ------------------------------------------------------------------

    async def move(
        self,
        session: AsyncSession,
        entity: EntityBase,
        new_parent_path: str,
        new_name: str | None = None,
    ) -> EntityBase:
        """Move and/or rename *entity* within its owner's tree.

        Folder moves rewrite the ``parent_path`` of every descendant.  Blob
        keys are left as they are; they are opaque once assigned.
        """
        new_parent_path = normalize_dir_path(new_parent_path)
        name = validate_name(new_name) if new_name else entity.name

        if new_parent_path == entity.parent_path and name == entity.name:
            return entity

        if entity.is_folder and new_parent_path.startswith(entity.dir_path):
            raise ConflictError(f"Cannot move a folder into itself: {entity.dir_path}")

        existing = await self.find_by_path(session, entity.owner_id, new_parent_path, name)
        if existing is not None:
            raise DuplicateEntityError(f"Destination already exists: {new_parent_path}{name}")

        await self._directories.ensure_folders(session, entity.owner_id, new_parent_path)

        now = datetime.now(UTC)
        if entity.is_folder:
            old_dir = entity.dir_path
            new_dir = join_dir(new_parent_path, name)
            for child in await self._descendants(session, entity):
                child.parent_path = new_dir + child.parent_path[len(old_dir):]
                child.updated_at = now

        entity.parent_path = new_parent_path
        entity.name = name
        entity.updated_at = now
        try:
            await session.flush()
        except IntegrityError as e:
            raise DuplicateEntityError(f"Destination already exists: {new_parent_path}{name}") from e
        return entity

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def storage_usage(
        self,
        session: AsyncSession,
        owner_id: str,
        limit_bytes: int,
    ) -> StorageUsage:
        """Sum of file sizes owned by *owner_id*. No quota is enforced here."""
        model = self._entity_model
        result = await session.execute(
            select(func.coalesce(func.sum(model.size_bytes), 0), func.count(model.id)).where(
                model.owner_id == owner_id,
                model.kind == EntityKind.FILE.value,
            )
        )
        used, count = result.one()
        return StorageUsage(used_bytes=int(used), limit_bytes=limit_bytes, file_count=int(count))

    @staticmethod
    def entity_to_info(e: EntityBase) -> EntityInfo:
        """Convert an entity record to EntityInfo."""
        return EntityInfo(
            id=e.id,
            kind=e.kind,
            name=e.name,
            parent_path=e.parent_path,
            owner_id=e.owner_id,
            original_name=e.original_name,
            mime_type=e.mime_type,
            size_bytes=e.size_bytes,
            access_level=e.access_level,
            encryption=EncryptionInfo(
                type=e.encryption_type,
                iv=e.encryption_iv,
                wrapped_key=e.encryption_wrapped_key,
            ),
            created_at=e.created_at,
            updated_at=e.updated_at,
        )
