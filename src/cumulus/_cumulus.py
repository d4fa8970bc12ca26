"""Cumulus — async facade wiring the storage services to one database and blob store."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cumulus.config import DEFAULT_SIGNING_SECRET, CumulusSettings
from cumulus.fs.access import Caller, require_read, require_write
from cumulus.fs.blobs import LocalDiskBlobStore
from cumulus.fs.dialect import get_dialect
from cumulus.fs.directories import DirectoryService
from cumulus.fs.entities import EntityService
from cumulus.fs.exceptions import (
    CumulusError,
    ForbiddenError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from cumulus.fs.share_links import ShareLinkService
from cumulus.fs.types import AccessResult, ShareOptions
from cumulus.fs.uploads import UploadService
from cumulus.fs.utils import normalize_dir_path, short_token
from cumulus.models.entities import Entity, EntityGrant
from cumulus.models.share_links import ShareLink, ShareLinkRecipient, ShareLinkView

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from cumulus.fs.protocol import BlobStore, UserDirectory
    from cumulus.fs.types import (
        EncryptionInfo,
        EntityInfo,
        ShareLinkInfo,
        StorageUsage,
        UnseenLink,
        UploadItem,
        UploadResult,
        UploadShareOptions,
    )
    from cumulus.models.entities import EntityBase, EntityGrantBase
    from cumulus.models.share_links import ShareLinkBase, ShareLinkRecipientBase, ShareLinkViewBase

logger = logging.getLogger(__name__)


class Cumulus:
    """Async facade over entities, share links, and uploads.

    Every public method runs in its own session and commits on success::

        engine = create_async_engine("sqlite+aiosqlite:///cumulus.db")
        blobs = LocalDiskBlobStore("/srv/blobs", secret="...")
        cumulus = Cumulus(engine, blobs)
        await cumulus.create_tables()
        result = await cumulus.upload(caller, [UploadItem("a.txt", b"hi")])

    Failures roll the session back.  Database errors surface as
    ``StoreError``; all other errors are ``CumulusError`` subclasses.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        blob_store: BlobStore,
        *,
        settings: CumulusSettings | None = None,
        user_directory: UserDirectory | None = None,
        clock: Callable[[], datetime] | None = None,
        entity_model: type[EntityBase] | None = None,
        grant_model: type[EntityGrantBase] | None = None,
        link_model: type[ShareLinkBase] | None = None,
        view_model: type[ShareLinkViewBase] | None = None,
        recipient_model: type[ShareLinkRecipientBase] | None = None,
    ) -> None:
        self._engine = engine
        self._blob_store = blob_store
        self._settings = settings or CumulusSettings()
        self._users = user_directory
        self._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

        self._entity_model = entity_model or Entity
        self._grant_model = grant_model or EntityGrant
        self._link_model = link_model or ShareLink
        self._view_model = view_model or ShareLinkView
        self._recipient_model = recipient_model or ShareLinkRecipient

        dialect = get_dialect(engine)
        schema = self._settings.db_schema
        self.directories = DirectoryService(self._entity_model, dialect, schema)
        self.entities = EntityService(
            self._entity_model, self._grant_model, self.directories, dialect, schema
        )
        self.share_links = ShareLinkService(
            self._link_model,
            self._view_model,
            self._recipient_model,
            self.entities,
            blob_store,
            base_url=self._settings.link_base_url,
            share_path=self._settings.share_path,
            signed_url_ttl=self._settings.signed_url_ttl,
            bcrypt_rounds=self._settings.bcrypt_rounds,
            enforce_scope_on_claim=self._settings.enforce_scope_on_claim,
            clock=clock,
            dialect=dialect,
            schema=schema,
        )
        self.uploads = UploadService(
            self.entities, self.directories, self.share_links, blob_store, user_directory
        )

    @classmethod
    def from_settings(
        cls,
        settings: CumulusSettings | None = None,
        *,
        user_directory: UserDirectory | None = None,
    ) -> Cumulus:
        """Build an engine and a ``LocalDiskBlobStore`` from *settings*."""
        settings = settings or CumulusSettings()
        if settings.signing_secret == DEFAULT_SIGNING_SECRET:
            logger.warning(
                "Using the default signing secret; blob URLs can be forged. Set CUMULUS_SIGNING_SECRET."
            )
        engine = create_async_engine(settings.database_url)
        blob_store = LocalDiskBlobStore(
            settings.blob_root,
            secret=settings.signing_secret,
            base_url=settings.public_base_url,
            url_path=settings.blob_url_path,
        )
        return cls(engine, blob_store, settings=settings, user_directory=user_directory)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_tables(self) -> None:
        """Create the entity, grant and share link tables if missing."""
        models = (
            self._entity_model,
            self._grant_model,
            self._link_model,
            self._view_model,
            self._recipient_model,
        )
        async with self._engine.begin() as conn:
            for model in models:
                await conn.run_sync(
                    lambda c, m=model: m.__table__.create(c, checkfirst=True)  # type: ignore[attr-defined]
                )

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except CumulusError:
            await session.rollback()
            raise
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("Database error: %s", e)
            raise StoreError(f"Database error: {e}") from e
        finally:
            await session.close()

    @property
    def settings(self) -> CumulusSettings:
        return self._settings

    @property
    def blob_store(self) -> BlobStore:
        return self._blob_store

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_caller(caller: Caller) -> str:
        if not caller.is_authenticated:
            raise ForbiddenError("Authentication required")
        assert caller.id is not None
        return caller.id

    async def _entity(self, session: AsyncSession, entity_id: str) -> EntityBase:
        entity = await self.entities.get_by_id(session, entity_id)
        if entity is None:
            raise NotFoundError("File not found")
        return entity

    async def _resolve_target(self, user_id: str | None, email: str | None) -> str:
        if user_id:
            if self._users is not None and not await self._users.exists(user_id):
                raise NotFoundError("User not found")
            return user_id
        if email:
            if self._users is None:
                raise ValidationError("Sharing by email needs a user directory")
            found = await self._users.find_id_by_email(email)
            if found is None:
                raise NotFoundError("User not found")
            return found
        raise ValidationError("targetUserId or targetEmail is required")

    # ------------------------------------------------------------------
    # Files and folders
    # ------------------------------------------------------------------

    async def upload(
        self,
        caller: Caller,
        items: Sequence[UploadItem],
        *,
        relative_paths: Sequence[str] | None = None,
        parent_path: str | None = "/",
        share: UploadShareOptions | None = None,
        encryption: EncryptionInfo | None = None,
    ) -> UploadResult:
        owner_id = self._require_caller(caller)
        async with self._session() as session:
            return await self.uploads.upload_batch(
                session,
                owner_id,
                items,
                relative_paths=relative_paths,
                parent_path=parent_path,
                share=share,
                encryption=encryption,
            )

    async def list_dir(self, caller: Caller, path: str | None = "/") -> list[EntityInfo]:
        """Direct children of *path* in the caller's tree, folders first."""
        owner_id = self._require_caller(caller)
        async with self._session() as session:
            children = await self.entities.list_children(session, owner_id, normalize_dir_path(path))
            return [self.entities.entity_to_info(e) for e in children]

    async def list_files(self, caller: Caller) -> list[EntityInfo]:
        owner_id = self._require_caller(caller)
        async with self._session() as session:
            owned = await self.entities.list_owned(session, owner_id)
            return [self.entities.entity_to_info(e) for e in owned]

    async def get_entity(self, caller: Caller, entity_id: str) -> EntityInfo:
        async with self._session() as session:
            entity = await self._entity(session, entity_id)
            require_read(entity, caller, await self.entities.shared_with(session, entity.id))
            return self.entities.entity_to_info(entity)

    async def create_folder(self, caller: Caller, parent_path: str | None, name: str) -> EntityInfo:
        owner_id = self._require_caller(caller)
        async with self._session() as session:
            folder = await self.entities.create_folder(
                session, owner_id, normalize_dir_path(parent_path), name
            )
            return self.entities.entity_to_info(folder)

    async def move(
        self,
        caller: Caller,
        entity_id: str,
        new_parent_path: str | None,
        new_name: str | None = None,
    ) -> EntityInfo:
        async with self._session() as session:
            entity = await self._entity(session, entity_id)
            require_write(entity, caller)
            moved = await self.entities.move(session, entity, normalize_dir_path(new_parent_path), new_name)
            return self.entities.entity_to_info(moved)

    async def delete(self, caller: Caller, entity_id: str, *, recursive: bool = False) -> int:
        """Delete an entity. Returns the number of records removed."""
        async with self._session() as session:
            entity = await self._entity(session, entity_id)
            require_write(entity, caller)
            return await self.entities.delete(session, entity, self._blob_store, recursive=recursive)

    async def download(self, caller: Caller, entity_id: str) -> AccessResult:
        """Signed download URL for an owned or directly shared file."""
        async with self._session() as session:
            entity = await self._entity(session, entity_id)
            require_read(entity, caller, await self.entities.shared_with(session, entity.id))
            if entity.is_folder or not entity.blob_key:
                raise ValidationError("Folders cannot be downloaded")
            ttl = self._settings.signed_url_ttl
            info = self.entities.entity_to_info(entity)
            url = await self._blob_store.signed_get_url(entity.blob_key, ttl)
            return AccessResult(download_url=url, expires_in=ttl, file=info, encryption=info.encryption)

    async def preview(self, caller: Caller, entity_id: str) -> str:
        """Signed URL of an image the caller owns. Other MIME types are rejected."""
        async with self._session() as session:
            entity = await self._entity(session, entity_id)
            require_write(entity, caller)
            if entity.is_folder or not entity.blob_key:
                raise ValidationError("Folders cannot be previewed")
            if not (entity.mime_type or "").startswith("image/"):
                raise ValidationError("File is not an image")
            return await self._blob_store.signed_get_url(entity.blob_key, self._settings.preview_url_ttl)

    async def set_access_level(self, caller: Caller, entity_id: str, access_level: str) -> EntityInfo:
        async with self._session() as session:
            entity = await self._entity(session, entity_id)
            require_write(entity, caller)
            await self.entities.set_access_level(session, entity, access_level)
            return self.entities.entity_to_info(entity)

    async def storage_usage(self, caller: Caller) -> StorageUsage:
        owner_id = self._require_caller(caller)
        async with self._session() as session:
            return await self.entities.storage_usage(
                session, owner_id, self._settings.storage_limit_bytes
            )

    # ------------------------------------------------------------------
    # Direct sharing
    # ------------------------------------------------------------------

    async def share_with(
        self,
        caller: Caller,
        entity_id: str,
        *,
        user_id: str | None = None,
        email: str | None = None,
    ) -> bool:
        """Grant read access to a registered user. Returns False if already granted."""
        target = await self._resolve_target(user_id, email)
        async with self._session() as session:
            entity = await self._entity(session, entity_id)
            require_write(entity, caller)
            return await self.entities.grant(session, entity, target, granted_by=caller.id or "")

    async def unshare_with(
        self,
        caller: Caller,
        entity_id: str,
        *,
        user_id: str | None = None,
        email: str | None = None,
    ) -> bool:
        target = await self._resolve_target(user_id, email)
        async with self._session() as session:
            entity = await self._entity(session, entity_id)
            require_write(entity, caller)
            return await self.entities.revoke_grant(session, entity, target)

    async def shared_with_me(self, caller: Caller) -> list[EntityInfo]:
        user_id = self._require_caller(caller)
        async with self._session() as session:
            shared = await self.entities.list_shared_with(session, user_id)
            return [self.entities.entity_to_info(e) for e in shared]

    # ------------------------------------------------------------------
    # Share links
    # ------------------------------------------------------------------

    async def create_share_link(
        self,
        caller: Caller,
        entity_id: str,
        options: ShareOptions | None = None,
    ) -> ShareLinkInfo:
        async with self._session() as session:
            return await self.share_links.create(session, entity_id, caller, options or ShareOptions())

    async def access_share_link(
        self,
        token: str,
        password: str | None = None,
        caller: Caller | None = None,
    ) -> AccessResult:
        try:
            async with self._session() as session:
                return await self.share_links.access(session, token, password, caller)
        except CumulusError as e:
            logger.info("Link %s rejected: %s", short_token(token), e.kind.value)
            raise

    async def revoke_share_link(self, caller: Caller, token: str) -> ShareLinkInfo:
        async with self._session() as session:
            return await self.share_links.revoke(session, token, caller)

    async def add_to_account(
        self,
        caller: Caller,
        token: str,
        password: str | None = None,
    ) -> EntityInfo:
        async with self._session() as session:
            copy = await self.share_links.add_to_account(session, token, caller, password)
            return self.entities.entity_to_info(copy)

    async def unseen_share_links(self, caller: Caller) -> list[UnseenLink]:
        self._require_caller(caller)
        async with self._session() as session:
            return await self.share_links.list_unseen(session, caller)

    async def list_share_links(self, caller: Caller, entity_id: str) -> list[ShareLinkInfo]:
        async with self._session() as session:
            return await self.share_links.list_for_entity(session, entity_id, caller)

    async def purge_expired_links(self, older_than: datetime | None = None) -> int:
        async with self._session() as session:
            return await self.share_links.purge_expired(session, older_than)
