"""UploadService — batch upload with folder materialization and optional auto-share."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cumulus.models.share_links import LinkScope

from .access import Caller
from .exceptions import DuplicateEntityError, ValidationError
from .share_links import normalize_emails
from .types import EncryptionInfo, EntityInfo, ShareLinkInfo, ShareOptions, UploadResult
from .utils import (
    blob_key_for,
    guess_mime_type,
    normalize_dir_path,
    normalize_relative_path,
    parse_expiry,
    revision_blob_key,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from .directories import DirectoryService
    from .entities import EntityService
    from .protocol import BlobStore, UserDirectory
    from .share_links import ShareLinkService
    from .types import UploadItem, UploadShareOptions

logger = logging.getLogger(__name__)

SHARE_TYPES = ("public", "private")


@dataclass
class _PlannedFile:
    item: UploadItem
    parent_path: str
    name: str
    blob_key: str
    mime_type: str


class UploadService:
    """Turns a batch of uploaded files into folders, blobs, and file records.

    Every path in the batch is validated before any I/O.  Items are then
    processed in order and committed one by one: a failure part-way
    through keeps the files already written and reports the error.
    """

    def __init__(
        self,
        entities: EntityService,
        directories: DirectoryService,
        share_links: ShareLinkService,
        blob_store: BlobStore,
        user_directory: UserDirectory | None = None,
    ) -> None:
        self._entities = entities
        self._directories = directories
        self._share_links = share_links
        self._blob_store = blob_store
        self._users = user_directory

    def _relative_path(
        self,
        item: UploadItem,
        index: int,
        relative_paths: Sequence[str] | None,
        parent_path: str,
    ) -> str:
        rel = ""
        if relative_paths:
            rel = relative_paths[index] or ""
        rel = rel or item.relative_path or item.original_name or ""
        rel = rel.replace("\\", "/")
        # Relative entries land under the target folder; absolute ones are kept as given.
        if parent_path != "/" and not rel.startswith("/"):
            rel = parent_path + rel
        return rel

    def _plan(
        self,
        owner_id: str,
        items: Sequence[UploadItem],
        relative_paths: Sequence[str] | None,
        parent_path: str,
    ) -> list[_PlannedFile]:
        planned: list[_PlannedFile] = []
        seen: set[tuple[str, str]] = set()
        for index, item in enumerate(items):
            rel = self._relative_path(item, index, relative_paths, parent_path)
            dir_path, name = normalize_relative_path(rel)
            if (dir_path, name) in seen:
                raise ValidationError(f"Duplicate path in upload: {dir_path}{name}")
            seen.add((dir_path, name))
            planned.append(
                _PlannedFile(
                    item=item,
                    parent_path=dir_path,
                    name=name,
                    blob_key=blob_key_for(owner_id, dir_path, name),
                    mime_type=item.mime_type or guess_mime_type(name),
                )
            )
        return planned

    @staticmethod
    def _check_share(share: UploadShareOptions | None) -> None:
        if share is None:
            return
        if share.share_type not in SHARE_TYPES:
            raise ValidationError(f"Invalid share type: {share.share_type!r}")

    async def upload_batch(
        self,
        session: AsyncSession,
        owner_id: str,
        items: Sequence[UploadItem],
        *,
        relative_paths: Sequence[str] | None = None,
        parent_path: str | None = "/",
        share: UploadShareOptions | None = None,
        encryption: EncryptionInfo | None = None,
    ) -> UploadResult:
        """Upload *items* for *owner_id* and optionally share the first one.

        *relative_paths*, when non-empty, must line up with *items*.  The
        auto-created link (if any) points at the first uploaded file.
        With ``share_type="private"`` every uploaded file is also granted
        to the registered users among *share.emails*.
        """
        if not items:
            raise ValidationError("No files uploaded")
        if relative_paths and len(relative_paths) != len(items):
            raise ValidationError(
                f"relativePaths length mismatch: {len(relative_paths)} paths for {len(items)} files"
            )
        self._check_share(share)

        parent_path = normalize_dir_path(parent_path)
        planned = self._plan(owner_id, items, relative_paths, parent_path)

        created: list[EntityInfo] = []
        for plan in planned:
            await self._directories.ensure_folders(session, owner_id, plan.parent_path)

            existing = await self._entities.find_by_path(session, owner_id, plan.parent_path, plan.name)
            if existing is not None:
                raise DuplicateEntityError(f"File already exists: {plan.parent_path}{plan.name}")

            # A moved file or a claimed copy can still hold the plain key.
            if await self._entities.blob_key_in_use(session, plan.blob_key):
                plan.blob_key = revision_blob_key(plan.blob_key)

            data = plan.item.data
            await self._blob_store.put(plan.blob_key, data, plan.mime_type)
            entity = await self._entities.create_file(
                session,
                owner_id=owner_id,
                parent_path=plan.parent_path,
                name=plan.name,
                blob_key=plan.blob_key,
                original_name=plan.item.original_name or plan.name,
                mime_type=plan.mime_type,
                size_bytes=plan.item.size_bytes if plan.item.size_bytes is not None else len(data),
                encryption=encryption,
            )
            created.append(self._entities.entity_to_info(entity))
            await session.commit()

        logger.info("Uploaded %d file(s) for %s", len(created), owner_id)

        result = UploadResult(created=created)
        if share is not None:
            result.share_link = await self._auto_share(session, owner_id, created, share)
        return result

    async def _auto_share(
        self,
        session: AsyncSession,
        owner_id: str,
        created: list[EntityInfo],
        share: UploadShareOptions,
    ) -> ShareLinkInfo:
        emails = normalize_emails(share.emails)
        private = share.share_type == "private"

        user_ids: list[str] = []
        if private and emails and self._users is not None:
            for email in emails:
                user_id = await self._users.find_id_by_email(email)
                if user_id and user_id != owner_id and user_id not in user_ids:
                    user_ids.append(user_id)
            for info in created:
                entity = await self._entities.get_by_id(session, info.id)
                if entity is None:
                    continue
                for user_id in user_ids:
                    await self._entities.grant(session, entity, user_id, granted_by=owner_id)
                info.access_level = entity.access_level

        expiry = parse_expiry(share.expiry)
        options = ShareOptions(
            scope=LinkScope.RESTRICTED.value if private else LinkScope.PUBLIC.value,
            allowed_emails=emails if private else [],
            allowed_user_ids=user_ids,
            password=share.password or None,
            expires_in_seconds=int(expiry.total_seconds()) if expiry is not None else None,
        )
        link = await self._share_links.create(session, created[0].id, Caller(id=owner_id), options)
        await session.commit()
        return link
