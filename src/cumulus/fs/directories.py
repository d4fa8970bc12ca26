"""DirectoryService — folder materialization and explicit folder creation."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlmodel import select

from cumulus.models.entities import AccessLevel, EntityKind

from .dialect import insert_if_absent
from .exceptions import ConflictError, DuplicateEntityError
from .utils import iter_dir_prefixes, normalize_dir_path, validate_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from cumulus.models.entities import EntityBase

ENTITY_KEY = ["owner_id", "parent_path", "name"]


class DirectoryService:
    """Dialect-aware folder creation.

    Uses ``insert_if_absent`` from ``dialect.py`` so that concurrent
    materialization of the same path by the same owner never produces
    duplicate folders: the unique constraint decides, not a prior read.
    """

    def __init__(
        self,
        entity_model: type[EntityBase],
        dialect: str = "sqlite",
        schema: str | None = None,
    ) -> None:
        self._entity_model = entity_model
        self.dialect = dialect
        self.schema = schema

    def _folder_values(self, owner_id: str, parent_path: str, name: str) -> dict[str, object]:
        now = datetime.now(UTC)
        return {
            "id": str(uuid.uuid4()),
            "kind": EntityKind.FOLDER.value,
            "name": name,
            "parent_path": parent_path,
            "owner_id": owner_id,
            "size_bytes": 0,
            "access_level": AccessLevel.PRIVATE.value,
            "created_at": now,
            "updated_at": now,
        }

    async def _get(
        self,
        session: AsyncSession,
        owner_id: str,
        parent_path: str,
        name: str,
    ) -> EntityBase | None:
        model = self._entity_model
        result = await session.execute(
            select(model).where(
                model.owner_id == owner_id,
                model.parent_path == parent_path,
                model.name == name,
            )
        )
        return result.scalar_one_or_none()

    async def ensure_folders(
        self,
        session: AsyncSession,
        owner_id: str,
        full_dir: str,
    ) -> None:
        """Ensure every folder on the way to *full_dir* exists. No-op for ``/``."""
        full_dir = normalize_dir_path(full_dir)
        for parent_path, name in iter_dir_prefixes(full_dir):
            rowcount = await insert_if_absent(
                session,
                self.dialect,
                model=self._entity_model,
                values=self._folder_values(owner_id, parent_path, name),
                conflict_keys=ENTITY_KEY,
                schema=self.schema,
            )
            if rowcount > 0:
                continue
            existing = await self._get(session, owner_id, parent_path, name)
            if existing is not None and not existing.is_folder:
                raise ConflictError(f"Path exists as file: {parent_path}{name}")

    async def create_folder(
        self,
        session: AsyncSession,
        owner_id: str,
        parent_path: str,
        name: str,
    ) -> EntityBase:
        """Create one folder, materializing its parents first.

        Unlike ``ensure_folders`` an existing entity at the target is an error.
        """
        name = validate_name(name)
        parent_path = normalize_dir_path(parent_path)

        await self.ensure_folders(session, owner_id, parent_path)

        rowcount = await insert_if_absent(
            session,
            self.dialect,
            model=self._entity_model,
            values=self._folder_values(owner_id, parent_path, name),
            conflict_keys=ENTITY_KEY,
            schema=self.schema,
        )
        if rowcount == 0:
            raise DuplicateEntityError(f"Folder already exists: {parent_path}{name}")

        folder = await self._get(session, owner_id, parent_path, name)
        assert folder is not None
        return folder
