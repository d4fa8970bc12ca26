"""Tests for EntityService — records, listing, grants, delete and move."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from cumulus.fs.exceptions import (
    BlobError,
    ConflictError,
    DuplicateEntityError,
    ValidationError,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from cumulus.fs.entities import EntityService
    from cumulus.models import EntityBase

    from .conftest import MemoryBlobStore


async def _file(
    entities: EntityService,
    session: AsyncSession,
    blob_store: MemoryBlobStore,
    owner_id: str,
    parent_path: str,
    name: str,
    data: bytes = b"data",
) -> EntityBase:
    key = f"{owner_id}{parent_path}{name}"
    await blob_store.put(key, data, "text/plain")
    await entities._directories.ensure_folders(session, owner_id, parent_path)
    return await entities.create_file(
        session,
        owner_id=owner_id,
        parent_path=parent_path,
        name=name,
        blob_key=key,
        mime_type="text/plain",
        size_bytes=len(data),
    )


# ---------------------------------------------------------------------------
# create / lookup
# ---------------------------------------------------------------------------


class TestCreateAndLookup:
    async def test_create_file(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/Docs/", "a.txt")
        assert f.kind == "file"
        assert f.original_name == "a.txt"
        assert f.access_level == "private"
        assert f.size_bytes == 4

        assert (await entities.get_by_id(async_session, f.id)).id == f.id
        found = await entities.find_by_path(async_session, "alice", "/Docs/", "a.txt")
        assert found is not None and found.id == f.id

    async def test_get_missing_is_none(self, entities: EntityService, async_session: AsyncSession):
        assert await entities.get_by_id(async_session, "nope") is None
        assert await entities.find_by_path(async_session, "alice", "/", "nope") is None

    async def test_duplicate_file(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        with pytest.raises(DuplicateEntityError):
            await entities.create_file(
                async_session, owner_id="alice", parent_path="/", name="a.txt", blob_key="x"
            )

    async def test_file_and_folder_share_namespace(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        await entities.create_folder(async_session, "alice", "/", "Docs")
        with pytest.raises(DuplicateEntityError):
            await entities.create_file(
                async_session, owner_id="alice", parent_path="/", name="Docs", blob_key="x"
            )

    async def test_encryption_metadata_kept(
        self, entities: EntityService, async_session: AsyncSession
    ):
        from cumulus.fs.types import EncryptionInfo

        f = await entities.create_file(
            async_session,
            owner_id="alice",
            parent_path="/",
            name="secret.bin",
            blob_key="alice/secret.bin",
            encryption=EncryptionInfo(type="aes-gcm", iv="iv==", wrapped_key="key=="),
        )
        info = entities.entity_to_info(f)
        assert info.encryption.type == "aes-gcm"
        assert info.encryption.iv == "iv=="
        assert info.encryption.wrapped_key == "key=="


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListing:
    async def test_children_folders_first_then_name(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        await _file(entities, async_session, blob_store, "alice", "/", "b.txt")
        await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        await entities.create_folder(async_session, "alice", "/", "Zeta")
        await entities.create_folder(async_session, "alice", "/", "Alpha")
        await _file(entities, async_session, blob_store, "alice", "/Alpha/", "inside.txt")

        children = await entities.list_children(async_session, "alice", "/")
        assert [(c.kind, c.name) for c in children] == [
            ("folder", "Alpha"),
            ("folder", "Zeta"),
            ("file", "a.txt"),
            ("file", "b.txt"),
        ]

    async def test_children_are_owner_scoped(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        await _file(entities, async_session, blob_store, "bob", "/", "b.txt")
        children = await entities.list_children(async_session, "bob", "/")
        assert [c.name for c in children] == ["b.txt"]

    async def test_list_owned(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        await _file(entities, async_session, blob_store, "alice", "/Docs/", "a.txt")
        owned = await entities.list_owned(async_session, "alice")
        assert {(e.kind, e.name) for e in owned} == {("folder", "Docs"), ("file", "a.txt")}


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


class TestGrants:
    async def test_grant_and_revoke(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")

        assert await entities.grant(async_session, f, "bob", granted_by="alice") is True
        assert await entities.grant(async_session, f, "bob", granted_by="alice") is False
        assert await entities.shared_with(async_session, f.id) == {"bob"}
        assert f.access_level == "shared"

        shared = await entities.list_shared_with(async_session, "bob")
        assert [e.id for e in shared] == [f.id]

        assert await entities.revoke_grant(async_session, f, "bob") is True
        assert await entities.revoke_grant(async_session, f, "bob") is False
        assert await entities.shared_with(async_session, f.id) == set()
        assert f.access_level == "private"

    async def test_access_level_stays_shared_while_grants_remain(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        await entities.grant(async_session, f, "bob", granted_by="alice")
        await entities.grant(async_session, f, "carol", granted_by="alice")
        await entities.revoke_grant(async_session, f, "bob")
        assert f.access_level == "shared"

    async def test_cannot_grant_owner(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        with pytest.raises(ValidationError):
            await entities.grant(async_session, f, "alice", granted_by="alice")

    async def test_set_access_level(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        await entities.set_access_level(async_session, f, "public")
        assert f.access_level == "public"
        with pytest.raises(ValidationError):
            await entities.set_access_level(async_session, f, "everyone")


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


class TestDelete:
    async def test_delete_file_removes_blob_then_record(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        await entities.grant(async_session, f, "bob", granted_by="alice")

        assert await entities.delete(async_session, f, blob_store) == 1
        assert blob_store.deleted == ["alice/a.txt"]
        assert await entities.get_by_id(async_session, f.id) is None
        assert await entities.list_shared_with(async_session, "bob") == []

    async def test_blob_failure_keeps_record(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        blob_store.fail_delete.add("alice/a.txt")

        with pytest.raises(BlobError):
            await entities.delete(async_session, f, blob_store)

        assert await entities.get_by_id(async_session, f.id) is not None
        assert "alice/a.txt" in blob_store.blobs

    async def test_missing_blob_still_deletes_record(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        del blob_store.blobs["alice/a.txt"]

        await entities.delete(async_session, f, blob_store)
        assert await entities.get_by_id(async_session, f.id) is None

    async def test_shared_blob_is_kept(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        copy = await entities.create_file(
            async_session, owner_id="bob", parent_path="/", name="a.txt", blob_key=f.blob_key
        )

        await entities.delete(async_session, f, blob_store)
        assert blob_store.deleted == []
        assert await entities.get_by_id(async_session, copy.id) is not None

        await entities.delete(async_session, copy, blob_store)
        assert blob_store.deleted == ["alice/a.txt"]

    async def test_non_empty_folder_needs_recursive(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        await _file(entities, async_session, blob_store, "alice", "/Docs/", "a.txt")
        folder = await entities.find_by_path(async_session, "alice", "/", "Docs")

        with pytest.raises(ConflictError, match="not empty"):
            await entities.delete(async_session, folder, blob_store)

    async def test_empty_folder(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        folder = await entities.create_folder(async_session, "alice", "/", "Empty")
        assert await entities.delete(async_session, folder, blob_store) == 1
        assert await entities.get_by_id(async_session, folder.id) is None

    async def test_recursive_delete(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        await _file(entities, async_session, blob_store, "alice", "/Docs/", "a.txt")
        await _file(entities, async_session, blob_store, "alice", "/Docs/2024/", "b.txt")
        keep = await _file(entities, async_session, blob_store, "alice", "/Docsy/", "c.txt")
        folder = await entities.find_by_path(async_session, "alice", "/", "Docs")

        removed = await entities.delete(async_session, folder, blob_store, recursive=True)

        assert removed == 4  # two files, /Docs/2024/, /Docs/
        assert sorted(blob_store.deleted) == ["alice/Docs/2024/b.txt", "alice/Docs/a.txt"]
        remaining = await entities.list_owned(async_session, "alice")
        assert {e.name for e in remaining} == {"Docsy", "c.txt"}
        assert await entities.get_by_id(async_session, keep.id) is not None

    async def test_recursive_delete_stops_at_blob_failure(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        a = await _file(entities, async_session, blob_store, "alice", "/Docs/", "a.txt")
        b = await _file(entities, async_session, blob_store, "alice", "/Docs/", "b.txt")
        blob_store.fail_delete.update({a.blob_key, b.blob_key})
        folder = await entities.find_by_path(async_session, "alice", "/", "Docs")
        ids = [a.id, b.id, folder.id]

        with pytest.raises(BlobError):
            await entities.delete(async_session, folder, blob_store, recursive=True)

        for entity_id in ids:
            assert await entities.get_by_id(async_session, entity_id) is not None


# ---------------------------------------------------------------------------
# Move
# ---------------------------------------------------------------------------


class TestMove:
    async def test_rename_file(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        moved = await entities.move(async_session, f, "/", "renamed.txt")
        assert moved.name == "renamed.txt"
        assert moved.blob_key == "alice/a.txt"

    async def test_move_file_materializes_target(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        await entities.move(async_session, f, "/Archive/2024/")
        assert f.parent_path == "/Archive/2024/"
        assert await entities.find_by_path(async_session, "alice", "/", "Archive") is not None
        assert await entities.find_by_path(async_session, "alice", "/Archive/", "2024") is not None

    async def test_move_folder_rewrites_descendants(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        await _file(entities, async_session, blob_store, "alice", "/A/B/", "deep.txt")
        folder = await entities.find_by_path(async_session, "alice", "/", "A")

        await entities.move(async_session, folder, "/X/", "A2")

        assert await entities.find_by_path(async_session, "alice", "/X/", "A2") is not None
        assert await entities.find_by_path(async_session, "alice", "/X/A2/", "B") is not None
        deep = await entities.find_by_path(async_session, "alice", "/X/A2/B/", "deep.txt")
        assert deep is not None
        assert deep.blob_key == "alice/A/B/deep.txt"
        assert await entities.list_children(async_session, "alice", "/A/") == []

    async def test_move_into_self(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        folder = await entities.create_folder(async_session, "alice", "/", "A")
        with pytest.raises(ConflictError):
            await entities.move(async_session, folder, "/A/B/")
        with pytest.raises(ConflictError):
            await entities.move(async_session, folder, "/A/")

    async def test_move_collision(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        await _file(entities, async_session, blob_store, "alice", "/Docs/", "a.txt")
        with pytest.raises(DuplicateEntityError):
            await entities.move(async_session, f, "/Docs/")

    async def test_move_to_same_place_is_noop(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        f = await _file(entities, async_session, blob_store, "alice", "/", "a.txt")
        assert (await entities.move(async_session, f, "/")).name == "a.txt"


# ---------------------------------------------------------------------------
# Storage usage
# ---------------------------------------------------------------------------


class TestStorageUsage:
    async def test_sums_file_sizes(
        self, entities: EntityService, async_session: AsyncSession, blob_store: MemoryBlobStore
    ):
        await _file(entities, async_session, blob_store, "alice", "/", "a.txt", b"12345")
        await _file(entities, async_session, blob_store, "alice", "/Docs/", "b.txt", b"123")
        await _file(entities, async_session, blob_store, "bob", "/", "c.txt", b"1")

        usage = await entities.storage_usage(async_session, "alice", limit_bytes=100)
        assert usage.used_bytes == 8
        assert usage.file_count == 2
        assert usage.percentage == 8.0

    async def test_empty(self, entities: EntityService, async_session: AsyncSession):
        usage = await entities.storage_usage(async_session, "nobody", limit_bytes=100)
        assert usage.used_bytes == 0
        assert usage.file_count == 0

