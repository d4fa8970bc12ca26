"""Shared fixtures for Cumulus tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from cumulus.fs.directories import DirectoryService
from cumulus.fs.entities import EntityService
from cumulus.fs.exceptions import BlobError, BlobNotFoundError
from cumulus.fs.share_links import ShareLinkService
from cumulus.fs.uploads import UploadService
from cumulus.fs.users import StaticUserDirectory
from cumulus.models import Entity, EntityGrant, ShareLink, ShareLinkRecipient, ShareLinkView

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class MemoryBlobStore:
    """In-memory ``BlobStore`` with switchable failures."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.fail_put: set[str] = set()
        self.fail_delete: set[str] = set()
        self.deleted: list[str] = []

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        if key in self.fail_put:
            raise BlobError(f"Simulated failure storing {key}")
        self.blobs[key] = data
        self.content_types[key] = content_type
        return key

    async def get(self, key: str) -> bytes:
        try:
            return self.blobs[key]
        except KeyError:
            raise BlobNotFoundError(f"Blob not found: {key}") from None

    async def delete(self, key: str) -> None:
        if key in self.fail_delete:
            raise BlobError(f"Simulated failure deleting {key}")
        if key not in self.blobs:
            raise BlobNotFoundError(f"Blob not found: {key}")
        del self.blobs[key]
        self.deleted.append(key)

    async def signed_get_url(self, key: str, ttl_seconds: int) -> str:
        return f"https://blobs.test/{key}?ttl={ttl_seconds}"


class FakeClock:
    """Settable clock for expiry tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session on the in-memory engine."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def users() -> StaticUserDirectory:
    return StaticUserDirectory(
        {
            "alice@example.com": "alice",
            "bob@example.com": "bob",
            "carol@example.com": "carol",
        }
    )


@pytest.fixture
def directories() -> DirectoryService:
    return DirectoryService(Entity)


@pytest.fixture
def entities(directories: DirectoryService) -> EntityService:
    return EntityService(Entity, EntityGrant, directories)


@pytest.fixture
def share_links(
    entities: EntityService, blob_store: MemoryBlobStore, clock: FakeClock
) -> ShareLinkService:
    return ShareLinkService(
        ShareLink,
        ShareLinkView,
        ShareLinkRecipient,
        entities,
        blob_store,
        base_url="https://cumulus.test",
        bcrypt_rounds=4,
        clock=clock,
    )


@pytest.fixture
def uploads(
    entities: EntityService,
    directories: DirectoryService,
    share_links: ShareLinkService,
    blob_store: MemoryBlobStore,
    users: StaticUserDirectory,
) -> UploadService:
    return UploadService(entities, directories, share_links, blob_store, users)
