"""Tests for LocalDiskBlobStore and link password hashing."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlsplit

import pytest

from cumulus.fs.blobs import LocalDiskBlobStore
from cumulus.fs.exceptions import BlobError, BlobNotFoundError
from cumulus.fs.protocol import BlobStore
from cumulus.fs.security import generate_token, hash_password, verify_password

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def store(tmp_path: Path) -> LocalDiskBlobStore:
    return LocalDiskBlobStore(
        tmp_path / "blobs", secret="test-secret", base_url="http://files.test"
    )


class TestLocalDiskBlobStore:
    def test_satisfies_protocol(self, store: LocalDiskBlobStore):
        assert isinstance(store, BlobStore)

    def test_secret_required(self, tmp_path: Path):
        with pytest.raises(ValueError):
            LocalDiskBlobStore(tmp_path, secret="")

    async def test_put_get_delete(self, store: LocalDiskBlobStore, tmp_path: Path):
        key = await store.put("alice/Docs/a.txt", b"hello", "text/plain")
        assert key == "alice/Docs/a.txt"
        assert (tmp_path / "blobs" / "alice" / "Docs" / "a.txt").read_bytes() == b"hello"
        assert await store.get(key) == b"hello"

        await store.delete(key)
        with pytest.raises(BlobNotFoundError):
            await store.get(key)

    async def test_put_overwrites(self, store: LocalDiskBlobStore):
        await store.put("k", b"one", "text/plain")
        await store.put("k", b"two", "text/plain")
        assert await store.get("k") == b"two"

    async def test_missing(self, store: LocalDiskBlobStore):
        with pytest.raises(BlobNotFoundError):
            await store.get("nope")
        with pytest.raises(BlobNotFoundError):
            await store.delete("nope")

    @pytest.mark.parametrize("key", ["../escape", "a/../../escape", "", "a\x00b"])
    async def test_keys_stay_inside_root(self, store: LocalDiskBlobStore, key: str):
        with pytest.raises(BlobError):
            await store.put(key, b"x", "text/plain")


class TestSignedUrls:
    async def test_signed_url_round_trip(self, store: LocalDiskBlobStore):
        url = await store.signed_get_url("alice/a b.txt", 60)
        parts = urlsplit(url)
        assert url.startswith("http://files.test/blobs/alice/a%20b.txt?")

        query = parse_qs(parts.query)
        expires = int(query["expires"][0])
        signature = query["signature"][0]
        assert store.verify_signature("alice/a b.txt", expires, signature)

    async def test_signature_bound_to_key(self, store: LocalDiskBlobStore):
        query = parse_qs(urlsplit(await store.signed_get_url("alice/a.txt", 60)).query)
        expires, signature = int(query["expires"][0]), query["signature"][0]
        assert not store.verify_signature("bob/a.txt", expires, signature)
        assert not store.verify_signature("alice/a.txt", expires + 1, signature)

    async def test_signature_expires(self, store: LocalDiskBlobStore):
        query = parse_qs(urlsplit(await store.signed_get_url("alice/a.txt", 60)).query)
        expires, signature = int(query["expires"][0]), query["signature"][0]
        assert not store.verify_signature(
            "alice/a.txt", expires, signature, now=time.time() + 120
        )


class TestSecurity:
    def test_tokens(self):
        token = generate_token()
        assert len(token) == 64
        assert int(token, 16) >= 0
        assert token != generate_token()

    def test_hash_and_verify(self):
        hashed = hash_password("s3cret", rounds=4)
        assert hashed != hash_password("s3cret", rounds=4)
        assert verify_password("s3cret", hashed)
        assert not verify_password("wrong", hashed)

    def test_malformed_hash_never_matches(self):
        assert not verify_password("s3cret", "not-a-bcrypt-hash")
