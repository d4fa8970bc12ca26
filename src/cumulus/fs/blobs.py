"""LocalDiskBlobStore — blob storage on the host filesystem with signed URLs."""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import hmac
import logging
import os
import tempfile
import time
from pathlib import Path
from urllib.parse import quote, urlencode

from .exceptions import BlobError, BlobNotFoundError

logger = logging.getLogger(__name__)


class LocalDiskBlobStore:
    """Blob store rooted at *root_dir*. Implements the ``BlobStore`` protocol.

    Retrieval URLs are signed with HMAC-SHA256 over ``key`` and the expiry
    timestamp; ``verify_signature`` checks them on the way back in.

    Security: ``_resolve_key()`` ensures every key stays within root_dir,
    preventing path traversal through crafted keys.
    """

    def __init__(
        self,
        root_dir: Path | str,
        *,
        secret: str,
        base_url: str = "",
        url_path: str = "/blobs",
    ) -> None:
        if not secret:
            raise ValueError("A signing secret is required")
        self.root_dir = Path(root_dir).resolve()
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self._secret = secret.encode()
        self.base_url = base_url.rstrip("/")
        self.url_path = "/" + url_path.strip("/")

    # =========================================================================
    # Key Resolution & Security
    # =========================================================================

    def _resolve_key(self, key: str) -> Path:
        if not key or "\x00" in key:
            raise BlobError(f"Invalid blob key: {key!r}")

        resolved = (self.root_dir / key.lstrip("/")).resolve()
        try:
            resolved.relative_to(self.root_dir)
        except ValueError:
            raise BlobError(f"Blob key resolves outside blob root: {key!r}") from None
        if resolved == self.root_dir:
            raise BlobError(f"Invalid blob key: {key!r}")
        return resolved

    # =========================================================================
    # BlobStore protocol
    # =========================================================================

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        resolved = self._resolve_key(key)

        def _write() -> None:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(resolved.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                Path(tmp_path).replace(resolved)
            except Exception:
                with contextlib.suppress(OSError):
                    Path(tmp_path).unlink()
                raise

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise BlobError(f"Failed to store blob {key}: {e}") from e

        logger.debug("Stored blob %s (%d bytes, %s)", key, len(data), content_type)
        return key

    async def get(self, key: str) -> bytes:
        resolved = self._resolve_key(key)
        try:
            return await asyncio.to_thread(resolved.read_bytes)
        except FileNotFoundError:
            raise BlobNotFoundError(f"Blob not found: {key}") from None
        except OSError as e:
            raise BlobError(f"Failed to read blob {key}: {e}") from e

    async def delete(self, key: str) -> None:
        resolved = self._resolve_key(key)
        try:
            await asyncio.to_thread(resolved.unlink)
        except FileNotFoundError:
            raise BlobNotFoundError(f"Blob not found: {key}") from None
        except OSError as e:
            raise BlobError(f"Failed to delete blob {key}: {e}") from e

    async def signed_get_url(self, key: str, ttl_seconds: int) -> str:
        self._resolve_key(key)
        expires = int(time.time()) + ttl_seconds
        query = urlencode({"expires": expires, "signature": self._sign(key, expires)})
        return f"{self.base_url}{self.url_path}/{quote(key)}?{query}"

    # =========================================================================
    # Signatures
    # =========================================================================

    def _sign(self, key: str, expires: int) -> str:
        message = f"{key}\n{expires}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify_signature(
        self,
        key: str,
        expires: int,
        signature: str,
        *,
        now: float | None = None,
    ) -> bool:
        """True if *signature* was issued for *key* and has not expired."""
        current = time.time() if now is None else now
        if expires < current:
            return False
        return hmac.compare_digest(self._sign(key, expires), signature)
