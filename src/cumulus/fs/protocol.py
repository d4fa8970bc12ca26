"""Collaborator protocols — runtime-checkable interfaces.

The core never talks to a concrete object store, identity provider, or
user database.  Implementations are constructed by the application and
passed into ``Cumulus`` and the services.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .access import Caller


@runtime_checkable
class BlobStore(Protocol):
    """Opaque blob store keyed by string.

    Implementations raise ``BlobError`` on failure and
    ``BlobNotFoundError`` when deleting or reading a missing key.
    """

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store *data* under *key*. Returns an opaque reference."""
        ...

    async def get(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> None: ...

    async def signed_get_url(self, key: str, ttl_seconds: int) -> str:
        """Return a URL that retrieves *key* for the next *ttl_seconds*."""
        ...


@runtime_checkable
class IdentityResolver(Protocol):
    """Resolves an inbound request to a ``Caller`` (anonymous if no credentials)."""

    async def resolve(self, request: Any) -> Caller: ...


@runtime_checkable
class UserDirectory(Protocol):
    """Lookup of registered users, used when sharing by email."""

    async def find_id_by_email(self, email: str) -> str | None: ...

    async def exists(self, user_id: str) -> bool: ...
