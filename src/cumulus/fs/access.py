"""Caller identity and the owner / shared-with authorization decision.

Link-gated access is a separate path (``ShareLinkService.access``) that
never consults ``shared_with``.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .exceptions import ForbiddenError

if TYPE_CHECKING:
    from cumulus.models.entities import EntityBase


@dataclass(frozen=True)
class Caller:
    """Identity resolved by the boundary layer before the core is invoked."""

    id: str | None = None
    email: str | None = None

    @classmethod
    def anonymous(cls) -> Caller:
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return bool(self.id)

    @property
    def email_lower(self) -> str | None:
        return self.email.strip().lower() if self.email else None


def can_write(entity: EntityBase, caller: Caller) -> bool:
    """Only the owner may write, delete, rename, or create links."""
    return caller.is_authenticated and caller.id == entity.owner_id


def can_read(entity: EntityBase, caller: Caller, shared_with: Collection[str] = ()) -> bool:
    """Owner or a directly granted user may read."""
    if not caller.is_authenticated:
        return False
    return caller.id == entity.owner_id or caller.id in shared_with


def require_write(entity: EntityBase, caller: Caller) -> None:
    if not can_write(entity, caller):
        raise ForbiddenError("Access denied - you do not own this item")


def require_read(entity: EntityBase, caller: Caller, shared_with: Collection[str] = ()) -> None:
    if not can_read(entity, caller, shared_with):
        raise ForbiddenError("File not found or access denied")
