"""SQLModel database models for Cumulus."""

from cumulus.models.entities import (
    AccessLevel,
    Entity,
    EntityBase,
    EntityGrant,
    EntityGrantBase,
    EntityKind,
)
from cumulus.models.share_links import (
    LinkScope,
    RecipientKind,
    ShareLink,
    ShareLinkBase,
    ShareLinkRecipient,
    ShareLinkRecipientBase,
    ShareLinkView,
    ShareLinkViewBase,
)

__all__ = [
    "AccessLevel",
    "Entity",
    "EntityBase",
    "EntityGrant",
    "EntityGrantBase",
    "EntityKind",
    "LinkScope",
    "RecipientKind",
    "ShareLink",
    "ShareLinkBase",
    "ShareLinkRecipient",
    "ShareLinkRecipientBase",
    "ShareLinkView",
    "ShareLinkViewBase",
]
