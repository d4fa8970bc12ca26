"""Pydantic request bodies and JSON payload builders for the HTTP API."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from cumulus.fs.types import (
        AccessResult,
        EncryptionInfo,
        EntityInfo,
        ShareLinkInfo,
        StorageUsage,
        UnseenLink,
    )


class CamelModel(BaseModel):
    """Accepts both ``camelCase`` (wire) and ``snake_case`` field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _json_list(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return []
        if value.startswith("["):
            return json.loads(value)
        return [v.strip() for v in value.split(",") if v.strip()]
    return value


# =============================================================================
# Requests
# =============================================================================


class CreateFolderRequest(CamelModel):
    name: str
    path: str = "/"


class MoveRequest(CamelModel):
    id: str
    destination_path: str = "/"
    new_name: str | None = None


class ShareWithUserRequest(CamelModel):
    file_id: str
    target_user_id: str | None = None
    target_email: str | None = None


class AccessLevelRequest(CamelModel):
    access_level: str


class CreateShareLinkRequest(CamelModel):
    file_id: str
    expires_in: int | None = Field(default=None, description="Seconds until the link expires")
    max_access: int | None = None
    scope: str = "public"
    emails: list[str] = Field(default_factory=list)
    user_ids: list[str] = Field(default_factory=list)

    @field_validator("emails", "user_ids", mode="before")
    @classmethod
    def _parse_list(cls, value: Any) -> Any:
        return _json_list(value)


class CreateProtectedShareLinkRequest(CreateShareLinkRequest):
    password: str = Field(min_length=1)


class LinkPasswordRequest(CamelModel):
    password: str | None = None


# =============================================================================
# Payloads
# =============================================================================


def encryption_payload(enc: EncryptionInfo) -> dict[str, Any]:
    return {"encryptionType": enc.type, "iv": enc.iv, "encryptedKey": enc.wrapped_key}


def entity_payload(info: EntityInfo) -> dict[str, Any]:
    return {
        "id": info.id,
        "type": info.kind,
        "name": info.name,
        "parentPath": info.parent_path,
        "path": info.parent_path + info.name,
        "owner": info.owner_id,
        "originalName": info.original_name,
        "mimetype": info.mime_type,
        "size": info.size_bytes,
        "accessLevel": info.access_level,
        **encryption_payload(info.encryption),
        "createdAt": info.created_at,
        "updatedAt": info.updated_at,
    }


def link_payload(info: ShareLinkInfo) -> dict[str, Any]:
    return {
        "shareUrl": info.share_url,
        "token": info.token,
        "fileId": info.entity_id,
        "scope": info.scope,
        "state": info.state.value,
        "allowedUsers": info.allowed_users,
        "allowedEmails": info.allowed_emails,
        "protected": info.protected,
        "expiresAt": info.expires_at,
        "maxAccess": info.max_access,
        "accessCount": info.access_count,
        "revokedAt": info.revoked_at,
        "createdAt": info.created_at,
    }


def access_payload(result: AccessResult) -> dict[str, Any]:
    return {
        "downloadUrl": result.download_url,
        "expiresIn": result.expires_in,
        "accessCount": result.access_count,
        "metadata": {
            "fileId": result.file.id,
            "originalName": result.file.original_name,
            "mimetype": result.file.mime_type,
            "size": result.file.size_bytes,
            "owner": result.file.owner_id,
            **encryption_payload(result.encryption),
        },
    }


def unseen_payload(links: list[UnseenLink]) -> dict[str, Any]:
    return {
        "unseen": len(links),
        "unseenLinks": [
            {
                "token": link.token,
                "file": {
                    "id": link.file.id,
                    "name": link.file.name,
                    "size": link.file.size_bytes,
                    "mimetype": link.file.mime_type,
                    "createdAt": link.file.created_at,
                },
                "createdBy": link.created_by,
                "createdAt": link.created_at,
                "expiresAt": link.expires_at,
            }
            for link in links
        ],
    }


def storage_payload(usage: StorageUsage) -> dict[str, Any]:
    return {
        "used": usage.used_bytes,
        "total": usage.limit_bytes,
        "percentage": usage.percentage,
        "fileCount": usage.file_count,
    }
