"""Share link API routes."""

from fastapi import APIRouter, Body, Depends, Query, status

from cumulus._cumulus import Cumulus
from cumulus.api.deps import get_caller, get_cumulus, require_caller
from cumulus.api.schemas import (
    CreateProtectedShareLinkRequest,
    CreateShareLinkRequest,
    LinkPasswordRequest,
    access_payload,
    entity_payload,
    link_payload,
    unseen_payload,
)
from cumulus.fs.access import Caller
from cumulus.fs.types import ShareOptions

router = APIRouter(prefix="/share", tags=["Share"])


def _options(body: CreateShareLinkRequest, password: str | None = None) -> ShareOptions:
    return ShareOptions(
        scope=body.scope,
        allowed_emails=body.emails,
        allowed_user_ids=body.user_ids,
        password=password,
        expires_in_seconds=body.expires_in,
        max_access=body.max_access,
    )


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_share_link(
    body: CreateShareLinkRequest,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    return link_payload(await cumulus.create_share_link(caller, body.file_id, _options(body)))


@router.post("/protected", status_code=status.HTTP_201_CREATED)
async def create_protected_share_link(
    body: CreateProtectedShareLinkRequest,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    info = await cumulus.create_share_link(caller, body.file_id, _options(body, body.password))
    return link_payload(info)


@router.get("/access/{token}")
async def access_share_link(
    token: str,
    password: str | None = Query(None),
    caller: Caller = Depends(get_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    """
    Open a share link.  Credentials are optional; restricted links need them.

    Raises:
        - 401: Password required
        - 403: Wrong password, access limit reached, or caller not allowed
        - 404: Unknown token or file deleted
        - 410: Link revoked or expired
    """
    return access_payload(await cumulus.access_share_link(token, password, caller))


@router.post("/access/{token}")
async def access_share_link_with_body(
    token: str,
    body: LinkPasswordRequest | None = Body(None),
    caller: Caller = Depends(get_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    password = body.password if body is not None else None
    return access_payload(await cumulus.access_share_link(token, password, caller))


@router.delete("/delete/{token}")
async def revoke_share_link(
    token: str,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    info = await cumulus.revoke_share_link(caller, token)
    return {"message": "Share link revoked", "revokedAt": info.revoked_at}


@router.post("/add-to-account/{token}")
async def add_to_account(
    token: str,
    body: LinkPasswordRequest | None = Body(None),
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    password = body.password if body is not None else None
    info = await cumulus.add_to_account(caller, token, password)
    return {"message": "File added to your account successfully", "file": entity_payload(info)}


@router.get("/unseen")
async def unseen_share_links(
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    return unseen_payload(await cumulus.unseen_share_links(caller))


@router.get("/links/{entity_id}")
async def list_share_links(
    entity_id: str,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    """Every link on a file the caller owns, in any state."""
    return [link_payload(info) for info in await cumulus.list_share_links(caller, entity_id)]
