"""File and folder API routes."""

import json

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse
from starlette.datastructures import FormData, UploadFile

from cumulus._cumulus import Cumulus
from cumulus.api.deps import get_cumulus, require_caller
from cumulus.api.schemas import (
    AccessLevelRequest,
    CreateFolderRequest,
    MoveRequest,
    ShareWithUserRequest,
    access_payload,
    entity_payload,
    link_payload,
    storage_payload,
)
from cumulus.fs.access import Caller
from cumulus.fs.exceptions import ValidationError
from cumulus.fs.types import EncryptionInfo, UploadItem, UploadShareOptions

router = APIRouter(prefix="/files", tags=["Files"])

FILE_FIELDS = ("files", "files[]", "file")
NO_SHARE = ("", "none")


def _form_str(form: FormData, name: str) -> str | None:
    value = form.get(name)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _form_list(form: FormData, *names: str, split_commas: bool = False) -> list[str] | None:
    """Collapse the list encodings clients send into one list.

    Accepts a repeated field, a ``name[]`` field, or a single JSON array
    string.  Returns None when none of *names* is present.
    """
    for name in names:
        values = [v for v in form.getlist(name) if isinstance(v, str)]
        if not values:
            continue
        if len(values) == 1 and values[0].strip().startswith("["):
            try:
                parsed = json.loads(values[0])
            except json.JSONDecodeError as e:
                raise ValidationError(f"{name} is not valid JSON") from e
            if not isinstance(parsed, list):
                raise ValidationError(f"{name} must be a JSON array")
            return [str(p) for p in parsed]
        if split_commas and len(values) == 1:
            return [v.strip() for v in values[0].split(",") if v.strip()]
        return values
    return None


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_files(
    request: Request,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    """
    Upload one or more files, optionally preserving folder structure.

    Multipart fields:
        - files / file: the file parts
        - relativePaths, relativePaths[] or relativePathsJson: one path per file
        - parentPath: target folder (default ``/``)
        - shareType: ``public`` or ``private`` to create a link to the first file
        - emails, expiry (``24h``, ``7d``, ``never``), password: link options
        - encryptionType, iv, encryptedKey: opaque client-side encryption metadata

    Raises:
        - 401: No valid credentials
        - 409: A file already exists at one of the paths
        - 422: Invalid path, empty batch, or relativePaths length mismatch
    """
    form = await request.form()
    limit = cumulus.settings.max_upload_size_bytes

    items: list[UploadItem] = []
    for name in FILE_FIELDS:
        for part in form.getlist(name):
            if not isinstance(part, UploadFile):
                continue
            data = await part.read()
            if len(data) > limit:
                raise ValidationError(f"File too large: {part.filename}")
            items.append(
                UploadItem(
                    original_name=part.filename or "",
                    data=data,
                    mime_type=part.content_type,
                    size_bytes=len(data),
                )
            )

    share = None
    share_type = _form_str(form, "shareType")
    if share_type is not None and share_type not in NO_SHARE:
        share = UploadShareOptions(
            share_type=share_type,
            emails=_form_list(form, "emails", "emails[]", split_commas=True) or [],
            expiry=_form_str(form, "expiry"),
            password=_form_str(form, "password"),
        )

    encryption = EncryptionInfo(
        type=_form_str(form, "encryptionType"),
        iv=_form_str(form, "iv"),
        wrapped_key=_form_str(form, "encryptedKey"),
    )

    result = await cumulus.upload(
        caller,
        items,
        relative_paths=_form_list(form, "relativePaths", "relativePaths[]", "relativePathsJson"),
        parent_path=_form_str(form, "parentPath") or "/",
        share=share,
        encryption=None if encryption.is_empty else encryption,
    )
    return {
        "created": [entity_payload(info) for info in result.created],
        "shareLink": link_payload(result.share_link) if result.share_link else None,
    }


@router.get("")
async def list_files(
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    """All files and folders owned by the caller, newest first."""
    return [entity_payload(info) for info in await cumulus.list_files(caller)]


@router.get("/list")
async def list_directory(
    path: str = Query("/", description="Folder path, e.g. /Docs/2024/"),
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    items = await cumulus.list_dir(caller, path)
    return {"path": path, "items": [entity_payload(info) for info in items]}


@router.get("/shared-with-me")
async def shared_with_me(
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    return [entity_payload(info) for info in await cumulus.shared_with_me(caller)]


@router.get("/storage")
async def storage_usage(
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    return storage_payload(await cumulus.storage_usage(caller))


@router.post("/folder", status_code=status.HTTP_201_CREATED)
async def create_folder(
    body: CreateFolderRequest,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    return entity_payload(await cumulus.create_folder(caller, body.path, body.name))


@router.put("/move")
async def move_entity(
    body: MoveRequest,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    return entity_payload(await cumulus.move(caller, body.id, body.destination_path, body.new_name))


@router.get("/download/{entity_id}")
async def download_file(
    entity_id: str,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    """Signed, short-lived URL for a file the caller owns or was shared."""
    return access_payload(await cumulus.download(caller, entity_id))


@router.get("/preview/{entity_id}")
async def preview_image(
    entity_id: str,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    """Redirect the owner to a signed URL of an image file."""
    return RedirectResponse(await cumulus.preview(caller, entity_id), status_code=status.HTTP_302_FOUND)


@router.post("/share")
async def share_with_user(
    body: ShareWithUserRequest,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    created = await cumulus.share_with(
        caller, body.file_id, user_id=body.target_user_id, email=body.target_email
    )
    return {"message": "File shared" if created else "File already shared with this user"}


@router.post("/unshare")
async def unshare_with_user(
    body: ShareWithUserRequest,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    removed = await cumulus.unshare_with(
        caller, body.file_id, user_id=body.target_user_id, email=body.target_email
    )
    return {"message": "Access removed" if removed else "File was not shared with this user"}


@router.patch("/{entity_id}/access")
async def update_access_level(
    entity_id: str,
    body: AccessLevelRequest,
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    return entity_payload(await cumulus.set_access_level(caller, entity_id, body.access_level))


@router.delete("/{entity_id}")
async def delete_entity(
    entity_id: str,
    recursive: bool = Query(False, description="Delete a non-empty folder and its contents"),
    caller: Caller = Depends(require_caller),
    cumulus: Cumulus = Depends(get_cumulus),
):
    removed = await cumulus.delete(caller, entity_id, recursive=recursive)
    return {"message": "Deleted", "deleted": removed}
