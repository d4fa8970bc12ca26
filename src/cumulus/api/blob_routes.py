"""Signed blob retrieval for ``LocalDiskBlobStore`` deployments."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from cumulus._cumulus import Cumulus
from cumulus.api.deps import get_cumulus
from cumulus.fs.blobs import LocalDiskBlobStore
from cumulus.fs.exceptions import ForbiddenError, NotFoundError
from cumulus.fs.utils import guess_mime_type

router = APIRouter(tags=["Blobs"])


@router.get("/blobs/{key:path}")
async def get_blob(
    key: str,
    expires: int = Query(...),
    signature: str = Query(...),
    cumulus: Cumulus = Depends(get_cumulus),
):
    """Serve blob bytes for a URL issued by ``signed_get_url`` that has not expired."""
    store = cumulus.blob_store
    if not isinstance(store, LocalDiskBlobStore):
        raise NotFoundError("Blob retrieval is served by the blob store")
    if not store.verify_signature(key, expires, signature):
        raise ForbiddenError("Invalid or expired signature")

    data = await store.get(key)
    return Response(content=data, media_type=guess_mime_type(key.rsplit("/", 1)[-1]))
