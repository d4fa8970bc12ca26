"""FastAPI application factory and error mapping."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from cumulus import __version__
from cumulus._cumulus import Cumulus
from cumulus.api.blob_routes import router as blob_router
from cumulus.api.file_routes import router as file_router
from cumulus.api.share_routes import router as share_router
from cumulus.fs.exceptions import BlobNotFoundError, CumulusError, ErrorKind
from cumulus.fs.protocol import IdentityResolver

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_PATH: 422,
    ErrorKind.DUPLICATE_ENTITY: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.GONE: 410,
    ErrorKind.CONFLICT: 409,
    ErrorKind.VALIDATION: 422,
    ErrorKind.STORE: 500,
    ErrorKind.BLOB: 502,
}


def status_for(exc: CumulusError) -> int:
    if isinstance(exc, BlobNotFoundError):
        return status.HTTP_404_NOT_FOUND
    return STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def cumulus_error_handler(request: Request, exc: CumulusError) -> JSONResponse:
    status_code = status_for(exc)
    user_id = getattr(request.state, "user_id", None)
    if status_code >= 500:
        logger.error(
            "%s error on %s [user_id=%s]: %s",
            exc.kind.value, request.url.path, user_id or "anonymous", exc, exc_info=exc,
        )
    else:
        logger.warning(
            "%s error on %s [user_id=%s]: %s",
            exc.kind.value, request.url.path, user_id or "anonymous", exc,
        )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": exc.kind.value.upper()},
    )


def create_app(cumulus: Cumulus, identity: IdentityResolver) -> FastAPI:
    """Build the HTTP app around an existing facade and identity resolver.

    The facade's lifecycle (``create_tables``, ``close``) stays with the caller.
    """
    app = FastAPI(
        title="Cumulus",
        description="Multi-tenant file storage with share links",
        version=__version__,
    )
    app.state.cumulus = cumulus
    app.state.identity = identity

    app.add_exception_handler(CumulusError, cumulus_error_handler)  # type: ignore[arg-type]
    app.include_router(file_router)
    app.include_router(share_router)
    app.include_router(blob_router)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "version": __version__}

    return app
