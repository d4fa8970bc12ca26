"""FastAPI dependencies: the facade, the caller, and a bearer-token identity resolver."""

from __future__ import annotations

from collections.abc import Mapping

from fastapi import Depends, HTTPException, Request, status

from cumulus._cumulus import Cumulus
from cumulus.fs.access import Caller


class BearerTokenIdentityResolver:
    """Maps static ``Authorization: Bearer <token>`` values to callers.

    Unknown or missing tokens resolve to the anonymous caller; whether
    that is acceptable is up to the route.
    """

    def __init__(self, tokens: Mapping[str, Caller]) -> None:
        self._tokens = dict(tokens)

    def add(self, token: str, caller: Caller) -> None:
        self._tokens[token] = caller

    async def resolve(self, request: Request) -> Caller:
        authorization = request.headers.get("authorization", "")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            return Caller.anonymous()
        return self._tokens.get(token.strip(), Caller.anonymous())


def get_cumulus(request: Request) -> Cumulus:
    return request.app.state.cumulus


async def get_caller(request: Request) -> Caller:
    """Resolved caller, possibly anonymous."""
    caller = await request.app.state.identity.resolve(request)
    if caller.is_authenticated:
        request.state.user_id = caller.id
    return caller


async def require_caller(caller: Caller = Depends(get_caller)) -> Caller:
    """Resolved caller; 401 when the request carries no valid credentials."""
    if not caller.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return caller
