"""ShareLinkService — create, access, revoke, and claim token-addressed links.

Stateless service that receives the link models at construction and a
session at call time.  Gate order on every link use is fixed:

1. the token resolves to a link whose file still exists  (NotFound)
2. not revoked                                            (Gone)
3. not expired                                            (Gone)
4. under its access limit                                 (Forbidden)
5. password present and correct, when one is set          (Unauthorized / Forbidden)
6. caller allowed by scope                                (Forbidden)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import and_, delete, or_, update
from sqlmodel import select

from cumulus.models.share_links import LinkScope, RecipientKind

from .access import Caller, require_write
from .dialect import insert_if_absent
from .exceptions import (
    ConflictError,
    DuplicateEntityError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from .security import DEFAULT_BCRYPT_ROUNDS, generate_token, hash_password, verify_password
from .types import AccessResult, EncryptionInfo, LinkState, ShareLinkInfo, ShareOptions, UnseenLink
from .utils import as_utc, short_token

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from cumulus.models.entities import EntityBase
    from cumulus.models.share_links import ShareLinkBase, ShareLinkRecipientBase, ShareLinkViewBase

    from .entities import EntityService
    from .protocol import BlobStore

logger = logging.getLogger(__name__)

VIEW_KEY = ["link_id", "user_id"]
MAX_PASSWORD_BYTES = 72  # bcrypt input limit


def link_state(link: ShareLinkBase, now: datetime) -> LinkState:
    """Derive the lifecycle state of *link* at *now*."""
    if link.revoked_at is not None:
        return LinkState.REVOKED
    expires_at = as_utc(link.expires_at)
    if expires_at is not None and now > expires_at:
        return LinkState.EXPIRED
    if link.max_access is not None and link.access_count >= link.max_access:
        return LinkState.EXHAUSTED
    return LinkState.ACTIVE


def normalize_emails(emails: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for email in emails:
        cleaned = (email or "").strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


def _dedupe(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


class ShareLinkService:
    """Token-addressable, optionally restricted or password-protected access grants.

    *clock* returns the current UTC time; tests inject a fixed clock to
    exercise expiry without sleeping.
    """

    def __init__(
        self,
        link_model: type[ShareLinkBase],
        view_model: type[ShareLinkViewBase],
        recipient_model: type[ShareLinkRecipientBase],
        entities: EntityService,
        blob_store: BlobStore,
        *,
        base_url: str = "",
        share_path: str = "/share",
        signed_url_ttl: int = 300,
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
        enforce_scope_on_claim: bool = False,
        clock: Callable[[], datetime] | None = None,
        dialect: str = "sqlite",
        schema: str | None = None,
    ) -> None:
        self._link_model = link_model
        self._view_model = view_model
        self._recipient_model = recipient_model
        self._entities = entities
        self._blob_store = blob_store
        self.base_url = base_url.rstrip("/")
        self.share_path = "/" + share_path.strip("/")
        self.signed_url_ttl = signed_url_ttl
        self.bcrypt_rounds = bcrypt_rounds
        self.enforce_scope_on_claim = enforce_scope_on_claim
        self._clock = clock or (lambda: datetime.now(UTC))
        self.dialect = dialect
        self.schema = schema

    def _now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def share_url(self, token: str) -> str:
        return f"{self.base_url}{self.share_path}/{token}"

    def link_to_info(self, link: ShareLinkBase, now: datetime | None = None) -> ShareLinkInfo:
        """Convert a link record to ShareLinkInfo. Never exposes the password hash."""
        return ShareLinkInfo(
            token=link.token,
            share_url=self.share_url(link.token),
            entity_id=link.entity_id,
            scope=link.scope,
            state=link_state(link, now or self._now()),
            allowed_users=list(link.allowed_users or []),
            allowed_emails=list(link.allowed_emails or []),
            protected=link.password_hash is not None,
            expires_at=as_utc(link.expires_at),
            max_access=link.max_access,
            access_count=link.access_count,
            revoked_at=as_utc(link.revoked_at),
            created_at=as_utc(link.created_at),
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(self, session: AsyncSession, token: str) -> ShareLinkBase | None:
        if not token:
            return None
        model = self._link_model
        result = await session.execute(select(model).where(model.token == token))
        return result.scalar_one_or_none()

    async def _resolve(self, session: AsyncSession, token: str) -> tuple[ShareLinkBase, EntityBase]:
        link = await self.get(session, token)
        if link is None:
            raise NotFoundError("Share link not found")
        entity = await self._entities.get_by_id(session, link.entity_id)
        if entity is None:
            raise NotFoundError("Share link not found")
        return link, entity

    async def list_for_entity(
        self,
        session: AsyncSession,
        entity_id: str,
        caller: Caller,
    ) -> list[ShareLinkInfo]:
        """All links (any state) on an entity, for its owner."""
        entity = await self._entities.get_by_id(session, entity_id)
        if entity is None:
            raise NotFoundError("File not found")
        require_write(entity, caller)

        model = self._link_model
        result = await session.execute(
            select(model)
            .where(model.entity_id == entity_id)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        now = self._now()
        return [self.link_to_info(link, now) for link in result.scalars().all()]

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    @staticmethod
    def _check_state(link: ShareLinkBase, now: datetime) -> None:
        state = link_state(link, now)
        if state is LinkState.REVOKED:
            raise GoneError("Link revoked")
        if state is LinkState.EXPIRED:
            raise GoneError("Link expired")
        if state is LinkState.EXHAUSTED:
            raise ForbiddenError("Max access limit reached")

    async def _check_password(self, link: ShareLinkBase, password: str | None) -> None:
        if link.password_hash is None:
            return
        if not password:
            raise UnauthorizedError("Password required")
        if not await asyncio.to_thread(verify_password, password, link.password_hash):
            raise ForbiddenError("Incorrect password")

    @staticmethod
    def _check_scope(link: ShareLinkBase, caller: Caller | None) -> None:
        if link.scope != LinkScope.RESTRICTED.value:
            return
        if caller is None or not caller.is_authenticated:
            raise ForbiddenError("Not allowed for this link")
        if caller.id in (link.allowed_users or []):
            return
        email = caller.email_lower
        if email and email in {e.lower() for e in link.allowed_emails or []}:
            return
        raise ForbiddenError("Not allowed for this link")

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        session: AsyncSession,
        entity_id: str,
        caller: Caller,
        options: ShareOptions | None = None,
    ) -> ShareLinkInfo:
        """Create a link on a file owned by *caller*. Flushes but does not commit."""
        options = options or ShareOptions()

        entity = await self._entities.get_by_id(session, entity_id)
        if entity is None:
            raise NotFoundError("File not found")
        require_write(entity, caller)
        if entity.is_folder:
            raise ValidationError("Share links can only point at files")

        valid_scopes = {s.value for s in LinkScope}
        if options.scope not in valid_scopes:
            raise ValidationError(f"Invalid scope: {options.scope!r}")
        if options.expires_in_seconds is not None and options.expires_in_seconds <= 0:
            raise ValidationError("expires_in must be positive")
        if options.max_access is not None and options.max_access < 1:
            raise ValidationError("max_access must be at least 1")

        password_hash = None
        if options.password:
            if len(options.password.encode("utf-8")) > MAX_PASSWORD_BYTES:
                raise ValidationError(f"Password too long (max {MAX_PASSWORD_BYTES} bytes)")
            password_hash = await asyncio.to_thread(
                hash_password, options.password, self.bcrypt_rounds
            )

        allowed_emails: list[str] = []
        allowed_users: list[str] = []
        if options.scope == LinkScope.RESTRICTED.value:
            allowed_emails = normalize_emails(options.allowed_emails)
            allowed_users = _dedupe(options.allowed_user_ids)

        now = self._now()
        expires_at = None
        if options.expires_in_seconds is not None:
            expires_at = now + timedelta(seconds=options.expires_in_seconds)

        link = self._link_model(
            id=str(uuid.uuid4()),
            token=generate_token(),
            entity_id=entity.id,
            created_by=caller.id,
            scope=options.scope,
            allowed_users=allowed_users,
            allowed_emails=allowed_emails,
            password_hash=password_hash,
            expires_at=expires_at,
            max_access=options.max_access,
            access_count=0,
            encryption_type=entity.encryption_type,
            encryption_iv=entity.encryption_iv,
            encryption_wrapped_key=entity.encryption_wrapped_key,
            created_at=now,
            updated_at=now,
        )
        session.add(link)
        for kind, values in ((RecipientKind.USER, allowed_users), (RecipientKind.EMAIL, allowed_emails)):
            for value in values:
                session.add(self._recipient_model(link_id=link.id, kind=kind.value, value=value))
        await session.flush()

        logger.info(
            "Created %s link %s on %s (protected=%s)",
            link.scope,
            short_token(link.token),
            entity.id,
            password_hash is not None,
        )
        return self.link_to_info(link, now)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def access(
        self,
        session: AsyncSession,
        token: str,
        password: str | None = None,
        caller: Caller | None = None,
    ) -> AccessResult:
        """Pass every gate, count the access, and return a signed download URL."""
        link, entity = await self._resolve(session, token)
        now = self._now()

        self._check_state(link, now)
        await self._check_password(link, password)
        self._check_scope(link, caller)

        # The ceiling is re-checked inside the increment so concurrent
        # accesses cannot push the count past max_access.
        model = self._link_model
        ceiling = or_(
            model.max_access.is_(None),  # type: ignore[union-attr]
            model.access_count < model.max_access,  # type: ignore[operator]
        )
        result = await session.execute(
            update(model)
            .where(model.id == link.id, ceiling)  # type: ignore[arg-type]
            .values(access_count=model.access_count + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:  # type: ignore[union-attr]
            raise ForbiddenError("Max access limit reached")

        if caller is not None and caller.is_authenticated:
            await insert_if_absent(
                session,
                self.dialect,
                model=self._view_model,
                values={
                    "id": str(uuid.uuid4()),
                    "link_id": link.id,
                    "user_id": caller.id,
                    "seen_at": now,
                },
                conflict_keys=VIEW_KEY,
                schema=self.schema,
            )
        await session.refresh(link)

        assert entity.blob_key is not None
        url = await self._blob_store.signed_get_url(entity.blob_key, self.signed_url_ttl)

        logger.debug("Access %d on link %s", link.access_count, short_token(link.token))
        return AccessResult(
            download_url=url,
            expires_in=self.signed_url_ttl,
            file=self._entities.entity_to_info(entity),
            encryption=EncryptionInfo(
                type=link.encryption_type,
                iv=link.encryption_iv,
                wrapped_key=link.encryption_wrapped_key,
            ),
            access_count=link.access_count,
        )

    # ------------------------------------------------------------------
    # Revoke / claim
    # ------------------------------------------------------------------

    async def revoke(self, session: AsyncSession, token: str, caller: Caller) -> ShareLinkInfo:
        """Soft-revoke a link. Only its creator may do this; repeating is a no-op."""
        link = await self.get(session, token)
        if link is None:
            raise NotFoundError("Share link not found")
        if not caller.is_authenticated or caller.id != link.created_by:
            raise ForbiddenError("Only the link creator can revoke it")

        now = self._now()
        if link.revoked_at is None:
            link.revoked_at = now
            link.updated_at = now
            await session.flush()
            logger.info("Revoked link %s", short_token(link.token))
        return self.link_to_info(link, now)

    async def add_to_account(
        self,
        session: AsyncSession,
        token: str,
        caller: Caller,
        password: str | None = None,
    ) -> EntityBase:
        """Copy the linked file's record into the caller's root folder.

        The copy shares the original blob.  Scope is only checked when
        ``enforce_scope_on_claim`` is set.  The access count is not touched.
        """
        if not caller.is_authenticated:
            raise ForbiddenError("Sign in to add files to your account")

        link, entity = await self._resolve(session, token)
        self._check_state(link, self._now())
        await self._check_password(link, password)
        if self.enforce_scope_on_claim:
            self._check_scope(link, caller)

        try:
            copy = await self._entities.create_file(
                session,
                owner_id=caller.id,  # type: ignore[arg-type]
                parent_path="/",
                name=entity.name,
                blob_key=entity.blob_key or "",
                original_name=entity.original_name,
                mime_type=entity.mime_type,
                size_bytes=entity.size_bytes,
                encryption=EncryptionInfo(
                    type=entity.encryption_type,
                    iv=entity.encryption_iv,
                    wrapped_key=entity.encryption_wrapped_key,
                ),
            )
        except DuplicateEntityError as e:
            raise ConflictError(f"File with the same name already exists: /{entity.name}") from e

        logger.info("User %s claimed %s via link %s", caller.id, entity.id, short_token(link.token))
        return copy

    # ------------------------------------------------------------------
    # Listing / housekeeping
    # ------------------------------------------------------------------

    async def list_unseen(self, session: AsyncSession, caller: Caller) -> list[UnseenLink]:
        """Restricted links naming *caller* that the caller has not opened yet.

        Revoked and expired links are left out.
        """
        if not caller.is_authenticated:
            return []

        model = self._link_model
        view = self._view_model
        recipient = self._recipient_model
        now = self._now()

        named = [and_(recipient.kind == RecipientKind.USER.value, recipient.value == caller.id)]
        if caller.email_lower:
            named.append(
                and_(recipient.kind == RecipientKind.EMAIL.value, recipient.value == caller.email_lower)
            )
        recipient_of = select(recipient.link_id).where(or_(*named))
        seen = select(view.link_id).where(view.user_id == caller.id)

        result = await session.execute(
            select(model)
            .where(
                model.id.in_(recipient_of),  # type: ignore[union-attr]
                model.id.not_in(seen),  # type: ignore[union-attr]
                model.scope == LinkScope.RESTRICTED.value,
                model.revoked_at.is_(None),  # type: ignore[union-attr]
                or_(model.expires_at.is_(None), model.expires_at > now),  # type: ignore[union-attr,operator]
            )
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )

        unseen: list[UnseenLink] = []
        for link in result.scalars().all():
            entity = await self._entities.get_by_id(session, link.entity_id)
            if entity is None:
                continue
            unseen.append(
                UnseenLink(
                    token=link.token,
                    file=self._entities.entity_to_info(entity),
                    created_by=link.created_by,
                    created_at=as_utc(link.created_at),
                    expires_at=as_utc(link.expires_at),
                )
            )
        return unseen

    async def purge_expired(self, session: AsyncSession, older_than: datetime | None = None) -> int:
        """Hard-delete links that expired before *older_than* (default: now).

        Returns the number of links removed.
        """
        cutoff = older_than or self._now()
        model = self._link_model
        view = self._view_model
        recipient = self._recipient_model

        result = await session.execute(
            select(model.id).where(
                model.expires_at.is_not(None),  # type: ignore[union-attr]
                model.expires_at < cutoff,  # type: ignore[operator]
            )
        )
        ids = list(result.scalars().all())
        if not ids:
            return 0

        await session.execute(delete(view).where(view.link_id.in_(ids)))  # type: ignore[attr-defined]
        await session.execute(delete(recipient).where(recipient.link_id.in_(ids)))  # type: ignore[attr-defined]
        await session.execute(delete(model).where(model.id.in_(ids)))  # type: ignore[attr-defined]
        await session.flush()
        logger.info("Purged %d expired share links", len(ids))
        return len(ids)
