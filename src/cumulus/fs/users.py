"""In-memory ``UserDirectory`` for tests and single-process deployments."""

from __future__ import annotations

from collections.abc import Mapping


class StaticUserDirectory:
    """User directory backed by a fixed ``email -> user_id`` mapping.

    Emails are matched case-insensitively.
    """

    def __init__(self, users: Mapping[str, str] | None = None) -> None:
        self._by_email = {e.strip().lower(): uid for e, uid in (users or {}).items()}
        self._ids = set(self._by_email.values())

    def add(self, email: str, user_id: str) -> None:
        self._by_email[email.strip().lower()] = user_id
        self._ids.add(user_id)

    async def find_id_by_email(self, email: str) -> str | None:
        if not email:
            return None
        return self._by_email.get(email.strip().lower())

    async def exists(self, user_id: str) -> bool:
        return user_id in self._ids
