"""Authentication capability consumed by the session orchestrator.

Authentication itself lives outside this package; the orchestrator only asks
"who is signed in right now?" once per operation.
"""

from __future__ import annotations

from typing import Optional, Protocol

from .models import CurrentUser


class AuthProvider(Protocol):
    async def get_current_user(self) -> Optional[CurrentUser]:  # pragma: no cover - protocol definition
        """Return the signed-in user, ``None`` when anonymous.

        Raise :class:`~aria_sessions.errors.RemoteUnavailable` when the
        identity service cannot be reached.
        """
        ...


class StaticAuth:
    """Resolves to a fixed user id (request headers, tests, scripts)."""

    def __init__(self, user_id: Optional[str] = None) -> None:
        self.user_id = user_id.strip() if isinstance(user_id, str) and user_id.strip() else None

    async def get_current_user(self) -> Optional[CurrentUser]:
        if self.user_id is None:
            return None
        return CurrentUser(id=self.user_id)


__all__ = ["AuthProvider", "StaticAuth"]
