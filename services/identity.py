"""Identity provider backed by Telegram accounts.

Telegram authenticates the person behind every update; signing in turns that
account into an `Identity` for one chat session. The admin claim is issued
here from server configuration (`ADMIN_IDS`).
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from utils.logger import logger


@dataclass(frozen=True)
class Identity:
    user_id: str
    display_name: str
    photo_url: str | None = None
    is_admin: bool = False


AuthStateCallback = Callable[[int, Identity | None], Awaitable[None]]


class IdentityProvider:
    """Tracks the signed-in identity of each session and notifies listeners on change."""

    def __init__(self, admin_ids: set[int] | None = None):
        self.admin_ids = set(admin_ids or ())
        self._identities: dict[int, Identity] = {}
        self._callbacks: list[AuthStateCallback] = []

    def current(self, session_key: int) -> Identity | None:
        return self._identities.get(session_key)

    async def sign_in(self, user, photo_url: str | None = None) -> Identity:
        """
        Sign in a Telegram user.

        Args:
            user: aiogram `User` (anything with id, full_name and username)
            photo_url: Profile photo reference, if known

        Returns:
            Identity bound to the user's session
        """
        display_name = user.full_name or user.username or "User"
        identity = Identity(
            user_id=str(user.id),
            display_name=display_name,
            photo_url=photo_url,
            is_admin=user.id in self.admin_ids,
        )

        previous = self._identities.get(user.id)
        self._identities[user.id] = identity
        if previous != identity:
            logger.info(f"User {identity.user_id} ({display_name}) signed in, admin={identity.is_admin}")
            await self._notify(user.id, identity)
        return identity

    async def sign_out(self, session_key: int) -> None:
        if self._identities.pop(session_key, None) is None:
            return
        logger.info(f"User {session_key} signed out")
        await self._notify(session_key, None)

    def on_auth_state_changed(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Register `callback(session_key, identity_or_none)`; returns the unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def _notify(self, session_key: int, identity: Identity | None) -> None:
        for callback in list(self._callbacks):
            try:
                await callback(session_key, identity)
            except Exception as e:
                logger.error(f"Auth state callback failed for {session_key}: {e}", exc_info=True)
