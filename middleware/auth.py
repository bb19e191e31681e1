"""Middleware that requires a signed-in identity."""

from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.types import Message, CallbackQuery, TelegramObject

from services.identity import IdentityProvider
from services.sessions import SessionRegistry
from utils.logger import logger


def _is_start_command(event: TelegramObject) -> bool:
    return isinstance(event, Message) and (event.text or "").lstrip().startswith("/start")


class AuthMiddleware(BaseMiddleware):
    """
    Passes only updates from signed-in users.

    Injects `identity` and the session's read models (`views`) into handler
    data. `/start` goes through unauthenticated so the user can sign in.
    """

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        user = None
        if isinstance(event, (Message, CallbackQuery)):
            user = event.from_user

        if not user:
            return await handler(event, data)

        identity_provider: IdentityProvider = data["identity_provider"]
        sessions: SessionRegistry = data["sessions"]

        identity = identity_provider.current(user.id)
        data["identity"] = identity
        data["views"] = sessions.get(user.id) if identity else None

        if identity is not None or _is_start_command(event):
            return await handler(event, data)

        logger.info(f"Update from signed-out user {user.id} ignored")
        if isinstance(event, Message):
            await event.answer("🔒 Please sign in first: send /start")
        else:
            await event.answer("Please sign in first: send /start", show_alert=True)
        return None
