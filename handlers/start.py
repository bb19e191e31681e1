"""Sign-in, sign-out and main menu handlers."""

from aiogram import Bot, Router, F
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.types import Message, CallbackQuery, User
from aiogram import html

from keyboards.inline import get_main_menu_keyboard
from services.identity import Identity, IdentityProvider
from services.sessions import SessionRegistry
from utils.errors import StoreError
from utils.logger import logger


router = Router(name="start")


def main_menu_text(identity: Identity) -> str:
    role = "\nYou are signed in as an administrator." if identity.is_admin else ""
    return (
        f"👋 Hello, {html.quote(identity.display_name)}!\n\n"
        f"This bot books laboratory equipment.{role}\n"
        f"Choose an action:"
    )


async def _profile_photo(bot: Bot, user: User) -> str | None:
    """File id of the user's current profile photo, if any."""
    try:
        photos = await bot.get_user_profile_photos(user.id, limit=1)
    except TelegramAPIError as e:
        logger.warning(f"Could not load profile photo for {user.id}: {e}")
        return None
    if not photos.photos:
        return None
    return photos.photos[0][-1].file_id


@router.message(CommandStart())
async def cmd_start(
    message: Message,
    bot: Bot,
    state: FSMContext,
    identity_provider: IdentityProvider,
    sessions: SessionRegistry,
) -> None:
    """
    Handle /start command.

    Signs the Telegram account in, opens its read models and shows the main menu.
    """
    await state.clear()

    photo_url = await _profile_photo(bot, message.from_user)
    identity = await identity_provider.sign_in(message.from_user, photo_url=photo_url)

    try:
        await sessions.ensure(message.from_user.id, identity)
    except StoreError as e:
        logger.error(f"Could not open read models for {identity.user_id}: {e}")
        await message.answer("❌ The booking data is unavailable right now. Please send /start again later.")
        return

    await message.answer(
        main_menu_text(identity),
        reply_markup=get_main_menu_keyboard(is_admin=identity.is_admin)
    )


@router.message(Command("signout"))
async def cmd_signout(message: Message, state: FSMContext, identity_provider: IdentityProvider) -> None:
    await state.clear()
    await identity_provider.sign_out(message.from_user.id)
    await message.answer("👋 You are signed out. Send /start to sign in again.")


@router.callback_query(F.data == "menu:signout")
async def callback_signout(callback: CallbackQuery, state: FSMContext, identity_provider: IdentityProvider) -> None:
    await state.clear()
    await identity_provider.sign_out(callback.from_user.id)
    await callback.message.edit_text("👋 You are signed out. Send /start to sign in again.")
    await callback.answer()


@router.callback_query(F.data == "menu:main")
async def callback_main_menu(callback: CallbackQuery, state: FSMContext, identity: Identity) -> None:
    await state.clear()
    await callback.message.edit_text(
        main_menu_text(identity),
        reply_markup=get_main_menu_keyboard(is_admin=identity.is_admin)
    )
    await callback.answer()


@router.callback_query(F.data == "noop")
async def callback_noop(callback: CallbackQuery) -> None:
    await callback.answer()
