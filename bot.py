"""Bot entry point."""

import asyncio

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from config import settings
from database.db import init_db, close_db, async_session_maker
from database.rules import AccessRules
from database.store import DocumentStore
from middleware.auth import AuthMiddleware
from handlers import start, booking, user, admin
from scheduler.tasks import setup_scheduler
from services.bookings import BookingCoordinator
from services.catalog import EquipmentCatalog
from services.identity import IdentityProvider
from services.sessions import SessionRegistry
from utils.logger import logger


def build_dispatcher(store: DocumentStore, app_id: str, admin_ids: set[int]) -> Dispatcher:
    """Dispatcher with routers, auth middleware and the services as workflow data."""
    identity_provider = IdentityProvider(admin_ids)
    coordinator = BookingCoordinator(store, app_id)

    dp = Dispatcher(
        store=store,
        identity_provider=identity_provider,
        sessions=SessionRegistry(store, app_id, identity_provider),
        catalog=EquipmentCatalog(store, app_id),
        coordinator=coordinator,
        scheduler=setup_scheduler(coordinator, settings.reconcile_interval_minutes),
    )

    dp.message.middleware(AuthMiddleware())
    dp.callback_query.middleware(AuthMiddleware())

    dp.include_router(start.router)
    dp.include_router(booking.router)
    dp.include_router(user.router)
    dp.include_router(admin.router)

    dp.startup.register(on_startup)
    dp.shutdown.register(on_shutdown)
    return dp


async def on_startup(bot: Bot, dispatcher: Dispatcher) -> None:
    logger.info("Bot starting...")

    await init_db()

    dispatcher["scheduler"].start()
    logger.info(f"Scheduler started, reconciliation every {settings.reconcile_interval_minutes} min")

    bot_info = await bot.get_me()
    logger.info(f"Bot started: @{bot_info.username}")


async def on_shutdown(bot: Bot, dispatcher: Dispatcher) -> None:
    logger.info("Bot shutting down...")

    dispatcher["scheduler"].shutdown(wait=True)
    logger.info("Scheduler stopped")

    await dispatcher["sessions"].close_all()
    await close_db()

    logger.info("Bot stopped")


async def main() -> None:
    missing = settings.missing_settings()
    if missing:
        logger.error(f"Not configured: set {', '.join(missing)} in the environment or .env file")
        return

    bot = Bot(
        token=settings.bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML)
    )

    store = DocumentStore(async_session_maker, AccessRules(settings.app_id))
    dp = build_dispatcher(store, settings.app_id, settings.admin_ids)

    logger.info("Starting polling...")
    try:
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        await bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
