"""Scheduler jobs: reconciliation of private and public booking copies."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from services.bookings import BookingCoordinator
from services.identity import Identity
from utils.logger import logger

# Principal used by background jobs; the admin claim lets it repair public copies.
SYSTEM_PRINCIPAL = Identity(user_id="system", display_name="System", is_admin=True)


async def reconcile_bookings(coordinator: BookingCoordinator) -> None:
    """
    Detect and repair drift between private and public booking copies.

    Runs every RECONCILE_INTERVAL_MINUTES. Errors are logged and never stop the scheduler.
    """
    try:
        report = await coordinator.reconcile(SYSTEM_PRINCIPAL)
        if report.repaired:
            logger.info(
                f"Reconciliation checked {report.checked} booking(s), repaired {report.repaired}"
            )
        else:
            logger.debug(f"Reconciliation checked {report.checked} booking(s), nothing to repair")

    except Exception as e:
        logger.error(f"Error in reconcile_bookings: {e}", exc_info=True)


def setup_scheduler(coordinator: BookingCoordinator, interval_minutes: int) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        reconcile_bookings,
        trigger="interval",
        minutes=interval_minutes,
        args=[coordinator],
        id="reconcile_bookings",
        replace_existing=True,
    )
    return scheduler
