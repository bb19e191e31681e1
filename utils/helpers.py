"""Helpers: time zones, parsing and formatting for display."""

from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from aiogram import html

from config import settings

if TYPE_CHECKING:
    from database.schemas import Booking

UTC = timezone.utc


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.timezone)


def now_utc() -> datetime:
    """Current time in UTC (timezone-aware)."""
    return datetime.now(UTC)


def now_local() -> datetime:
    """Current local time without tzinfo. Use now_utc() for storage and comparisons."""
    return datetime.now(local_tz()).replace(tzinfo=None)


def to_local(dt: datetime) -> datetime:
    """Convert an aware datetime to the configured zone for display."""
    return dt.astimezone(local_tz())


def parse_local(date_str: str, time_str: str) -> datetime:
    """Parse a date and time entered in the configured zone and return a UTC-aware datetime."""
    naive = datetime.strptime(f"{date_str} {time_str}", "%Y-%m-%d %H:%M")
    return naive.replace(tzinfo=local_tz()).astimezone(UTC)


def booking_date_range() -> tuple[date, date]:
    """First and last local dates a new booking may start on."""
    today = now_local().date()
    return today, today + timedelta(days=settings.max_future_booking_days)


def time_slots(
    start_hour: int | None = None,
    end_hour: int | None = None,
    step_minutes: int | None = None,
) -> list[str]:
    """Bookable "HH:MM" slots of the working day, both ends included."""
    start_hour = settings.workday_start_hour if start_hour is None else start_hour
    end_hour = settings.workday_end_hour if end_hour is None else end_hour
    step = timedelta(minutes=step_minutes or settings.slot_minutes)

    current = datetime(2000, 1, 1, start_hour)
    last = datetime(2000, 1, 1, end_hour)
    slots = []
    while current <= last:
        slots.append(current.strftime("%H:%M"))
        current += step
    return slots


def format_datetime(dt: datetime | None, format_type: str = "user") -> str:
    """
    Format a datetime in the configured zone.

    format_type: "user" → Oct 19, 2026 08:30, "report" → 2026-10-19 08:30, "short" → 19.10 08:30
    """
    if dt is None:
        return "N/A"

    dt = to_local(dt) if dt.tzinfo else dt

    if format_type == "report":
        return dt.strftime("%Y-%m-%d %H:%M")
    elif format_type == "short":
        return dt.strftime("%d.%m %H:%M")
    return dt.strftime("%b %d, %Y %H:%M")


def format_duration(start: datetime, end: datetime) -> str:
    duration = end - start
    hours = int(duration.total_seconds() // 3600)
    minutes = int((duration.total_seconds() % 3600) // 60)
    if hours and minutes:
        return f"{hours}h {minutes}m"
    return f"{hours}h" if hours else f"{minutes}m"


def format_booking_info(booking: "Booking", verbose: bool = False) -> str:
    """
    Format a booking for display.

    verbose=True adds the owner and the booking/cancellation timestamps.
    """
    status_text = "✅ Booked" if booking.is_booked else "❌ Cancelled"

    lines = [
        f"<b>{html.quote(booking.equipment_name)}</b>",
        f"Status: {status_text}",
        "",
        f"<b>From:</b> {format_datetime(booking.start_date)}",
        f"<b>To:</b> {format_datetime(booking.end_date)}",
        f"<b>Duration:</b> {format_duration(booking.start_date, booking.end_date)}",
    ]

    if verbose:
        lines.append("")
        lines.append(f"<b>Booked by:</b> {html.quote(booking.user_display_name)}")
        lines.append(f"<b>Booked at:</b> {format_datetime(booking.booked_at)}")
        if booking.cancelled_at:
            lines.append(f"<b>Cancelled at:</b> {format_datetime(booking.cancelled_at)}")

    return "\n".join(lines)
