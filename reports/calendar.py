"""Calendar events for the admin dashboard."""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from database.schemas import Booking


@dataclass(frozen=True)
class CalendarEvent:
    title: str
    start: datetime
    end: datetime
    booking_id: str | None = None


def calendar_events(bookings: list[Booking]) -> list[CalendarEvent]:
    """Events for booked public bookings, ordered by start."""
    events = [
        CalendarEvent(
            title=f"{b.equipment_name} ({b.user_display_name})",
            start=b.start_date,
            end=b.end_date,
            booking_id=b.id,
        )
        for b in bookings
        if b.is_booked
    ]
    return sorted(events, key=lambda e: (e.start, e.title))


def _day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


def events_on_day(events: list[CalendarEvent], day: date, tz: ZoneInfo) -> list[CalendarEvent]:
    """Events that occupy any part of `day` in zone `tz`."""
    day_start, day_end = _day_bounds(day, tz)
    return [e for e in events if e.start < day_end and e.end > day_start]


def events_by_day(events: list[CalendarEvent], year: int, month: int, tz: ZoneInfo) -> dict[int, list[CalendarEvent]]:
    """Map day-of-month to the events touching that local day."""
    by_day: dict[int, list[CalendarEvent]] = defaultdict(list)
    day = date(year, month, 1)
    while day.month == month:
        todays = events_on_day(events, day, tz)
        if todays:
            by_day[day.day] = todays
        day += timedelta(days=1)
    return dict(by_day)
