"""Inline keyboards: menus, equipment list, calendar, time selection, bookings."""

from calendar import monthcalendar
from datetime import date, datetime, timedelta

from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton
from aiogram.utils.keyboard import InlineKeyboardBuilder

from database.schemas import Booking, Equipment
from utils.helpers import format_datetime, time_slots


# ============== MAIN MENU ==============

def get_main_menu_keyboard(is_admin: bool = False) -> InlineKeyboardMarkup:
    """
    Get main menu keyboard.

    Args:
        is_admin: Whether the signed-in user carries the admin claim

    Returns:
        InlineKeyboardMarkup with main menu buttons
    """
    builder = InlineKeyboardBuilder()

    builder.row(
        InlineKeyboardButton(
            text="🔬 Equipment",
            callback_data="menu:equipment"
        )
    )
    builder.row(
        InlineKeyboardButton(
            text="📋 My bookings",
            callback_data="menu:my_bookings"
        )
    )

    if is_admin:
        builder.row(
            InlineKeyboardButton(
                text="⚙️ Admin dashboard",
                callback_data="admin:main"
            )
        )

    builder.row(
        InlineKeyboardButton(
            text="🚪 Sign out",
            callback_data="menu:signout"
        )
    )

    return builder.as_markup()


def get_back_to_menu_keyboard() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()

    builder.row(
        InlineKeyboardButton(
            text="◀️ Main menu",
            callback_data="menu:main"
        )
    )

    return builder.as_markup()


# ============== EQUIPMENT LIST WITH PAGINATION ==============

ITEMS_PER_PAGE = 5


def _page_bounds(total_items: int, page: int) -> tuple[int, int, int]:
    total_pages = max(1, (total_items + ITEMS_PER_PAGE - 1) // ITEMS_PER_PAGE)
    page = max(0, min(page, total_pages - 1))
    return page, total_pages, page * ITEMS_PER_PAGE


def get_equipment_keyboard(
    equipment_list: list[Equipment],
    page: int = 0,
    callback_prefix: str = "equip",
    page_prefix: str = "page:equipment",
    back_callback: str = "menu:main",
) -> InlineKeyboardMarkup:
    """
    Get paginated equipment list keyboard.

    Args:
        equipment_list: Equipment items, already ordered
        page: Current page (0-indexed)
        callback_prefix: Prefix for item callbacks ("equip" for users, "admin:equipment" for admins)
        page_prefix: Prefix for navigation callbacks
        back_callback: Callback for the back button

    Returns:
        InlineKeyboardMarkup with equipment and navigation
    """
    builder = InlineKeyboardBuilder()

    page, total_pages, start_idx = _page_bounds(len(equipment_list), page)
    page_items = equipment_list[start_idx:start_idx + ITEMS_PER_PAGE]

    for item in page_items:
        builder.row(
            InlineKeyboardButton(
                text=f"🔹 {item.name}",
                callback_data=f"{callback_prefix}:{item.id}"
            )
        )

    if total_pages > 1:
        nav_buttons = []
        if page > 0:
            nav_buttons.append(
                InlineKeyboardButton(text="◀️", callback_data=f"{page_prefix}:{page - 1}")
            )
        nav_buttons.append(
            InlineKeyboardButton(text=f"{page + 1}/{total_pages}", callback_data="noop")
        )
        if page < total_pages - 1:
            nav_buttons.append(
                InlineKeyboardButton(text="▶️", callback_data=f"{page_prefix}:{page + 1}")
            )
        builder.row(*nav_buttons)

    builder.row(
        InlineKeyboardButton(text="◀️ Back", callback_data=back_callback)
    )

    return builder.as_markup()


def get_equipment_card_keyboard(equipment_id: str) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()

    builder.row(
        InlineKeyboardButton(text="📅 Book", callback_data=f"book:{equipment_id}")
    )
    builder.row(
        InlineKeyboardButton(text="◀️ To equipment", callback_data="menu:equipment")
    )

    return builder.as_markup()


# ============== CALENDAR ==============

WEEKDAYS = ["Mo", "Tu", "We", "Th", "Fr", "Sa", "Su"]
MONTHS = [
    "", "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December"
]


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def get_calendar_keyboard(
    year: int,
    month: int,
    callback_prefix: str = "date",
    min_date: date | None = None,
    max_date: date | None = None,
    marks: dict[int, int] | None = None,
    back_callback: str | None = None,
) -> InlineKeyboardMarkup:
    """
    Get calendar keyboard for date selection.

    Args:
        year: Year to display
        month: Month to display (1-12)
        callback_prefix: Prefix for day callbacks (date_start, date_end, admin_day)
        min_date: First selectable date, None for no lower bound
        max_date: Last selectable date, None for no upper bound
        marks: Day of month -> number of events, shown next to the day
        back_callback: Callback for "Back" button

    Returns:
        InlineKeyboardMarkup with calendar
    """
    builder = InlineKeyboardBuilder()
    marks = marks or {}

    prev_year, prev_month = _shift_month(year, month, -1)
    next_year, next_month = _shift_month(year, month, 1)

    header_buttons = []
    # Previous month is reachable when its last day is not before min_date
    if min_date is None or date(year, month, 1) - timedelta(days=1) >= min_date:
        header_buttons.append(
            InlineKeyboardButton(text="◀️", callback_data=f"cal:{callback_prefix}:{prev_year}:{prev_month}")
        )
    else:
        header_buttons.append(InlineKeyboardButton(text=" ", callback_data="noop"))

    header_buttons.append(
        InlineKeyboardButton(text=f"{MONTHS[month]} {year}", callback_data="noop")
    )

    if max_date is None or date(next_year, next_month, 1) <= max_date:
        header_buttons.append(
            InlineKeyboardButton(text="▶️", callback_data=f"cal:{callback_prefix}:{next_year}:{next_month}")
        )
    else:
        header_buttons.append(InlineKeyboardButton(text=" ", callback_data="noop"))

    builder.row(*header_buttons)

    builder.row(*[
        InlineKeyboardButton(text=day, callback_data="noop")
        for day in WEEKDAYS
    ])

    for week in monthcalendar(year, month):
        week_buttons = []
        for day in week:
            if day == 0:
                week_buttons.append(InlineKeyboardButton(text=" ", callback_data="noop"))
                continue

            current = date(year, month, day)
            selectable = (min_date is None or current >= min_date) and (max_date is None or current <= max_date)
            if not selectable:
                week_buttons.append(InlineKeyboardButton(text="·", callback_data="noop"))
                continue

            text = f"{day}•{marks[day]}" if marks.get(day) else str(day)
            week_buttons.append(
                InlineKeyboardButton(text=text, callback_data=f"{callback_prefix}:{current.isoformat()}")
            )
        builder.row(*week_buttons)

    nav = []
    if back_callback:
        nav.append(InlineKeyboardButton(text="◀️ Back", callback_data=back_callback))
    nav.append(InlineKeyboardButton(text="🏠 Main menu", callback_data="menu:main"))
    builder.row(*nav)

    return builder.as_markup()


# ============== TIME SELECTION ==============

def get_time_keyboard(
    callback_prefix: str = "time",
    min_time: datetime | None = None,
    back_callback: str | None = None,
) -> InlineKeyboardMarkup:
    """
    Get time selection keyboard over the working day.

    Args:
        callback_prefix: Prefix for time callbacks (time_start or time_end)
        min_time: If set, hide slots at or before this local time
        back_callback: Callback for "Back" button

    Returns:
        InlineKeyboardMarkup with time slots
    """
    builder = InlineKeyboardBuilder()

    times = time_slots()
    if min_time is not None:
        threshold = min_time.strftime("%H:%M")
        times = [t for t in times if t > threshold]

    # Rows of 4
    row = []
    for time_str in times:
        row.append(
            InlineKeyboardButton(text=time_str, callback_data=f"{callback_prefix}:{time_str}")
        )
        if len(row) == 4:
            builder.row(*row)
            row = []

    if row:
        builder.row(*row)

    if not times:
        builder.row(InlineKeyboardButton(text="⚠️ No time available", callback_data="noop"))

    nav = []
    if back_callback:
        nav.append(InlineKeyboardButton(text="◀️ Back", callback_data=back_callback))
    nav.append(InlineKeyboardButton(text="🏠 Main menu", callback_data="menu:main"))
    builder.row(*nav)

    return builder.as_markup()


# ============== BOOKING CONFIRMATION ==============

def get_booking_confirm_keyboard() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()

    builder.row(
        InlineKeyboardButton(text="✅ Confirm", callback_data="booking:confirm"),
        InlineKeyboardButton(text="❌ Cancel", callback_data="booking:abort"),
    )

    return builder.as_markup()


# ============== MY BOOKINGS ==============

def get_my_bookings_keyboard(bookings: list[Booking], page: int = 0) -> InlineKeyboardMarkup:
    """
    Get paginated keyboard with the user's bookings.

    Args:
        bookings: The user's bookings, ordered by start
        page: Current page (0-indexed)

    Returns:
        InlineKeyboardMarkup with booking buttons and navigation
    """
    builder = InlineKeyboardBuilder()

    page, total_pages, start_idx = _page_bounds(len(bookings), page)
    page_items = bookings[start_idx:start_idx + ITEMS_PER_PAGE]

    for booking in page_items:
        status_emoji = "✅" if booking.is_booked else "❌"
        builder.row(
            InlineKeyboardButton(
                text=f"{status_emoji} {booking.equipment_name} | {format_datetime(booking.start_date, 'short')}",
                callback_data=f"mybooking:{booking.id}"
            )
        )

    if total_pages > 1:
        nav_buttons = []
        if page > 0:
            nav_buttons.append(
                InlineKeyboardButton(text="◀️", callback_data=f"mybookings_page:{page - 1}")
            )
        nav_buttons.append(
            InlineKeyboardButton(text=f"{page + 1}/{total_pages}", callback_data="noop")
        )
        if page < total_pages - 1:
            nav_buttons.append(
                InlineKeyboardButton(text="▶️", callback_data=f"mybookings_page:{page + 1}")
            )
        builder.row(*nav_buttons)

    builder.row(
        InlineKeyboardButton(text="◀️ Main menu", callback_data="menu:main")
    )

    return builder.as_markup()


def get_booking_actions_keyboard(booking: Booking) -> InlineKeyboardMarkup:
    """Cancel button for a booked entry, plus navigation."""
    builder = InlineKeyboardBuilder()

    if booking.is_booked:
        builder.row(
            InlineKeyboardButton(
                text="❌ Cancel booking",
                callback_data=f"cancel_booking:{booking.id}"
            )
        )

    builder.row(
        InlineKeyboardButton(text="◀️ My bookings", callback_data="menu:my_bookings")
    )

    return builder.as_markup()


def get_cancel_confirm_keyboard(booking_id: str) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()

    builder.row(
        InlineKeyboardButton(text="✅ Yes, cancel", callback_data=f"cancel_confirm:{booking_id}"),
        InlineKeyboardButton(text="◀️ No", callback_data=f"mybooking:{booking_id}"),
    )

    return builder.as_markup()


# ============== ADMIN MENU ==============

def get_admin_main_menu_keyboard() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()

    builder.row(
        InlineKeyboardButton(
            text="🔬 Equipment",
            callback_data="admin:equipment_menu"
        )
    )
    builder.row(
        InlineKeyboardButton(
            text="📅 Bookings calendar",
            callback_data="admin:calendar"
        )
    )
    builder.row(
        InlineKeyboardButton(
            text="📊 Export bookings",
            callback_data="admin:export"
        )
    )
    builder.row(
        InlineKeyboardButton(text="◀️ Main menu", callback_data="menu:main")
    )

    return builder.as_markup()


def get_admin_equipment_menu_keyboard() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()

    builder.row(
        InlineKeyboardButton(
            text="➕ Add equipment",
            callback_data="admin:add_equipment"
        )
    )
    builder.row(
        InlineKeyboardButton(
            text="📋 All equipment",
            callback_data="admin:list_equipment"
        )
    )
    builder.row(
        InlineKeyboardButton(text="◀️ Admin menu", callback_data="admin:main")
    )

    return builder.as_markup()


def get_admin_back_keyboard(back_to: str = "admin:main") -> InlineKeyboardMarkup:
    """
    Get keyboard with back button for admin.

    Args:
        back_to: Callback data for back button (default: admin:main)

    Returns:
        InlineKeyboardMarkup with back button
    """
    builder = InlineKeyboardBuilder()

    builder.row(
        InlineKeyboardButton(text="◀️ Back", callback_data=back_to)
    )

    return builder.as_markup()


def get_equipment_action_keyboard(equipment_id: str) -> InlineKeyboardMarkup:
    """Edit and delete buttons for one equipment record."""
    builder = InlineKeyboardBuilder()

    builder.row(
        InlineKeyboardButton(
            text="✏️ Edit",
            callback_data=f"admin:edit_eq:{equipment_id}"
        ),
        InlineKeyboardButton(
            text="🗑 Delete",
            callback_data=f"admin:delete_eq:{equipment_id}"
        ),
    )
    builder.row(
        InlineKeyboardButton(text="◀️ Back", callback_data="admin:list_equipment")
    )

    return builder.as_markup()


def get_delete_confirm_keyboard(equipment_id: str) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()

    builder.row(
        InlineKeyboardButton(text="🗑 Delete", callback_data=f"admin:delete_eq_confirm:{equipment_id}"),
        InlineKeyboardButton(text="◀️ Keep", callback_data=f"admin:equipment:{equipment_id}"),
    )

    return builder.as_markup()

