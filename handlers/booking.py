"""Booking flow handlers: equipment → start date/time → end date/time → confirmation."""

from datetime import date, datetime, timedelta

from aiogram import Router, F, html
from aiogram.types import CallbackQuery
from aiogram.fsm.context import FSMContext

from config import settings
from handlers.user import show_equipment_card
from keyboards.inline import (
    get_calendar_keyboard,
    get_time_keyboard,
    get_booking_confirm_keyboard,
    get_main_menu_keyboard,
)
from services.bookings import BookingCoordinator
from services.catalog import EquipmentCatalog
from services.identity import Identity
from services.projector import ReadModelProjector
from utils.errors import REJECT_MESSAGES, BookingRejected, RejectReason, StoreError
from utils.helpers import booking_date_range, format_booking_info, format_duration, now_local, now_utc, parse_local
from utils.states import BookingStates
from utils.logger import logger


router = Router(name="booking")


def _header(data: dict) -> str:
    lines = [f"🔬 Equipment: <b>{html.quote(data.get('equipment_name', ''))}</b>"]
    if data.get("start_time"):
        lines.append(f"📅 Start: <b>{data['start_date']} {data['start_time']}</b>")
    elif data.get("start_date"):
        lines.append(f"📅 Start date: <b>{data['start_date']}</b>")
    if data.get("end_date"):
        lines.append(f"📅 End date: <b>{data['end_date']}</b>")
    return "\n".join(lines)


def _start_calendar(year: int | None = None, month: int | None = None):
    min_date, max_date = booking_date_range()
    return get_calendar_keyboard(
        year=year or min_date.year,
        month=month or min_date.month,
        callback_prefix="date_start",
        min_date=min_date,
        max_date=max_date,
        back_callback="booking:back_to_equipment",
    )


def _end_calendar(start_date: str, year: int | None = None, month: int | None = None):
    min_date = date.fromisoformat(start_date)
    max_date = min_date + timedelta(days=settings.max_future_booking_days)
    return get_calendar_keyboard(
        year=year or min_date.year,
        month=month or min_date.month,
        callback_prefix="date_end",
        min_date=min_date,
        max_date=max_date,
        back_callback="booking:back_to_time_start",
    )


def _start_time_keyboard(start_date: str):
    now = now_local()
    min_time = now if start_date == now.strftime("%Y-%m-%d") else None
    return get_time_keyboard(
        callback_prefix="time_start",
        min_time=min_time,
        back_callback="booking:back_to_date_start",
    )


def _end_time_keyboard(data: dict):
    min_time = None
    if data.get("end_date") == data.get("start_date"):
        min_time = datetime.strptime(data["start_time"], "%H:%M")
    return get_time_keyboard(
        callback_prefix="time_end",
        min_time=min_time,
        back_callback="booking:back_to_date_end",
    )


# ============== START BOOKING ==============

@router.callback_query(F.data.startswith("book:"))
async def callback_start_booking(
    callback: CallbackQuery,
    state: FSMContext,
    views: ReadModelProjector | None,
    catalog: EquipmentCatalog,
) -> None:
    """Start the booking flow from an equipment card."""
    equipment_id = callback.data.split(":", 1)[1]

    equipment = views.find_equipment(equipment_id) if views else None
    if equipment is None:
        equipment = await catalog.get(equipment_id)
    if equipment is None:
        await callback.answer(REJECT_MESSAGES[RejectReason.UNKNOWN_EQUIPMENT], show_alert=True)
        return

    await state.clear()
    await state.update_data(equipment_id=equipment_id, equipment_name=equipment.name)
    await state.set_state(BookingStates.choosing_date_start)

    await callback.message.edit_text(
        f"{_header(await state.get_data())}\n\n"
        f"📅 Choose the <b>start</b> date:",
        reply_markup=_start_calendar()
    )
    await callback.answer()


# ============== CALENDAR NAVIGATION ==============

@router.callback_query(BookingStates.choosing_date_start, F.data.startswith("cal:date_start:"))
async def callback_calendar_start_nav(callback: CallbackQuery, state: FSMContext) -> None:
    _, _, year, month = callback.data.split(":")
    data = await state.get_data()

    await callback.message.edit_text(
        f"{_header(data)}\n\n"
        f"📅 Choose the <b>start</b> date:",
        reply_markup=_start_calendar(int(year), int(month))
    )
    await callback.answer()


@router.callback_query(BookingStates.choosing_date_end, F.data.startswith("cal:date_end:"))
async def callback_calendar_end_nav(callback: CallbackQuery, state: FSMContext) -> None:
    _, _, year, month = callback.data.split(":")
    data = await state.get_data()

    await callback.message.edit_text(
        f"{_header(data)}\n\n"
        f"📅 Choose the <b>end</b> date:",
        reply_markup=_end_calendar(data["start_date"], int(year), int(month))
    )
    await callback.answer()


# ============== START DATE AND TIME ==============

@router.callback_query(BookingStates.choosing_date_start, F.data.startswith("date_start:"))
async def callback_select_start_date(callback: CallbackQuery, state: FSMContext) -> None:
    date_str = callback.data.split(":", 1)[1]

    await state.update_data(start_date=date_str)
    await state.set_state(BookingStates.choosing_time_start)

    await callback.message.edit_text(
        f"{_header(await state.get_data())}\n\n"
        f"🕐 Choose the <b>start time</b>:",
        reply_markup=_start_time_keyboard(date_str)
    )
    await callback.answer()


@router.callback_query(BookingStates.choosing_time_start, F.data.startswith("time_start:"))
async def callback_select_start_time(callback: CallbackQuery, state: FSMContext) -> None:
    time_str = callback.data.split(":", 1)[1]

    await state.update_data(start_time=time_str)
    await state.set_state(BookingStates.choosing_date_end)
    data = await state.get_data()

    await callback.message.edit_text(
        f"{_header(data)}\n\n"
        f"📅 Choose the <b>end</b> date:",
        reply_markup=_end_calendar(data["start_date"])
    )
    await callback.answer()


# ============== END DATE AND TIME ==============

@router.callback_query(BookingStates.choosing_date_end, F.data.startswith("date_end:"))
async def callback_select_end_date(callback: CallbackQuery, state: FSMContext) -> None:
    date_str = callback.data.split(":", 1)[1]

    await state.update_data(end_date=date_str)
    await state.set_state(BookingStates.choosing_time_end)
    data = await state.get_data()

    await callback.message.edit_text(
        f"{_header(data)}\n\n"
        f"🕐 Choose the <b>end time</b>:",
        reply_markup=_end_time_keyboard(data)
    )
    await callback.answer()


@router.callback_query(BookingStates.choosing_time_end, F.data.startswith("time_end:"))
async def callback_select_end_time(callback: CallbackQuery, state: FSMContext) -> None:
    """Show the summary once the interval passes the local checks."""
    time_str = callback.data.split(":", 1)[1]
    data = await state.get_data()

    start_dt = parse_local(data["start_date"], data["start_time"])
    end_dt = parse_local(data["end_date"], time_str)

    if end_dt <= start_dt:
        await callback.answer(REJECT_MESSAGES[RejectReason.EMPTY_INTERVAL], show_alert=True)
        return

    if start_dt < now_utc():
        await callback.answer(REJECT_MESSAGES[RejectReason.START_IN_PAST], show_alert=True)
        await state.set_state(BookingStates.choosing_date_start)
        await callback.message.edit_text(
            f"{_header({'equipment_name': data['equipment_name']})}\n\n"
            f"📅 Choose the <b>start</b> date:",
            reply_markup=_start_calendar()
        )
        return

    await state.update_data(end_time=time_str)
    await state.set_state(BookingStates.confirming)

    await callback.message.edit_text(
        f"📋 <b>Confirm booking</b>\n\n"
        f"🔬 Equipment: <b>{html.quote(data['equipment_name'])}</b>\n"
        f"📅 Start: <b>{data['start_date']} {data['start_time']}</b>\n"
        f"📅 End: <b>{data['end_date']} {time_str}</b>\n"
        f"⏱ Duration: <b>{format_duration(start_dt, end_dt)}</b>\n\n"
        f"Book this slot?",
        reply_markup=get_booking_confirm_keyboard()
    )
    await callback.answer()


# ============== CONFIRMATION ==============

@router.callback_query(BookingStates.confirming, F.data == "booking:confirm")
async def callback_confirm_booking(
    callback: CallbackQuery,
    state: FSMContext,
    identity: Identity,
    coordinator: BookingCoordinator,
) -> None:
    """Submit the booking; both copies are written or neither."""
    data = await state.get_data()

    required = ("equipment_id", "start_date", "start_time", "end_date", "end_time")
    if not all(data.get(key) for key in required):
        await state.clear()
        await callback.answer("Please fill out all fields.", show_alert=True)
        return

    start_dt = parse_local(data["start_date"], data["start_time"])
    end_dt = parse_local(data["end_date"], data["end_time"])

    try:
        booking = await coordinator.submit(identity, data["equipment_id"], start_dt, end_dt)
    except BookingRejected as e:
        await callback.answer(str(e), show_alert=True)
        if e.reason == RejectReason.CONFLICT:
            # Keep the equipment, ask for another slot
            await state.set_data({"equipment_id": data["equipment_id"], "equipment_name": data["equipment_name"]})
            await state.set_state(BookingStates.choosing_date_start)
            await callback.message.edit_text(
                f"❌ {html.quote(str(e))}\n\n"
                f"{_header(await state.get_data())}\n\n"
                f"📅 Choose another <b>start</b> date:",
                reply_markup=_start_calendar()
            )
        else:
            await state.clear()
            await callback.message.edit_text(
                f"❌ {html.quote(str(e))}",
                reply_markup=get_main_menu_keyboard(is_admin=identity.is_admin)
            )
        return
    except StoreError as e:
        logger.error(f"Booking submit failed for user {identity.user_id}: {e}")
        await state.clear()
        await callback.message.edit_text(
            f"⚠️ <b>Booking failed</b>\n\n{html.quote(str(e))}",
            reply_markup=get_main_menu_keyboard(is_admin=identity.is_admin)
        )
        await callback.answer()
        return

    await state.clear()
    await callback.message.edit_text(
        f"✅ <b>Booking created!</b>\n\n"
        f"{format_booking_info(booking)}",
        reply_markup=get_main_menu_keyboard(is_admin=identity.is_admin)
    )
    await callback.answer()


@router.callback_query(F.data == "booking:abort")
async def callback_abort_booking_flow(callback: CallbackQuery, state: FSMContext, identity: Identity) -> None:
    await state.clear()

    await callback.message.edit_text(
        "❌ Booking cancelled.\n\n"
        "Choose an action:",
        reply_markup=get_main_menu_keyboard(is_admin=identity.is_admin)
    )
    await callback.answer()


# ============== BACK NAVIGATION ==============

@router.callback_query(F.data == "booking:back_to_equipment")
async def callback_back_to_equipment(
    callback: CallbackQuery,
    state: FSMContext,
    views: ReadModelProjector | None,
    catalog: EquipmentCatalog,
) -> None:
    data = await state.get_data()
    await state.clear()
    await show_equipment_card(callback, data.get("equipment_id"), views, catalog)


@router.callback_query(F.data == "booking:back_to_date_start")
async def callback_back_to_date_start(callback: CallbackQuery, state: FSMContext) -> None:
    data = await state.get_data()
    await state.set_data({"equipment_id": data.get("equipment_id"), "equipment_name": data.get("equipment_name", "")})
    await state.set_state(BookingStates.choosing_date_start)
    await callback.message.edit_text(
        f"{_header(await state.get_data())}\n\n"
        f"📅 Choose the <b>start</b> date:",
        reply_markup=_start_calendar()
    )
    await callback.answer()


@router.callback_query(F.data == "booking:back_to_time_start")
async def callback_back_to_time_start(callback: CallbackQuery, state: FSMContext) -> None:
    data = await state.get_data()
    await state.update_data(start_time=None, end_date=None)
    await state.set_state(BookingStates.choosing_time_start)
    await callback.message.edit_text(
        f"{_header(await state.get_data())}\n\n"
        f"🕐 Choose the <b>start time</b>:",
        reply_markup=_start_time_keyboard(data["start_date"])
    )
    await callback.answer()


@router.callback_query(F.data == "booking:back_to_date_end")
async def callback_back_to_date_end(callback: CallbackQuery, state: FSMContext) -> None:
    await state.update_data(end_date=None)
    data = await state.get_data()
    await state.set_state(BookingStates.choosing_date_end)
    await callback.message.edit_text(
        f"{_header(data)}\n\n"
        f"📅 Choose the <b>end</b> date:",
        reply_markup=_end_calendar(data["start_date"])
    )
    await callback.answer()
