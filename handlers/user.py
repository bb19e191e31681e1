"""User handlers: equipment list, equipment card, my bookings, cancellation."""

from aiogram import Router, F, html
from aiogram.types import CallbackQuery
from aiogram.fsm.context import FSMContext

from database.schemas import Equipment
from keyboards.inline import (
    get_back_to_menu_keyboard,
    get_equipment_keyboard,
    get_equipment_card_keyboard,
    get_my_bookings_keyboard,
    get_booking_actions_keyboard,
    get_cancel_confirm_keyboard,
)
from services.bookings import BookingCoordinator
from services.catalog import EquipmentCatalog
from services.identity import Identity
from services.projector import ReadModelProjector
from utils.errors import StoreError
from utils.helpers import format_booking_info, format_datetime, now_utc
from utils.logger import logger


router = Router(name="user")

SESSION_EXPIRED = "Your session has expired. Send /start to sign in again."


async def _equipment_list(views: ReadModelProjector | None, catalog: EquipmentCatalog) -> list[Equipment]:
    if views is not None and views.started:
        return sorted(views.equipment, key=lambda e: e.name.lower())
    return await catalog.list()


async def show_equipment_card(
    callback: CallbackQuery,
    equipment_id: str | None,
    views: ReadModelProjector | None,
    catalog: EquipmentCatalog,
) -> None:
    """Equipment name, description and its upcoming booked slots."""
    equipment = None
    if equipment_id:
        equipment = views.find_equipment(equipment_id) if views else None
        if equipment is None:
            equipment = await catalog.get(equipment_id)

    if equipment is None:
        await callback.answer("This equipment no longer exists.", show_alert=True)
        return

    text = (
        f"🔬 <b>{html.quote(equipment.name)}</b>\n\n"
        f"{html.quote(equipment.description)}"
    )

    if views is not None:
        now = now_utc()
        upcoming = sorted(
            (b for b in views.public_bookings
             if b.equipment_id == equipment.id and b.is_booked and b.end_date > now),
            key=lambda b: b.start_date,
        )
        if upcoming:
            text += "\n\n📅 <b>Booked slots:</b>"
            for b in upcoming[:10]:
                text += f"\n• {format_datetime(b.start_date, 'short')} – {format_datetime(b.end_date, 'short')}"

    await callback.message.edit_text(text, reply_markup=get_equipment_card_keyboard(equipment.id))
    await callback.answer()


# ============== EQUIPMENT ==============

@router.callback_query(F.data == "menu:equipment")
async def callback_equipment_list(
    callback: CallbackQuery,
    state: FSMContext,
    views: ReadModelProjector | None,
    catalog: EquipmentCatalog,
) -> None:
    await state.clear()

    equipment_list = await _equipment_list(views, catalog)
    if not equipment_list:
        await callback.message.edit_text(
            "🔬 <b>Equipment</b>\n\n"
            "No equipment has been added yet.",
            reply_markup=get_back_to_menu_keyboard()
        )
        await callback.answer()
        return

    await callback.message.edit_text(
        "🔬 <b>Equipment</b>\n\n"
        "Choose equipment to see details and book it:",
        reply_markup=get_equipment_keyboard(equipment_list)
    )
    await callback.answer()


@router.callback_query(F.data.startswith("page:equipment:"))
async def callback_equipment_list_page(
    callback: CallbackQuery,
    views: ReadModelProjector | None,
    catalog: EquipmentCatalog,
) -> None:
    page = int(callback.data.rsplit(":", 1)[1])
    equipment_list = await _equipment_list(views, catalog)

    await callback.message.edit_text(
        "🔬 <b>Equipment</b>\n\n"
        "Choose equipment to see details and book it:",
        reply_markup=get_equipment_keyboard(equipment_list, page=page)
    )
    await callback.answer()


@router.callback_query(F.data.startswith("equip:"))
async def callback_equipment_info(
    callback: CallbackQuery,
    views: ReadModelProjector | None,
    catalog: EquipmentCatalog,
) -> None:
    equipment_id = callback.data.split(":", 1)[1]
    await show_equipment_card(callback, equipment_id, views, catalog)


# ============== MY BOOKINGS ==============

@router.callback_query(F.data == "menu:my_bookings")
async def callback_my_bookings(callback: CallbackQuery, state: FSMContext, views: ReadModelProjector | None) -> None:
    await state.clear()

    if views is None:
        await callback.answer(SESSION_EXPIRED, show_alert=True)
        return

    if not views.my_bookings:
        await callback.message.edit_text(
            "📋 <b>My bookings</b>\n\n"
            "You have no bookings yet.",
            reply_markup=get_back_to_menu_keyboard()
        )
        await callback.answer()
        return

    await callback.message.edit_text(
        "📋 <b>My bookings</b>\n\n"
        "Choose a booking to see details:",
        reply_markup=get_my_bookings_keyboard(views.my_bookings)
    )
    await callback.answer()


@router.callback_query(F.data.startswith("mybookings_page:"))
async def callback_my_bookings_page(callback: CallbackQuery, views: ReadModelProjector | None) -> None:
    if views is None:
        await callback.answer(SESSION_EXPIRED, show_alert=True)
        return

    page = int(callback.data.split(":", 1)[1])
    await callback.message.edit_text(
        "📋 <b>My bookings</b>\n\n"
        "Choose a booking to see details:",
        reply_markup=get_my_bookings_keyboard(views.my_bookings, page=page)
    )
    await callback.answer()


@router.callback_query(F.data.startswith("mybooking:"))
async def callback_booking_details(callback: CallbackQuery, views: ReadModelProjector | None) -> None:
    booking_id = callback.data.split(":", 1)[1]
    booking = views.find_my_booking(booking_id) if views else None

    if booking is None:
        await callback.answer("Booking not found.", show_alert=True)
        return

    await callback.message.edit_text(
        f"📋 <b>Booking details</b>\n\n"
        f"{format_booking_info(booking, verbose=True)}",
        reply_markup=get_booking_actions_keyboard(booking)
    )
    await callback.answer()


# ============== CANCELLATION ==============

@router.callback_query(F.data.startswith("cancel_booking:"))
async def callback_cancel_booking(callback: CallbackQuery, views: ReadModelProjector | None) -> None:
    """Ask for confirmation before cancelling."""
    booking_id = callback.data.split(":", 1)[1]
    booking = views.find_my_booking(booking_id) if views else None

    if booking is None or not booking.is_booked:
        await callback.answer("This booking cannot be cancelled.", show_alert=True)
        return

    await callback.message.edit_text(
        f"❓ <b>Cancel this booking?</b>\n\n"
        f"{format_booking_info(booking)}",
        reply_markup=get_cancel_confirm_keyboard(booking_id)
    )
    await callback.answer()


@router.callback_query(F.data.startswith("cancel_confirm:"))
async def callback_cancel_confirm(
    callback: CallbackQuery,
    identity: Identity,
    views: ReadModelProjector | None,
    coordinator: BookingCoordinator,
) -> None:
    booking_id = callback.data.split(":", 1)[1]
    booking = views.find_my_booking(booking_id) if views else None

    if booking is None:
        await callback.answer("Booking not found.", show_alert=True)
        return

    try:
        result = await coordinator.cancel(identity, booking)
    except StoreError as e:
        logger.error(f"Cancel of booking {booking_id} failed for user {identity.user_id}: {e}")
        await callback.answer(f"Could not cancel the booking: {e}", show_alert=True)
        return

    text = f"✅ <b>Booking cancelled</b>\n\n{format_booking_info(result.booking)}"
    if result.already_cancelled:
        text = f"ℹ️ <b>This booking was already cancelled</b>\n\n{format_booking_info(result.booking)}"
    elif result.public_copy_missing:
        text += "\n\n⚠️ The shared schedule entry was not found; it will be repaired automatically."

    await callback.message.edit_text(text, reply_markup=get_booking_actions_keyboard(result.booking))
    await callback.answer()
