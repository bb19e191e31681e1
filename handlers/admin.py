"""Admin handlers: equipment management, bookings calendar, Excel export."""

import inspect
from datetime import date
from functools import wraps

from aiogram import Router, F, html
from aiogram.filters import Command
from aiogram.types import Message, CallbackQuery, FSInputFile
from aiogram.fsm.context import FSMContext

from keyboards.inline import (
    get_admin_main_menu_keyboard,
    get_admin_equipment_menu_keyboard,
    get_admin_back_keyboard,
    get_equipment_action_keyboard,
    get_delete_confirm_keyboard,
    get_equipment_keyboard,
    get_calendar_keyboard,
)
from reports.calendar import calendar_events, events_by_day, events_on_day
from reports.generator import generate_bookings_report
from services.catalog import EquipmentCatalog
from services.identity import Identity
from services.projector import ReadModelProjector
from utils.errors import InvalidInputError, StoreError
from utils.helpers import local_tz, now_local, to_local
from utils.states import AddEquipmentStates, EditEquipmentStates
from utils.logger import logger


router = Router(name="admin")

SESSION_EXPIRED = "Your session has expired. Send /start to sign in again."


# ============== ADMIN CHECK DECORATOR ==============

def admin_only(handler):
    """Decorator to check the admin claim of the signed-in identity."""
    @wraps(handler)
    async def wrapper(event, state: FSMContext, identity: Identity, **kwargs):
        if identity is None or not identity.is_admin:
            if isinstance(event, Message):
                await event.answer("⛔ Administrator access required.")
            elif isinstance(event, CallbackQuery):
                await event.answer("⛔ Administrator access required.", show_alert=True)
            return

        sig = inspect.signature(handler)
        handler_params = set(sig.parameters.keys())
        filtered_kwargs = {k: v for k, v in kwargs.items() if k in handler_params}

        return await handler(event, state, identity, **filtered_kwargs)
    return wrapper


# ============== ADMIN MAIN MENU ==============

ADMIN_MENU_TEXT = "⚙️ <b>Admin dashboard</b>\n\nChoose a section:"


@router.message(Command("admin"))
@admin_only
async def cmd_admin(message: Message, state: FSMContext, identity: Identity) -> None:
    await state.clear()
    await message.answer(ADMIN_MENU_TEXT, reply_markup=get_admin_main_menu_keyboard())


@router.callback_query(F.data == "admin:main")
@admin_only
async def callback_admin_main(callback: CallbackQuery, state: FSMContext, identity: Identity) -> None:
    await state.clear()
    await callback.message.edit_text(ADMIN_MENU_TEXT, reply_markup=get_admin_main_menu_keyboard())
    await callback.answer()


# ============== EQUIPMENT ==============

@router.callback_query(F.data == "admin:equipment_menu")
@admin_only
async def callback_equipment_menu(callback: CallbackQuery, state: FSMContext, identity: Identity) -> None:
    await state.clear()
    await callback.message.edit_text(
        "🔬 <b>Equipment management</b>",
        reply_markup=get_admin_equipment_menu_keyboard()
    )
    await callback.answer()


async def _show_equipment_list(callback: CallbackQuery, catalog: EquipmentCatalog, page: int = 0) -> None:
    equipment_list = await catalog.list()

    if not equipment_list:
        await callback.message.edit_text(
            "🔬 No equipment yet.",
            reply_markup=get_admin_back_keyboard("admin:equipment_menu")
        )
        return

    await callback.message.edit_text(
        f"🔬 <b>All equipment</b> ({len(equipment_list)})\n\n"
        f"Choose equipment to edit or delete:",
        reply_markup=get_equipment_keyboard(
            equipment_list,
            page=page,
            callback_prefix="admin:equipment",
            page_prefix="page:admin_equipment",
            back_callback="admin:equipment_menu",
        )
    )


@router.callback_query(F.data == "admin:list_equipment")
@admin_only
async def callback_list_equipment(
    callback: CallbackQuery,
    state: FSMContext,
    identity: Identity,
    catalog: EquipmentCatalog,
) -> None:
    await state.clear()
    await _show_equipment_list(callback, catalog)
    await callback.answer()


@router.callback_query(F.data.startswith("page:admin_equipment:"))
@admin_only
async def callback_list_equipment_page(
    callback: CallbackQuery,
    state: FSMContext,
    identity: Identity,
    catalog: EquipmentCatalog,
) -> None:
    page = int(callback.data.rsplit(":", 1)[1])
    await _show_equipment_list(callback, catalog, page)
    await callback.answer()


@router.callback_query(F.data.startswith("admin:equipment:"))
@admin_only
async def callback_equipment_card(
    callback: CallbackQuery,
    state: FSMContext,
    identity: Identity,
    catalog: EquipmentCatalog,
) -> None:
    await state.clear()
    equipment_id = callback.data.rsplit(":", 1)[1]
    equipment = await catalog.get(equipment_id)

    if equipment is None:
        await callback.answer("This equipment no longer exists.", show_alert=True)
        return

    await callback.message.edit_text(
        f"🔬 <b>{html.quote(equipment.name)}</b>\n\n"
        f"{html.quote(equipment.description)}\n\n"
        f"<i>ID: {equipment.id}</i>",
        reply_markup=get_equipment_action_keyboard(equipment.id)
    )
    await callback.answer()


# ============== ADD EQUIPMENT ==============

@router.callback_query(F.data == "admin:add_equipment")
@admin_only
async def callback_add_equipment(callback: CallbackQuery, state: FSMContext, identity: Identity) -> None:
    await state.set_state(AddEquipmentStates.waiting_name)
    await callback.message.edit_text(
        "➕ <b>New equipment</b>\n\n"
        "Step 1 of 2: enter the equipment name:",
        reply_markup=get_admin_back_keyboard("admin:equipment_menu")
    )
    await callback.answer()


@router.message(AddEquipmentStates.waiting_name)
@admin_only
async def process_equipment_name(message: Message, state: FSMContext, identity: Identity) -> None:
    name = (message.text or "").strip()
    if not name:
        await message.answer("Please fill out all fields.\n\nEnter the equipment name:")
        return

    await state.update_data(equipment_name=name)
    await state.set_state(AddEquipmentStates.waiting_description)
    await message.answer(
        f"✅ Name: <b>{html.quote(name)}</b>\n\n"
        f"Step 2 of 2: enter a description:",
        reply_markup=get_admin_back_keyboard("admin:equipment_menu")
    )


@router.message(AddEquipmentStates.waiting_description)
@admin_only
async def process_equipment_description(
    message: Message,
    state: FSMContext,
    identity: Identity,
    catalog: EquipmentCatalog,
) -> None:
    data = await state.get_data()

    try:
        equipment = await catalog.create(identity, data.get("equipment_name", ""), message.text or "")
    except InvalidInputError as e:
        await message.answer(f"❌ {e}\n\nEnter a description:")
        return
    except StoreError as e:
        logger.error(f"Failed to create equipment: {e}")
        await state.clear()
        await message.answer(
            f"⚠️ Could not save the equipment: {html.quote(str(e))}",
            reply_markup=get_admin_back_keyboard("admin:equipment_menu")
        )
        return

    await state.clear()
    await message.answer(
        f"✅ <b>Equipment added</b>\n\n"
        f"🔬 {html.quote(equipment.name)}\n"
        f"{html.quote(equipment.description)}",
        reply_markup=get_admin_equipment_menu_keyboard()
    )


# ============== EDIT EQUIPMENT ==============

@router.callback_query(F.data.startswith("admin:edit_eq:"))
@admin_only
async def callback_edit_equipment(
    callback: CallbackQuery,
    state: FSMContext,
    identity: Identity,
    catalog: EquipmentCatalog,
) -> None:
    equipment_id = callback.data.rsplit(":", 1)[1]
    equipment = await catalog.get(equipment_id)

    if equipment is None:
        await callback.answer("This equipment no longer exists.", show_alert=True)
        return

    await state.set_state(EditEquipmentStates.waiting_name)
    await state.update_data(equipment_id=equipment_id)
    await callback.message.edit_text(
        f"✏️ <b>Edit equipment</b>\n\n"
        f"Current name: <code>{html.quote(equipment.name)}</code>\n\n"
        f"Step 1 of 2: enter the new name:",
        reply_markup=get_admin_back_keyboard(f"admin:equipment:{equipment_id}")
    )
    await callback.answer()


@router.message(EditEquipmentStates.waiting_name)
@admin_only
async def process_edit_name(message: Message, state: FSMContext, identity: Identity) -> None:
    name = (message.text or "").strip()
    if not name:
        await message.answer("Please fill out all fields.\n\nEnter the new name:")
        return

    data = await state.get_data()
    await state.update_data(equipment_name=name)
    await state.set_state(EditEquipmentStates.waiting_description)
    await message.answer(
        f"✅ Name: <b>{html.quote(name)}</b>\n\n"
        f"Step 2 of 2: enter the new description:",
        reply_markup=get_admin_back_keyboard(f"admin:equipment:{data['equipment_id']}")
    )


@router.message(EditEquipmentStates.waiting_description)
@admin_only
async def process_edit_description(
    message: Message,
    state: FSMContext,
    identity: Identity,
    catalog: EquipmentCatalog,
) -> None:
    data = await state.get_data()
    equipment_id = data["equipment_id"]

    try:
        await catalog.update(identity, equipment_id, data.get("equipment_name", ""), message.text or "")
    except InvalidInputError as e:
        await message.answer(f"❌ {e}\n\nEnter the new description:")
        return
    except StoreError as e:
        logger.error(f"Failed to update equipment {equipment_id}: {e}")
        await state.clear()
        await message.answer(
            f"⚠️ Could not update the equipment: {html.quote(str(e))}",
            reply_markup=get_admin_back_keyboard("admin:list_equipment")
        )
        return

    await state.clear()
    await message.answer(
        "✅ Equipment updated.",
        reply_markup=get_equipment_action_keyboard(equipment_id)
    )


# ============== DELETE EQUIPMENT ==============

@router.callback_query(F.data.startswith("admin:delete_eq:"))
@admin_only
async def callback_delete_equipment(
    callback: CallbackQuery,
    state: FSMContext,
    identity: Identity,
    catalog: EquipmentCatalog,
) -> None:
    equipment_id = callback.data.rsplit(":", 1)[1]
    equipment = await catalog.get(equipment_id)

    if equipment is None:
        await callback.answer("This equipment no longer exists.", show_alert=True)
        return

    await callback.message.edit_text(
        f"🗑 Delete <b>{html.quote(equipment.name)}</b>?\n\n"
        f"Existing bookings stay in the schedule.",
        reply_markup=get_delete_confirm_keyboard(equipment_id)
    )
    await callback.answer()


@router.callback_query(F.data.startswith("admin:delete_eq_confirm:"))
@admin_only
async def callback_delete_equipment_confirm(
    callback: CallbackQuery,
    state: FSMContext,
    identity: Identity,
    catalog: EquipmentCatalog,
) -> None:
    equipment_id = callback.data.rsplit(":", 1)[1]

    try:
        await catalog.delete(identity, equipment_id)
    except StoreError as e:
        logger.error(f"Failed to delete equipment {equipment_id}: {e}")
        await callback.answer(f"Could not delete the equipment: {e}", show_alert=True)
        return

    await callback.answer("Equipment deleted")
    await _show_equipment_list(callback, catalog)


# ============== BOOKINGS CALENDAR ==============

def _month_marks(views: ReadModelProjector, year: int, month: int) -> dict[int, int]:
    by_day = events_by_day(calendar_events(views.public_bookings), year, month, local_tz())
    return {day: len(events) for day, events in by_day.items()}


async def _show_calendar(callback: CallbackQuery, views: ReadModelProjector, year: int, month: int) -> None:
    await callback.message.edit_text(
        "📅 <b>Bookings calendar</b>\n\n"
        "Days show the number of bookings. Choose a day for details:",
        reply_markup=get_calendar_keyboard(
            year=year,
            month=month,
            callback_prefix="admin_day",
            marks=_month_marks(views, year, month),
            back_callback="admin:main",
        )
    )


@router.callback_query(F.data == "admin:calendar")
@admin_only
async def callback_calendar(
    callback: CallbackQuery,
    state: FSMContext,
    identity: Identity,
    views: ReadModelProjector | None,
) -> None:
    if views is None:
        await callback.answer(SESSION_EXPIRED, show_alert=True)
        return

    today = now_local()
    await _show_calendar(callback, views, today.year, today.month)
    await callback.answer()


@router.callback_query(F.data.startswith("cal:admin_day:"))
@admin_only
async def callback_calendar_nav(
    callback: CallbackQuery,
    state: FSMContext,
    identity: Identity,
    views: ReadModelProjector | None,
) -> None:
    if views is None:
        await callback.answer(SESSION_EXPIRED, show_alert=True)
        return

    _, _, year, month = callback.data.split(":")
    await _show_calendar(callback, views, int(year), int(month))
    await callback.answer()


@router.callback_query(F.data.startswith("admin_day:"))
@admin_only
async def callback_calendar_day(
    callback: CallbackQuery,
    state: FSMContext,
    identity: Identity,
    views: ReadModelProjector | None,
) -> None:
    if views is None:
        await callback.answer(SESSION_EXPIRED, show_alert=True)
        return

    day = date.fromisoformat(callback.data.split(":", 1)[1])
    events = events_on_day(calendar_events(views.public_bookings), day, local_tz())

    lines = [f"📅 <b>{day.strftime('%b %d, %Y')}</b>", ""]
    if not events:
        lines.append("No bookings on this day.")
    for event in events:
        start, end = to_local(event.start), to_local(event.end)
        lines.append(
            f"• {start.strftime('%d.%m %H:%M')} – {end.strftime('%d.%m %H:%M')}  {html.quote(event.title)}"
        )

    await callback.message.edit_text(
        "\n".join(lines),
        reply_markup=get_admin_back_keyboard(f"cal:admin_day:{day.year}:{day.month}")
    )
    await callback.answer()


# ============== EXPORT ==============

@router.callback_query(F.data == "admin:export")
@admin_only
async def callback_export(
    callback: CallbackQuery,
    state: FSMContext,
    identity: Identity,
    views: ReadModelProjector | None,
) -> None:
    if views is None:
        await callback.answer(SESSION_EXPIRED, show_alert=True)
        return

    await callback.answer()
    await callback.message.edit_text("⏳ Generating report...")

    report_path = generate_bookings_report(views.public_bookings)
    if not report_path:
        await callback.message.edit_text(
            "❌ No bookings to export.",
            reply_markup=get_admin_back_keyboard()
        )
        return

    await callback.message.answer_document(
        FSInputFile(report_path),
        caption=f"📊 <b>Bookings</b> ({len(views.public_bookings)})"
    )
    await callback.message.edit_text(ADMIN_MENU_TEXT, reply_markup=get_admin_main_menu_keyboard())
    logger.info(f"Bookings report sent to admin {identity.user_id}")
