"""FSM states for booking and admin flows."""

from aiogram.fsm.state import State, StatesGroup


class BookingStates(StatesGroup):
    """States for booking creation flow."""

    choosing_date_start = State()
    choosing_time_start = State()
    choosing_date_end = State()
    choosing_time_end = State()
    confirming = State()


class AddEquipmentStates(StatesGroup):
    """States for adding new equipment (admin)."""

    waiting_name = State()
    waiting_description = State()


class EditEquipmentStates(StatesGroup):
    """States for editing equipment (admin)."""

    waiting_name = State()
    waiting_description = State()
