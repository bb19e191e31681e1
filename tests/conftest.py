"""Pytest fixtures for lab booking tests."""

import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database.db import init_db
from database.rules import AccessRules
from database.store import DocumentStore
from services.bookings import BookingCoordinator
from services.catalog import EquipmentCatalog
from services.identity import Identity


APP_ID = "test-app"

# Fixed evaluation time; bookings in tests start after it
NOW = datetime(2030, 1, 15, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def app_id():
    return APP_ID


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def at():
    """NOW shifted by the given number of hours."""
    def shift(hours: float) -> datetime:
        return NOW + timedelta(hours=hours)
    return shift


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with the schema created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_maker):
    return DocumentStore(session_maker, AccessRules(APP_ID))


@pytest.fixture
def open_store(session_maker):
    """Store without access rules."""
    return DocumentStore(session_maker)


@pytest.fixture
def user():
    return Identity(user_id="1001", display_name="Ada Lovelace")


@pytest.fixture
def other_user():
    return Identity(user_id="1002", display_name="Alan Turing")


@pytest.fixture
def admin():
    return Identity(user_id="9001", display_name="Lab Manager", is_admin=True)


@pytest.fixture
def catalog(store):
    return EquipmentCatalog(store, APP_ID)


@pytest.fixture
def coordinator(store):
    return BookingCoordinator(store, APP_ID)


@pytest_asyncio.fixture
async def microscope(catalog, admin):
    return await catalog.create(admin, "Confocal microscope", "Zeiss LSM 980, room 214", now=NOW)


@pytest_asyncio.fixture
async def centrifuge(catalog, admin):
    return await catalog.create(admin, "Centrifuge", "Eppendorf 5810R", now=NOW)


@pytest.fixture
def telegram_user():
    """Stand-in for an aiogram User."""
    return SimpleNamespace(id=1001, full_name="Ada Lovelace", username="ada")


@pytest.fixture
def mock_state():
    """FSMContext mock."""
    state = AsyncMock()
    state.get_data = AsyncMock(return_value={})
    return state


@pytest.fixture
def mock_callback():
    """CallbackQuery mock with an editable message."""
    from aiogram.types import CallbackQuery

    callback = MagicMock(spec=CallbackQuery)
    callback.answer = AsyncMock()
    callback.message = MagicMock()
    callback.message.edit_text = AsyncMock()
    callback.message.answer = AsyncMock()
    callback.message.answer_document = AsyncMock()
    callback.from_user = SimpleNamespace(id=1001, full_name="Ada Lovelace", username="ada")
    return callback
