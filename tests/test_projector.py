"""Tests for read models and per-session projectors."""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock

from database import collections
from database.schemas import BookingStatus
from services.identity import IdentityProvider
from services.projector import (
    EQUIPMENT_VIEW,
    MY_BOOKINGS_VIEW,
    PUBLIC_BOOKINGS_VIEW,
    ReadModelProjector,
)
from services.sessions import SessionRegistry
from utils.errors import StoreError


@pytest.mark.asyncio
async def test_start_loads_current_state(store, app_id, microscope):
    projector = ReadModelProjector(store, app_id)

    await projector.start()

    assert projector.started
    assert [e.id for e in projector.equipment] == [microscope.id]
    assert projector.public_bookings == []
    assert projector.my_bookings == []


@pytest.mark.asyncio
async def test_views_follow_submit_and_cancel(store, app_id, coordinator, user, microscope, at, now):
    projector = ReadModelProjector(store, app_id)
    await projector.start()
    await projector.set_identity(user)

    booking = await coordinator.submit(user, microscope.id, at(1), at(2), now=now)

    assert [b.id for b in projector.my_bookings] == [booking.id]
    assert len(projector.public_bookings) == 1
    assert projector.find_my_booking(booking.id).is_booked

    await coordinator.cancel(user, booking, now=now)

    assert projector.find_my_booking(booking.id).status == BookingStatus.CANCELLED
    assert projector.public_bookings[0].status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_my_bookings_sorted_by_start(store, app_id, coordinator, user, microscope, centrifuge, at, now):
    projector = ReadModelProjector(store, app_id)
    await projector.start()
    await projector.set_identity(user)

    await coordinator.submit(user, microscope.id, at(5), at(6), now=now)
    await coordinator.submit(user, centrifuge.id, at(1), at(2), now=at(0.1))

    assert [b.equipment_name for b in projector.my_bookings] == ["Centrifuge", "Confocal microscope"]


@pytest.mark.asyncio
async def test_identity_change_switches_private_view(store, app_id, coordinator, user, other_user, microscope, at, now):
    await coordinator.submit(user, microscope.id, at(1), at(2), now=now)
    projector = ReadModelProjector(store, app_id)
    await projector.start()
    await projector.set_identity(user)
    assert len(projector.my_bookings) == 1

    await projector.set_identity(other_user)

    assert projector.my_bookings == []
    assert store._subscriber_count(collections.user_bookings(app_id, user.user_id)) == 0
    assert store._subscriber_count(collections.user_bookings(app_id, other_user.user_id)) == 1


@pytest.mark.asyncio
async def test_sign_out_clears_private_view(store, app_id, coordinator, user, microscope, at, now):
    await coordinator.submit(user, microscope.id, at(1), at(2), now=now)
    projector = ReadModelProjector(store, app_id)
    listener = AsyncMock()
    projector.add_listener(listener)
    await projector.start()
    await projector.set_identity(user)

    await projector.set_identity(None)

    assert projector.my_bookings == []
    listener.assert_any_await(MY_BOOKINGS_VIEW)


@pytest.mark.asyncio
async def test_listeners_receive_view_names(store, app_id, catalog, admin):
    projector = ReadModelProjector(store, app_id)
    listener = AsyncMock()
    projector.add_listener(listener)
    await projector.start()
    listener.reset_mock()

    await catalog.create(admin, "Autoclave", "Basement")

    listener.assert_awaited_once_with(EQUIPMENT_VIEW)
    assert PUBLIC_BOOKINGS_VIEW != EQUIPMENT_VIEW


@pytest.mark.asyncio
async def test_close_releases_subscriptions(store, app_id, user):
    projector = ReadModelProjector(store, app_id)
    await projector.start()
    await projector.set_identity(user)

    await projector.close()

    assert store._subscriber_count(collections.equipment(app_id)) == 0
    assert store._subscriber_count(collections.public_bookings(app_id)) == 0
    assert store._subscriber_count(collections.user_bookings(app_id, user.user_id)) == 0


# ============== SESSIONS ==============

@pytest.mark.asyncio
async def test_registry_opens_and_closes_projectors(store, app_id, telegram_user):
    provider = IdentityProvider(admin_ids={9001})
    registry = SessionRegistry(store, app_id, provider)

    await provider.sign_in(telegram_user)

    projector = registry.get(telegram_user.id)
    assert projector is not None
    assert projector.started
    assert projector.identity.user_id == "1001"

    await provider.sign_out(telegram_user.id)

    assert registry.get(telegram_user.id) is None
    assert len(registry) == 0
    assert store._subscriber_count(collections.equipment(app_id)) == 0


@pytest.mark.asyncio
async def test_registry_follows_profile_change(store, app_id, telegram_user):
    provider = IdentityProvider()
    registry = SessionRegistry(store, app_id, provider)
    await provider.sign_in(telegram_user)

    renamed = SimpleNamespace(id=telegram_user.id, full_name="Ada King", username="ada")
    await provider.sign_in(renamed)

    assert len(registry) == 1
    assert registry.get(telegram_user.id).identity.display_name == "Ada King"

    await registry.close_all()
    assert len(registry) == 0


def _failing_subscribe(store, monkeypatch, should_fail):
    subscribe = store.subscribe

    async def flaky(collection, listener):
        if should_fail(collection):
            raise StoreError("db down")
        return await subscribe(collection, listener)

    monkeypatch.setattr(store, "subscribe", flaky)


@pytest.mark.asyncio
async def test_failed_start_releases_partial_subscriptions(store, app_id, monkeypatch):
    _failing_subscribe(store, monkeypatch, lambda c: c == collections.public_bookings(app_id))
    projector = ReadModelProjector(store, app_id)

    with pytest.raises(StoreError):
        await projector.start()

    assert not projector.started
    assert not projector.ready
    assert store._subscriber_count(collections.equipment(app_id)) == 0


@pytest.mark.asyncio
async def test_registry_recovers_after_failed_open(store, app_id, coordinator, microscope, telegram_user, at, now, monkeypatch):
    provider = IdentityProvider()
    registry = SessionRegistry(store, app_id, provider)
    failures = [True]
    _failing_subscribe(store, monkeypatch, lambda c: failures and failures.pop())

    identity = await provider.sign_in(telegram_user)

    assert registry.get(telegram_user.id) is None

    booking = await coordinator.submit(identity, microscope.id, at(1), at(2), now=now)
    projector = await registry.ensure(telegram_user.id, identity)

    assert projector.ready
    assert registry.get(telegram_user.id) is projector
    assert [b.id for b in projector.my_bookings] == [booking.id]
    assert [e.id for e in projector.equipment] == [microscope.id]


@pytest.mark.asyncio
async def test_registry_ensure_keeps_ready_projector(store, app_id, telegram_user):
    provider = IdentityProvider()
    registry = SessionRegistry(store, app_id, provider)
    identity = await provider.sign_in(telegram_user)
    projector = registry.get(telegram_user.id)

    assert await registry.ensure(telegram_user.id, identity) is projector
    assert store._subscriber_count(collections.equipment(app_id)) == 1
