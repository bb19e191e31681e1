"""Tests for the booking coordinator: submit, cancel, reconcile."""

import asyncio

import pytest
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from database import collections
from database.schemas import Booking, BookingStatus
from database.store import DocumentRef, Transaction
from utils.errors import BookingRejected, PermissionDeniedError, RejectReason, StoreError


async def _copies(store, app_id, user_id):
    private = await store.list(collections.user_bookings(app_id, user_id))
    public = await store.list(collections.public_bookings(app_id))
    return private, public


# ============== SUBMIT ==============

@pytest.mark.asyncio
async def test_submit_writes_private_and_public_copies(coordinator, store, app_id, user, microscope, at, now):
    booking = await coordinator.submit(user, microscope.id, at(1), at(2), now=now)

    private, public = await _copies(store, app_id, user.user_id)
    assert len(private) == 1
    assert len(public) == 1
    assert private[0].id == booking.id
    assert private[0].id != public[0].id
    assert private[0].data == public[0].data

    fields = public[0].data
    assert fields["equipmentId"] == microscope.id
    assert fields["equipmentName"] == "Confocal microscope"
    assert fields["userId"] == user.user_id
    assert fields["userDisplayName"] == "Ada Lovelace"
    assert fields["status"] == "booked"
    assert "cancelledAt" not in fields


@pytest.mark.asyncio
async def test_submit_rejects_overlap(coordinator, user, other_user, microscope, at, now):
    await coordinator.submit(user, microscope.id, at(1), at(3), now=now)

    with pytest.raises(BookingRejected) as exc_info:
        await coordinator.submit(other_user, microscope.id, at(2), at(4), now=now)

    assert exc_info.value.reason == RejectReason.CONFLICT
    assert str(exc_info.value) == "This equipment is already booked for this time slot."


@pytest.mark.asyncio
async def test_submit_allows_adjacent_intervals(coordinator, store, app_id, user, other_user, microscope, at, now):
    await coordinator.submit(user, microscope.id, at(1), at(2), now=now)
    await coordinator.submit(other_user, microscope.id, at(2), at(3), now=now)

    public = await store.list(collections.public_bookings(app_id))
    assert len(public) == 2


@pytest.mark.asyncio
async def test_submit_allows_interval_ending_at_existing_start(
    coordinator, store, app_id, user, other_user, microscope, at, now
):
    await coordinator.submit(user, microscope.id, at(2), at(3), now=now)

    with pytest.raises(BookingRejected) as exc_info:
        await coordinator.submit(other_user, microscope.id, at(1.5), at(2.5), now=now)
    assert exc_info.value.reason == RejectReason.CONFLICT

    earlier = await coordinator.submit(other_user, microscope.id, at(1), at(2), now=now)

    assert earlier.is_booked
    public = await store.list(collections.public_bookings(app_id))
    assert len(public) == 2


@pytest.mark.asyncio
async def test_submit_other_equipment_does_not_conflict(coordinator, user, microscope, centrifuge, at, now):
    await coordinator.submit(user, microscope.id, at(1), at(3), now=now)
    booking = await coordinator.submit(user, centrifuge.id, at(1), at(3), now=now + timedelta(seconds=1))

    assert booking.equipment_id == centrifuge.id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "start_offset, end_offset, reason",
    [
        (2, 2, RejectReason.EMPTY_INTERVAL),
        (3, 2, RejectReason.EMPTY_INTERVAL),
        (-1, 2, RejectReason.START_IN_PAST),
    ],
)
async def test_submit_rejects_invalid_window_without_writing(
    coordinator, store, app_id, user, microscope, at, now, start_offset, end_offset, reason
):
    with pytest.raises(BookingRejected) as exc_info:
        await coordinator.submit(user, microscope.id, at(start_offset), at(end_offset), now=now)

    assert exc_info.value.reason == reason
    private, public = await _copies(store, app_id, user.user_id)
    assert private == [] and public == []


@pytest.mark.asyncio
async def test_submit_unknown_equipment(coordinator, user, at, now):
    with pytest.raises(BookingRejected) as exc_info:
        await coordinator.submit(user, "missing", at(1), at(2), now=now)

    assert exc_info.value.reason == RejectReason.UNKNOWN_EQUIPMENT
    assert coordinator._locks == {}


@pytest.mark.asyncio
async def test_cancelled_booking_frees_the_slot(coordinator, user, other_user, microscope, at, now):
    booking = await coordinator.submit(user, microscope.id, at(1), at(3), now=now)
    await coordinator.cancel(user, booking, now=now)

    second = await coordinator.submit(other_user, microscope.id, at(1), at(3), now=now)
    assert second.is_booked


@pytest.mark.asyncio
async def test_concurrent_overlapping_submits_accept_exactly_one(
    coordinator, store, app_id, user, other_user, microscope, at, now
):
    results = await asyncio.gather(
        coordinator.submit(user, microscope.id, at(1), at(3), now=now),
        coordinator.submit(other_user, microscope.id, at(2), at(4), now=now),
        return_exceptions=True,
    )

    accepted = [r for r in results if isinstance(r, Booking)]
    rejected = [r for r in results if isinstance(r, BookingRejected)]
    assert len(accepted) == 1
    assert len(rejected) == 1
    assert rejected[0].reason == RejectReason.CONFLICT

    public = await store.list(collections.public_bookings(app_id))
    assert len(public) == 1
    assert coordinator._locks == {}


@pytest.mark.asyncio
async def test_failed_public_write_leaves_nothing(coordinator, store, app_id, user, microscope, at, now, monkeypatch):
    original_create = Transaction.create
    public_collection = collections.public_bookings(app_id)

    async def failing_create(self, collection, fields):
        if collection == public_collection:
            raise SQLAlchemyError("connection lost")
        return await original_create(self, collection, fields)

    monkeypatch.setattr(Transaction, "create", failing_create)

    with pytest.raises(StoreError, match="connection lost"):
        await coordinator.submit(user, microscope.id, at(1), at(2), now=now)

    private, public = await _copies(store, app_id, user.user_id)
    assert private == [] and public == []


# ============== CANCEL ==============

@pytest.mark.asyncio
async def test_cancel_marks_both_copies(coordinator, store, app_id, user, microscope, at, now):
    booking = await coordinator.submit(user, microscope.id, at(1), at(2), now=now)

    result = await coordinator.cancel(user, booking, now=at(0.5))

    assert result.public_updated == 1
    assert not result.already_cancelled
    assert result.booking.status == BookingStatus.CANCELLED
    assert result.booking.cancelled_at == at(0.5)

    private, public = await _copies(store, app_id, user.user_id)
    for snap in private + public:
        assert snap.data["status"] == "cancelled"
        assert snap.data["cancelledAt"] == private[0].data["cancelledAt"]


@pytest.mark.asyncio
async def test_cancel_only_touches_matching_public_copy(coordinator, store, app_id, user, microscope, at, now):
    first = await coordinator.submit(user, microscope.id, at(1), at(2), now=now)
    await coordinator.submit(user, microscope.id, at(3), at(4), now=now + timedelta(seconds=1))

    await coordinator.cancel(user, first, now=now)

    public = await store.list(collections.public_bookings(app_id))
    statuses = sorted(snap.data["status"] for snap in public)
    assert statuses == ["booked", "cancelled"]


@pytest.mark.asyncio
async def test_cancel_twice_keeps_original_timestamp(coordinator, user, microscope, at, now):
    booking = await coordinator.submit(user, microscope.id, at(1), at(2), now=now)
    first = await coordinator.cancel(user, booking, now=at(0.25))

    second = await coordinator.cancel(user, booking, now=at(0.5))

    assert second.already_cancelled
    assert second.public_updated == 0
    assert not second.public_copy_missing
    assert second.booking.cancelled_at == first.booking.cancelled_at


@pytest.mark.asyncio
async def test_cancel_without_public_copy(coordinator, store, app_id, user, admin, microscope, at, now):
    booking = await coordinator.submit(user, microscope.id, at(1), at(2), now=now)
    public = await store.list(collections.public_bookings(app_id))
    await store.delete(public[0].ref, admin)

    result = await coordinator.cancel(user, booking, now=now)

    assert result.public_updated == 0
    assert result.public_copy_missing
    assert result.booking.status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_with_already_cancelled_public_copy(coordinator, store, app_id, user, microscope, at, now):
    booking = await coordinator.submit(user, microscope.id, at(1), at(2), now=now)
    public = await store.list(collections.public_bookings(app_id))
    await store.update(public[0].ref, {"status": "cancelled", "cancelledAt": "2030-01-15T09:10:00Z"}, user)

    result = await coordinator.cancel(user, booking, now=at(0.5))

    assert result.public_updated == 0
    assert result.public_matched == 1
    assert not result.public_copy_missing
    assert result.booking.status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_other_users_booking_denied(coordinator, user, other_user, microscope, at, now):
    booking = await coordinator.submit(user, microscope.id, at(1), at(2), now=now)

    with pytest.raises(PermissionDeniedError):
        await coordinator.cancel(other_user, booking, now=now)


# ============== RECONCILE ==============

@pytest.mark.asyncio
async def test_reconcile_recreates_missing_public_copy(coordinator, store, app_id, user, admin, microscope, at, now):
    booking = await coordinator.submit(user, microscope.id, at(1), at(2), now=now)
    public = await store.list(collections.public_bookings(app_id))
    await store.delete(public[0].ref, admin)

    report = await coordinator.reconcile(admin)

    assert report.checked == 1
    assert len(report.recreated) == 1
    public = await store.list(collections.public_bookings(app_id))
    assert len(public) == 1
    private = await store.get(DocumentRef(collections.user_bookings(app_id, user.user_id), booking.id))
    assert public[0].data == private.data


@pytest.mark.asyncio
async def test_reconcile_cancels_stale_public_copy(coordinator, store, app_id, user, admin, microscope, at, now):
    booking = await coordinator.submit(user, microscope.id, at(1), at(2), now=now)
    private_ref = DocumentRef(collections.user_bookings(app_id, user.user_id), booking.id)
    await store.update(private_ref, {"status": "cancelled", "cancelledAt": "2030-01-15T09:30:00Z"}, user)

    report = await coordinator.reconcile(admin)

    assert len(report.cancelled) == 1
    public = await store.list(collections.public_bookings(app_id))
    assert public[0].data["status"] == "cancelled"
    assert public[0].data["cancelledAt"] == "2030-01-15T09:30:00Z"


@pytest.mark.asyncio
async def test_reconcile_consistent_store_is_noop(coordinator, admin, user, microscope, at, now):
    booking = await coordinator.submit(user, microscope.id, at(1), at(2), now=now)
    await coordinator.cancel(user, booking, now=now)

    report = await coordinator.reconcile(admin)

    assert report.checked == 1
    assert report.repaired == 0
    assert report.duplicates == []
