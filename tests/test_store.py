"""Tests for the document store: CRUD, queries, transactions, subscriptions."""

import pytest
from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import OperationalError

from database.store import DocumentRef, Transaction
from utils.errors import DocumentNotFoundError, StoreError


COLLECTION = "apps/test-app/equipment"


@pytest.mark.asyncio
async def test_create_and_get(open_store):
    ref = await open_store.create(COLLECTION, {"name": "Microscope", "description": "Room 214"})

    snapshot = await open_store.get(ref)
    assert snapshot.id == ref.id
    assert snapshot.data == {"name": "Microscope", "description": "Room 214"}


@pytest.mark.asyncio
async def test_get_missing_returns_none(open_store):
    assert await open_store.get(DocumentRef(COLLECTION, "missing")) is None


@pytest.mark.asyncio
async def test_update_merges_fields(open_store):
    ref = await open_store.create(COLLECTION, {"name": "Microscope", "description": "Room 214"})

    await open_store.update(ref, {"description": "Room 301"})

    snapshot = await open_store.get(ref)
    assert snapshot.data == {"name": "Microscope", "description": "Room 301"}


@pytest.mark.asyncio
async def test_update_missing_raises(open_store):
    with pytest.raises(DocumentNotFoundError):
        await open_store.update(DocumentRef(COLLECTION, "missing"), {"name": "x"})


@pytest.mark.asyncio
async def test_delete_is_idempotent(open_store):
    ref = await open_store.create(COLLECTION, {"name": "Microscope"})

    await open_store.delete(ref)
    await open_store.delete(ref)

    assert await open_store.get(ref) is None


@pytest.mark.asyncio
async def test_query_matches_all_filters(open_store):
    bookings = "apps/test-app/bookings"
    await open_store.create(bookings, {"equipmentId": "a", "status": "booked"})
    await open_store.create(bookings, {"equipmentId": "a", "status": "cancelled"})
    await open_store.create(bookings, {"equipmentId": "b", "status": "booked"})

    result = await open_store.query(bookings, {"equipmentId": "a", "status": "booked"})

    assert len(result) == 1
    assert result[0].data == {"equipmentId": "a", "status": "booked"}


@pytest.mark.asyncio
async def test_collection_group_finds_nested_collections(open_store):
    await open_store.create("apps/test-app/users/1/bookings", {"n": 1})
    await open_store.create("apps/test-app/users/2/bookings", {"n": 2})
    await open_store.create("apps/test-app/bookings", {"n": 3})
    await open_store.create("apps/other-app/users/1/bookings", {"n": 4})

    result = await open_store.collection_group("bookings", "apps/test-app/users/")

    assert sorted(s.data["n"] for s in result) == [1, 2]


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(open_store):
    with pytest.raises(RuntimeError):
        async with open_store.transaction() as txn:
            await txn.create(COLLECTION, {"name": "Microscope"})
            raise RuntimeError("abort")

    assert await open_store.list(COLLECTION) == []


@pytest.mark.asyncio
async def test_database_error_becomes_store_error(open_store):
    with patch.object(
        Transaction,
        "create",
        AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))),
    ):
        with pytest.raises(StoreError, match="disk I/O error"):
            await open_store.create(COLLECTION, {"name": "Microscope"})


@pytest.mark.asyncio
async def test_subscribe_delivers_initial_snapshot(open_store):
    await open_store.create(COLLECTION, {"name": "Microscope"})
    listener = AsyncMock()

    await open_store.subscribe(COLLECTION, listener)

    listener.assert_awaited_once()
    snapshot = listener.await_args.args[0]
    assert [s.data["name"] for s in snapshot] == ["Microscope"]


@pytest.mark.asyncio
async def test_subscribers_notified_after_commit(open_store):
    listener = AsyncMock()
    await open_store.subscribe(COLLECTION, listener)
    listener.reset_mock()

    await open_store.create(COLLECTION, {"name": "Microscope"})

    listener.assert_awaited_once()
    assert len(listener.await_args.args[0]) == 1


@pytest.mark.asyncio
async def test_no_notification_on_rollback(open_store):
    listener = AsyncMock()
    await open_store.subscribe(COLLECTION, listener)
    listener.reset_mock()

    with pytest.raises(RuntimeError):
        async with open_store.transaction() as txn:
            await txn.create(COLLECTION, {"name": "Microscope"})
            raise RuntimeError("abort")

    listener.assert_not_awaited()


@pytest.mark.asyncio
async def test_unsubscribe_stops_notifications(open_store):
    listener = AsyncMock()
    subscription = await open_store.subscribe(COLLECTION, listener)
    listener.reset_mock()

    subscription.unsubscribe()
    await open_store.create(COLLECTION, {"name": "Microscope"})

    listener.assert_not_awaited()
    assert open_store._subscriber_count(COLLECTION) == 0


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_write(open_store):
    broken = AsyncMock(side_effect=ValueError("boom"))
    healthy = AsyncMock()
    await open_store.subscribe(COLLECTION, broken)
    await open_store.subscribe(COLLECTION, healthy)
    healthy.reset_mock()

    ref = await open_store.create(COLLECTION, {"name": "Microscope"})

    assert await open_store.get(ref) is not None
    healthy.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_subscribe_is_not_registered(open_store, monkeypatch):
    monkeypatch.setattr(open_store, "list", AsyncMock(side_effect=StoreError("db down")))
    listener = AsyncMock()

    with pytest.raises(StoreError):
        await open_store.subscribe(COLLECTION, listener)

    assert open_store._subscriber_count(COLLECTION) == 0
    listener.assert_not_awaited()
