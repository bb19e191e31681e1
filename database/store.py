"""Document store on top of SQLAlchemy async sessions.

Collections of JSON documents with point writes, equality queries and
push-on-change subscriptions. A listener receives the full snapshot of its
collection right after subscribing and again after every committed write that
touched the collection.

Writes go through `AccessRules` when the store is built with them. Several
writes can be grouped with `transaction()`; they commit or roll back
together and listeners are notified only after the commit.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import Document
from database.rules import CREATE, DELETE, UPDATE, AccessRules
from utils.errors import DocumentNotFoundError, StoreError
from utils.logger import logger

if TYPE_CHECKING:
    from services.identity import Identity


@dataclass(frozen=True)
class DocumentRef:
    collection: str
    id: str


@dataclass
class DocumentSnapshot:
    ref: DocumentRef
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.ref.id


Listener = Callable[[list[DocumentSnapshot]], Awaitable[None]]


class Subscription:
    """Handle returned by `DocumentStore.subscribe`."""

    def __init__(self, store: "DocumentStore", collection: str, listener: Listener):
        self.store = store
        self.collection = collection
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self.store._remove(self)


def _snapshot(doc: Document) -> DocumentSnapshot:
    return DocumentSnapshot(ref=DocumentRef(doc.collection, doc.id), data=dict(doc.data or {}))


def _matches(data: dict[str, Any], filters: dict[str, Any]) -> bool:
    return all(key in data and data[key] == value for key, value in filters.items())


class Transaction:
    """Store operations sharing one session. Obtained from `DocumentStore.transaction()`."""

    def __init__(self, session: AsyncSession, rules: AccessRules | None, principal: "Identity | None"):
        self.session = session
        self.rules = rules
        self.principal = principal
        self.touched: set[str] = set()

    def _check(self, action: str, collection: str, existing=None, fields=None) -> None:
        if self.rules is not None:
            self.rules.check_write(self.principal, action, collection, existing, fields)

    async def get(self, ref: DocumentRef) -> DocumentSnapshot | None:
        doc = await self.session.get(Document, (ref.collection, ref.id))
        return _snapshot(doc) if doc else None

    async def lock(self, ref: DocumentRef) -> DocumentSnapshot | None:
        """Read a document and hold a row lock on it until the transaction ends."""
        result = await self.session.execute(
            select(Document)
            .where(Document.collection == ref.collection, Document.id == ref.id)
            .with_for_update()
        )
        doc = result.scalar_one_or_none()
        return _snapshot(doc) if doc else None

    async def list(self, collection: str) -> list[DocumentSnapshot]:
        result = await self.session.execute(
            select(Document).where(Document.collection == collection).order_by(Document.created_at, Document.id)
        )
        return [_snapshot(doc) for doc in result.scalars().all()]

    async def query(self, collection: str, filters: dict[str, Any]) -> list[DocumentSnapshot]:
        return [snap for snap in await self.list(collection) if _matches(snap.data, filters)]

    async def collection_group(self, name: str, prefix: str = "") -> list[DocumentSnapshot]:
        """Documents of every collection under `prefix` whose last segment is `name`."""
        result = await self.session.execute(
            select(Document)
            .where(Document.collection.startswith(prefix, autoescape=True))
            .order_by(Document.collection, Document.created_at, Document.id)
        )
        return [
            _snapshot(doc) for doc in result.scalars().all()
            if doc.collection.rsplit("/", 1)[-1] == name
        ]

    async def create(self, collection: str, fields: dict[str, Any]) -> DocumentRef:
        self._check(CREATE, collection, fields=fields)
        doc = Document(collection=collection, id=uuid.uuid4().hex, data=dict(fields))
        self.session.add(doc)
        await self.session.flush()
        self.touched.add(collection)
        return DocumentRef(collection, doc.id)

    async def update(self, ref: DocumentRef, fields: dict[str, Any]) -> None:
        doc = await self.session.get(Document, (ref.collection, ref.id))
        if doc is None:
            raise DocumentNotFoundError(f"No document {ref.collection}/{ref.id}")
        merged = {**doc.data, **fields}
        self._check(UPDATE, ref.collection, existing=doc.data, fields=merged)
        doc.data = merged
        await self.session.flush()
        self.touched.add(ref.collection)

    async def delete(self, ref: DocumentRef) -> None:
        doc = await self.session.get(Document, (ref.collection, ref.id))
        self._check(DELETE, ref.collection, existing=doc.data if doc else None)
        if doc is None:
            return
        await self.session.delete(doc)
        await self.session.flush()
        self.touched.add(ref.collection)


class DocumentStore:
    """Collections of documents with real-time subscriptions."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], rules: AccessRules | None = None):
        self._session_maker = session_maker
        self.rules = rules
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)

    # ============== TRANSACTIONS ==============

    @asynccontextmanager
    async def transaction(self, principal: "Identity | None" = None) -> AsyncIterator[Transaction]:
        async with self._session_maker() as session:
            txn = Transaction(session, self.rules, principal)
            try:
                async with session.begin():
                    yield txn
            except SQLAlchemyError as e:
                logger.error(f"Store transaction failed: {e}")
                raise StoreError(f"Store operation failed: {e}") from e

        await self._publish(txn.touched)

    # ============== READS ==============

    async def get(self, ref: DocumentRef) -> DocumentSnapshot | None:
        async with self.transaction() as txn:
            return await txn.get(ref)

    async def list(self, collection: str) -> list[DocumentSnapshot]:
        async with self.transaction() as txn:
            return await txn.list(collection)

    async def query(self, collection: str, filters: dict[str, Any]) -> list[DocumentSnapshot]:
        async with self.transaction() as txn:
            return await txn.query(collection, filters)

    async def collection_group(self, name: str, prefix: str = "") -> list[DocumentSnapshot]:
        async with self.transaction() as txn:
            return await txn.collection_group(name, prefix)

    # ============== WRITES ==============

    async def create(self, collection: str, fields: dict[str, Any], principal: "Identity | None" = None) -> DocumentRef:
        async with self.transaction(principal) as txn:
            return await txn.create(collection, fields)

    async def update(self, ref: DocumentRef, fields: dict[str, Any], principal: "Identity | None" = None) -> None:
        async with self.transaction(principal) as txn:
            await txn.update(ref, fields)

    async def delete(self, ref: DocumentRef, principal: "Identity | None" = None) -> None:
        async with self.transaction(principal) as txn:
            await txn.delete(ref)

    # ============== SUBSCRIPTIONS ==============

    async def subscribe(self, collection: str, listener: Listener) -> Subscription:
        """Register `listener` and deliver the current snapshot to it."""
        subscription = Subscription(self, collection, listener)
        self._subscriptions[collection].append(subscription)
        try:
            snapshot = await self.list(collection)
        except StoreError:
            subscription.unsubscribe()
            raise
        await self._deliver(subscription, snapshot)
        return subscription

    def _subscriber_count(self, collection: str) -> int:
        return len(self._subscriptions.get(collection, []))

    def _remove(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.collection, [])
        if subscription in subs:
            subs.remove(subscription)
        if not subs:
            self._subscriptions.pop(subscription.collection, None)

    async def _publish(self, collections: set[str]) -> None:
        for collection in sorted(collections):
            if not self._subscriptions.get(collection):
                continue
            snapshot = await self.list(collection)
            for subscription in list(self._subscriptions.get(collection, [])):
                await self._deliver(subscription, snapshot)

    async def _deliver(self, subscription: Subscription, snapshot: list[DocumentSnapshot]) -> None:
        if not subscription.active:
            return
        try:
            await subscription.listener(snapshot)
        except Exception as e:
            logger.error(f"Listener for {subscription.collection} failed: {e}", exc_info=True)
