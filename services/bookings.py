"""Booking lifecycle: submit, cancel, reconcile.

Every logical booking is stored twice: a private copy under the owner's
collection and a public copy in the shared bookings collection. The copies
have their own ids and are matched by (equipmentId, userId, bookedAt).

`submit` and `cancel` write both copies in one store transaction. `submit`
also locks the equipment document and serialises submits per equipment, so
the conflict check and the writes cannot interleave with another submit for
the same equipment.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime

from database import collections
from database.schemas import Booking, BookingStatus, ensure_utc, timestamp_field
from database.store import DocumentRef, DocumentStore
from services.conflicts import ConflictResolver
from services.identity import Identity
from utils.errors import BookingRejected, DocumentNotFoundError, PermissionDeniedError, RejectReason
from utils.helpers import now_utc
from utils.logger import logger


@dataclass
class CancelResult:
    booking: Booking
    public_updated: int = 0
    public_matched: int = 0
    already_cancelled: bool = False

    @property
    def public_copy_missing(self) -> bool:
        return self.public_matched == 0


@dataclass
class ReconcileReport:
    checked: int = 0
    recreated: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)

    @property
    def repaired(self) -> int:
        return len(self.recreated) + len(self.cancelled)


class BookingCoordinator:
    def __init__(self, store: DocumentStore, app_id: str, resolver: ConflictResolver | None = None):
        self.store = store
        self.app_id = app_id
        self.resolver = resolver or ConflictResolver(app_id)
        self.public_collection = collections.public_bookings(app_id)
        self.equipment_collection = collections.equipment(app_id)
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def private_collection(self, user_id: str) -> str:
        return collections.user_bookings(self.app_id, user_id)

    # ============== SUBMIT ==============

    async def submit(
        self,
        identity: Identity,
        equipment_id: str,
        start: datetime,
        end: datetime,
        now: datetime | None = None,
    ) -> Booking:
        """
        Check the candidate window and store both copies of a new booking.

        Args:
            identity: Signed-in user making the booking
            equipment_id: Equipment to book
            start: Inclusive start of the interval
            end: Exclusive end of the interval
            now: Evaluation time, defaults to the current UTC time

        Returns:
            The private copy, with its id

        Raises:
            BookingRejected: empty interval, past start, overlap, or unknown equipment
            StoreError: the store refused or failed a write; nothing was written
        """
        now = ensure_utc(now) if now else now_utc()

        rejection = self.resolver.check_window(start, end, now)
        if rejection:
            logger.warning(f"Booking rejected for user {identity.user_id}: {rejection.reason.value}")
            raise BookingRejected(rejection.reason)

        async with self._equipment_lock(equipment_id):
            async with self.store.transaction(identity) as txn:
                equipment = await txn.lock(DocumentRef(self.equipment_collection, equipment_id))
                if equipment is None:
                    logger.warning(f"Booking rejected for user {identity.user_id}: equipment {equipment_id} not found")
                    raise BookingRejected(RejectReason.UNKNOWN_EQUIPMENT)

                decision = await self.resolver.evaluate(txn, equipment_id, start, end, now)
                if not decision.approved:
                    logger.warning(
                        f"Booking rejected for user {identity.user_id}, equipment {equipment_id}: "
                        f"{decision.reason.value}"
                    )
                    raise BookingRejected(decision.reason, decision.conflicts)

                booking = Booking(
                    equipment_id=equipment_id,
                    equipment_name=equipment.data.get("name", ""),
                    user_id=identity.user_id,
                    user_display_name=identity.display_name,
                    start_date=start,
                    end_date=end,
                    status=BookingStatus.BOOKED,
                    booked_at=now,
                )
                fields = booking.to_fields()
                private_ref = await txn.create(self.private_collection(identity.user_id), fields)
                public_ref = await txn.create(self.public_collection, fields)

        booking.id = private_ref.id
        logger.info(
            f"Created booking {private_ref.id} (public {public_ref.id}) for user {identity.user_id}, "
            f"equipment {equipment_id}"
        )
        return booking

    @asynccontextmanager
    async def _equipment_lock(self, equipment_id: str) -> AsyncIterator[None]:
        """Serialise submits for one equipment id; the lock is dropped when nobody holds or awaits it."""
        lock = self._locks.setdefault(equipment_id, asyncio.Lock())
        self._lock_users[equipment_id] = self._lock_users.get(equipment_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[equipment_id] -= 1
            if not self._lock_users[equipment_id]:
                del self._lock_users[equipment_id]
                del self._locks[equipment_id]

    # ============== CANCEL ==============

    async def cancel(self, identity: Identity, booking: Booking, now: datetime | None = None) -> CancelResult:
        """
        Mark both copies of `booking` cancelled.

        The private copy is addressed by id; public copies are found by the
        correlation key and all matches are updated. Documents that are already
        cancelled keep their original `cancelledAt`.
        """
        if booking.id is None:
            raise DocumentNotFoundError("Booking has no id")
        if booking.user_id != identity.user_id:
            raise PermissionDeniedError("Cannot cancel another user's booking")

        cancelled_at = timestamp_field(now or now_utc())
        changes = {"status": BookingStatus.CANCELLED.value, "cancelledAt": cancelled_at}
        private_ref = DocumentRef(self.private_collection(booking.user_id), booking.id)

        async with self.store.transaction(identity) as txn:
            private = await txn.get(private_ref)
            if private is None:
                raise DocumentNotFoundError(f"Booking {booking.id} not found")

            current = Booking.from_snapshot(private)
            already_cancelled = current.status == BookingStatus.CANCELLED
            if not already_cancelled:
                await txn.update(private_ref, changes)

            updated = 0
            matches = await txn.query(self.public_collection, current.correlation_key())
            for match in matches:
                if match.data.get("status") == BookingStatus.CANCELLED.value:
                    continue
                await txn.update(match.ref, changes)
                updated += 1

            result_snapshot = await txn.get(private_ref)

        result = CancelResult(
            booking=Booking.from_snapshot(result_snapshot),
            public_updated=updated,
            public_matched=len(matches),
            already_cancelled=already_cancelled,
        )

        if not matches:
            logger.warning(
                f"Booking {booking.id} cancelled but no public copy matched "
                f"(equipment {booking.equipment_id}, user {booking.user_id})"
            )
        elif len(matches) > 1:
            logger.warning(f"Booking {booking.id} matched {len(matches)} public copies; all cancelled")
        logger.info(f"Booking {booking.id} cancelled by user {identity.user_id} (public copies updated: {updated})")
        return result

    # ============== RECONCILE ==============

    async def reconcile(self, principal: Identity) -> ReconcileReport:
        """
        Repair drift between private and public copies.

        A private copy without a public copy gets one recreated from its fields.
        A public copy still booked whose private copy is cancelled is cancelled.
        Public copies without a private copy are left untouched.
        """
        report = ReconcileReport()
        prefix = collections.users_prefix(self.app_id)

        async with self.store.transaction(principal) as txn:
            private_copies = await txn.collection_group(collections.BOOKINGS, prefix)
            public_copies = await txn.list(self.public_collection)

            public_by_key: dict[tuple, list] = defaultdict(list)
            for snap in public_copies:
                key = (snap.data.get("equipmentId"), snap.data.get("userId"), snap.data.get("bookedAt"))
                public_by_key[key].append(snap)

            for snap in private_copies:
                report.checked += 1
                private = Booking.from_snapshot(snap)
                key = tuple(private.correlation_key().values())
                matches = public_by_key.get(key, [])

                if not matches:
                    ref = await txn.create(self.public_collection, private.to_fields())
                    report.recreated.append(ref.id)
                    continue

                if len(matches) > 1:
                    report.duplicates.append(private.id)

                if private.status == BookingStatus.CANCELLED:
                    for match in matches:
                        if match.data.get("status") == BookingStatus.BOOKED.value:
                            await txn.update(match.ref, {
                                "status": BookingStatus.CANCELLED.value,
                                "cancelledAt": snap.data.get("cancelledAt") or timestamp_field(now_utc()),
                            })
                            report.cancelled.append(match.id)

        if report.repaired:
            logger.warning(
                f"Reconciliation repaired {report.repaired} public booking(s): "
                f"recreated={report.recreated}, cancelled={report.cancelled}"
            )
        if report.duplicates:
            logger.warning(f"Private bookings with several public copies: {report.duplicates}")
        return report
