"""Booking conflict checks.

A candidate booking `[start, end)` on one piece of equipment is accepted when
it has positive length, does not start in the past and does not overlap any
`booked` interval on the same equipment. Intervals are half-open, so a booking
may start exactly when another one ends.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from database import collections
from database.schemas import Booking, BookingStatus, ensure_utc
from database.store import DocumentSnapshot
from utils.errors import REJECT_MESSAGES, RejectReason
from utils.helpers import now_utc


class Reader(Protocol):
    async def query(self, collection: str, filters: dict) -> list[DocumentSnapshot]: ...


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


@dataclass
class Decision:
    approved: bool
    reason: RejectReason | None = None
    conflicts: list[Booking] = field(default_factory=list)

    @property
    def message(self) -> str:
        return REJECT_MESSAGES[self.reason] if self.reason else ""

    @classmethod
    def reject(cls, reason: RejectReason, conflicts: list[Booking] | None = None) -> "Decision":
        return cls(approved=False, reason=reason, conflicts=conflicts or [])


class ConflictResolver:
    def __init__(self, app_id: str):
        self.public_collection = collections.public_bookings(app_id)

    def check_window(self, start: datetime, end: datetime, now: datetime | None = None) -> Decision | None:
        """Checks that need no store read. Returns a rejection or None."""
        start, end = ensure_utc(start), ensure_utc(end)
        now = ensure_utc(now) if now else now_utc()
        if end <= start:
            return Decision.reject(RejectReason.EMPTY_INTERVAL)
        if start < now:
            return Decision.reject(RejectReason.START_IN_PAST)
        return None

    async def booked_on(self, reader: Reader, equipment_id: str) -> list[Booking]:
        snapshots = await reader.query(
            self.public_collection,
            {"equipmentId": equipment_id, "status": BookingStatus.BOOKED.value},
        )
        return [Booking.from_snapshot(s) for s in snapshots]

    async def evaluate(
        self,
        reader: Reader,
        equipment_id: str,
        start: datetime,
        end: datetime,
        now: datetime | None = None,
    ) -> Decision:
        rejection = self.check_window(start, end, now)
        if rejection:
            return rejection

        start, end = ensure_utc(start), ensure_utc(end)
        conflicts = [
            b for b in await self.booked_on(reader, equipment_id)
            if intervals_overlap(start, end, b.start_date, b.end_date)
        ]
        if conflicts:
            return Decision.reject(RejectReason.CONFLICT, conflicts)
        return Decision(approved=True)
