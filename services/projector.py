"""Live read models fed by store subscriptions."""

from collections.abc import Awaitable, Callable

from database import collections
from database.schemas import Booking, Equipment
from database.store import DocumentSnapshot, DocumentStore, Subscription
from services.identity import Identity
from utils.errors import StoreError
from utils.logger import logger


EQUIPMENT_VIEW = "equipment"
PUBLIC_BOOKINGS_VIEW = "public_bookings"
MY_BOOKINGS_VIEW = "my_bookings"

ViewListener = Callable[[str], Awaitable[None]]


class ReadModelProjector:
    """
    Keeps three views current: equipment, public bookings and the signed-in
    user's bookings. Every notification replaces a view with the latest full
    snapshot.
    """

    def __init__(self, store: DocumentStore, app_id: str):
        self.store = store
        self.app_id = app_id
        self.identity: Identity | None = None

        self.equipment: list[Equipment] = []
        self.public_bookings: list[Booking] = []
        self.my_bookings: list[Booking] = []

        self._shared: list[Subscription] = []
        self._mine: Subscription | None = None
        self._listeners: list[ViewListener] = []

    @property
    def started(self) -> bool:
        return bool(self._shared)

    @property
    def ready(self) -> bool:
        """Shared views are live and the my-bookings view follows the current identity."""
        return self.started and (self.identity is None or self._mine is not None)

    def add_listener(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def start(self) -> None:
        if self.started:
            return
        shared: list[Subscription] = []
        try:
            shared.append(await self.store.subscribe(collections.equipment(self.app_id), self._on_equipment))
            shared.append(
                await self.store.subscribe(collections.public_bookings(self.app_id), self._on_public_bookings)
            )
        except StoreError:
            for subscription in shared:
                subscription.unsubscribe()
            raise
        self._shared = shared

    async def set_identity(self, identity: Identity | None) -> None:
        """Follow a new identity: drop the old my-bookings subscription and open one for the new user."""
        if identity == self.identity and (identity is None or self._mine is not None):
            return

        if self._mine is not None:
            self._mine.unsubscribe()
            self._mine = None

        self.identity = identity
        if identity is None:
            self.my_bookings = []
            await self._changed(MY_BOOKINGS_VIEW)
            return

        self._mine = await self.store.subscribe(
            collections.user_bookings(self.app_id, identity.user_id),
            self._on_my_bookings,
        )

    async def close(self) -> None:
        for subscription in self._shared:
            subscription.unsubscribe()
        self._shared = []
        if self._mine is not None:
            self._mine.unsubscribe()
            self._mine = None

    # ============== SNAPSHOT HANDLERS ==============

    async def _on_equipment(self, snapshot: list[DocumentSnapshot]) -> None:
        self.equipment = [Equipment.from_snapshot(s) for s in snapshot]
        await self._changed(EQUIPMENT_VIEW)

    async def _on_public_bookings(self, snapshot: list[DocumentSnapshot]) -> None:
        self.public_bookings = [Booking.from_snapshot(s) for s in snapshot]
        await self._changed(PUBLIC_BOOKINGS_VIEW)

    async def _on_my_bookings(self, snapshot: list[DocumentSnapshot]) -> None:
        self.my_bookings = sorted(
            (Booking.from_snapshot(s) for s in snapshot),
            key=lambda b: b.start_date,
        )
        await self._changed(MY_BOOKINGS_VIEW)

    async def _changed(self, view: str) -> None:
        for listener in list(self._listeners):
            try:
                await listener(view)
            except Exception as e:
                logger.error(f"View listener failed for {view}: {e}", exc_info=True)

    # ============== LOOKUPS ==============

    def find_equipment(self, equipment_id: str) -> Equipment | None:
        return next((e for e in self.equipment if e.id == equipment_id), None)

    def find_my_booking(self, booking_id: str) -> Booking | None:
        return next((b for b in self.my_bookings if b.id == booking_id), None)
