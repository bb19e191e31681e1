"""Equipment catalog operations."""

from datetime import datetime

from database import collections
from database.schemas import Equipment, ensure_utc, timestamp_field
from database.store import DocumentRef, DocumentStore
from services.identity import Identity
from utils.errors import InvalidInputError
from utils.helpers import now_utc
from utils.logger import logger


def _clean(name: str, description: str) -> tuple[str, str]:
    name = (name or "").strip()
    description = (description or "").strip()
    if not name or not description:
        raise InvalidInputError("Please fill out all fields.")
    return name, description


class EquipmentCatalog:
    """Create, edit and delete equipment records. Writes need the admin claim."""

    def __init__(self, store: DocumentStore, app_id: str):
        self.store = store
        self.collection = collections.equipment(app_id)

    def _ref(self, equipment_id: str) -> DocumentRef:
        return DocumentRef(self.collection, equipment_id)

    async def list(self) -> list[Equipment]:
        snapshots = await self.store.list(self.collection)
        return sorted((Equipment.from_snapshot(s) for s in snapshots), key=lambda e: e.name.lower())

    async def get(self, equipment_id: str) -> Equipment | None:
        snapshot = await self.store.get(self._ref(equipment_id))
        return Equipment.from_snapshot(snapshot) if snapshot else None

    async def create(
        self,
        principal: Identity,
        name: str,
        description: str,
        now: datetime | None = None,
    ) -> Equipment:
        name, description = _clean(name, description)
        equipment = Equipment(
            name=name,
            description=description,
            created_at=ensure_utc(now) if now else now_utc(),
        )
        ref = await self.store.create(self.collection, equipment.to_fields(), principal)
        equipment.id = ref.id

        logger.info(f"Created equipment: {ref.id} - {name}")
        return equipment

    async def update(
        self,
        principal: Identity,
        equipment_id: str,
        name: str,
        description: str,
        now: datetime | None = None,
    ) -> None:
        name, description = _clean(name, description)
        await self.store.update(
            self._ref(equipment_id),
            {
                "name": name,
                "description": description,
                "updatedAt": timestamp_field(now or now_utc()),
            },
            principal,
        )
        logger.info(f"Updated equipment {equipment_id}: {name}")

    async def delete(self, principal: Identity, equipment_id: str) -> None:
        await self.store.delete(self._ref(equipment_id), principal)
        logger.info(f"Deleted equipment {equipment_id}")
