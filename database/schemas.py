"""Domain documents: Equipment and Booking.

Attributes are snake_case in Python and camelCase in stored documents.
Timestamps are timezone-aware UTC and serialise to ISO-8601 strings.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from database.store import DocumentSnapshot


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


_timestamp = TypeAdapter(datetime)


def timestamp_field(value: datetime) -> str:
    """Serialise a timestamp the way stored documents hold it."""
    return _timestamp.dump_python(ensure_utc(value), mode="json")


class BookingStatus(str, Enum):
    BOOKED = "booked"
    CANCELLED = "cancelled"


class StoredModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str | None = Field(default=None, exclude=True)

    @field_validator("*", mode="after")
    @classmethod
    def _utc_timestamps(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value

    def to_fields(self) -> dict[str, Any]:
        """Document fields for the store (without the id)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot):
        return cls.model_validate({**snapshot.data, "id": snapshot.id})


class Equipment(StoredModel):
    """A bookable lab item."""

    name: str
    description: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __repr__(self) -> str:
        return f"<Equipment {self.id}: {self.name}>"


class Booking(StoredModel):
    """One stored copy of a reservation."""

    equipment_id: str
    equipment_name: str
    user_id: str
    user_display_name: str
    start_date: datetime
    end_date: datetime
    status: BookingStatus = BookingStatus.BOOKED
    booked_at: datetime
    cancelled_at: datetime | None = None

    @property
    def is_booked(self) -> bool:
        return self.status == BookingStatus.BOOKED

    def correlation_key(self) -> dict[str, Any]:
        """Fields shared by the private and public copies of one booking."""
        fields = self.to_fields()
        return {
            "equipmentId": fields["equipmentId"],
            "userId": fields["userId"],
            "bookedAt": fields["bookedAt"],
        }

    def __repr__(self) -> str:
        return f"<Booking {self.id}: {self.status.value}>"
