"""Exceptions surfaced to the user by handlers."""

from enum import Enum


class InvalidInputError(ValueError):
    """A required field is missing or malformed. Raised before any write."""


class RejectReason(str, Enum):
    EMPTY_INTERVAL = "empty_interval"
    START_IN_PAST = "start_in_past"
    CONFLICT = "conflict"
    UNKNOWN_EQUIPMENT = "unknown_equipment"


REJECT_MESSAGES = {
    RejectReason.EMPTY_INTERVAL: "End time must be after start time.",
    RejectReason.START_IN_PAST: "Booking start time cannot be in the past.",
    RejectReason.CONFLICT: "This equipment is already booked for this time slot.",
    RejectReason.UNKNOWN_EQUIPMENT: "This equipment no longer exists.",
}


class BookingRejected(InvalidInputError):
    """Conflict check refused the candidate booking."""

    def __init__(self, reason: RejectReason, conflicts: list | None = None):
        super().__init__(REJECT_MESSAGES[reason])
        self.reason = reason
        self.conflicts = conflicts or []


class StoreError(RuntimeError):
    """A store operation failed. The message carries the underlying cause."""


class DocumentNotFoundError(StoreError):
    pass


class PermissionDeniedError(StoreError):
    pass
