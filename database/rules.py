"""Access rules checked by the store on every write.

The administrator capability is a claim issued by the identity provider from
server configuration. Clients cannot grant it to themselves.
"""

from typing import TYPE_CHECKING, Any

from database import collections
from utils.errors import PermissionDeniedError

if TYPE_CHECKING:
    from services.identity import Identity


CREATE = "create"
UPDATE = "update"
DELETE = "delete"


class AccessRules:
    """Write rules for one application namespace."""

    def __init__(self, app_id: str):
        self.app_id = app_id
        self._equipment = collections.equipment(app_id)
        self._public_bookings = collections.public_bookings(app_id)

    def check_write(
        self,
        principal: "Identity | None",
        action: str,
        collection: str,
        existing: dict[str, Any] | None = None,
        fields: dict[str, Any] | None = None,
    ) -> None:
        """Raise PermissionDeniedError unless `principal` may perform the write."""
        if principal is None:
            raise PermissionDeniedError("Sign in required")

        if collection == self._equipment:
            if not principal.is_admin:
                raise PermissionDeniedError("Administrator permission required")
            return

        if collection == self._public_bookings:
            if principal.is_admin:
                return
            if action == DELETE:
                raise PermissionDeniedError("Administrator permission required")
            if existing is not None and existing.get("userId") != principal.user_id:
                raise PermissionDeniedError("Booking belongs to another user")
            if fields is not None and fields.get("userId") != principal.user_id:
                raise PermissionDeniedError("Booking belongs to another user")
            return

        owner = collections.owner_of_user_bookings(self.app_id, collection)
        if owner is not None:
            if owner != principal.user_id:
                raise PermissionDeniedError("Cannot write another user's bookings")
            return

        raise PermissionDeniedError(f"Writes to {collection} are not allowed")
