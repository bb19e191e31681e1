"""Collection paths (schema-in-code).

Every path is namespaced by the application id. Private booking copies live
under the owning user:

    apps/{app_id}/equipment
    apps/{app_id}/bookings
    apps/{app_id}/users/{user_id}/bookings
"""

EQUIPMENT = "equipment"
BOOKINGS = "bookings"
USERS = "users"


def app_root(app_id: str) -> str:
    return f"apps/{app_id}"


def equipment(app_id: str) -> str:
    return f"{app_root(app_id)}/{EQUIPMENT}"


def public_bookings(app_id: str) -> str:
    return f"{app_root(app_id)}/{BOOKINGS}"


def users_prefix(app_id: str) -> str:
    return f"{app_root(app_id)}/{USERS}/"


def user_bookings(app_id: str, user_id: str) -> str:
    return f"{users_prefix(app_id)}{user_id}/{BOOKINGS}"


def owner_of_user_bookings(app_id: str, collection: str) -> str | None:
    """Return the user id if `collection` is a private bookings collection."""
    prefix = users_prefix(app_id)
    suffix = f"/{BOOKINGS}"
    if not collection.startswith(prefix) or not collection.endswith(suffix):
        return None
    user_id = collection[len(prefix):-len(suffix)]
    if not user_id or "/" in user_id:
        return None
    return user_id
