"""Domain failures surfaced by the inventory engine."""

from __future__ import annotations


class InventoryError(Exception):
    """Base class for failures that carry a user-displayable message."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationFailed(InventoryError):
    default_message = "Please fill in all required fields."


class NotFound(InventoryError):
    default_message = "The requested record was not found."


class Unauthenticated(InventoryError):
    default_message = "Session expired. Please log in again."


class Conflict(InventoryError):
    default_message = "The change conflicts with existing records."


class NetworkUnavailable(InventoryError):
    default_message = "Cannot reach the inventory server. Check your connection."


class StorageError(InventoryError):
    default_message = "The local cache is unavailable."


class RemoteServiceError(InventoryError):
    default_message = "The inventory server could not complete the request."


class InconsistentState(InventoryError):
    default_message = (
        "Stock was changed on the server but its history could not be recorded. "
        "Reload the inventory before continuing."
    )
