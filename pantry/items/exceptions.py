"""Custom exceptions for item operations."""

from pantry.errors.exceptions import NotFoundError, ServiceValidationError


class ItemNotFoundError(NotFoundError):
    """Raised when an item does not exist or belongs to another owner."""

    code = "ITEM_NOT_FOUND"

    def __init__(self, item_id: int | None = None):
        self.item_id = item_id
        message = f"Item with ID {item_id} not found" if item_id is not None else "Item not found"
        super().__init__(message)


class ItemValidationError(ServiceValidationError):
    """Raised when an item change is rejected."""

    code = "INVALID_ITEM"
