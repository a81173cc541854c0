"""Exception hierarchy for shelfboard.

Every error raised by the stores, the staging pipeline and the sync
controller derives from InventoryError, so callers can catch broad or
narrow as needed.
"""


class InventoryError(Exception):
    """Base exception for all inventory errors."""

    code = "inventory"


class ValidationError(InventoryError):
    """Input rejected before any store call (missing title, no media, bad field)."""

    code = "validation"


class StorageError(InventoryError):
    """The asset or item medium refused a read or write."""

    code = "storage"


class NotFoundError(InventoryError):
    """Update or delete on an id the store does not hold."""

    code = "not_found"


class MaterializationError(InventoryError):
    """A staged file could not be read into a preview."""

    code = "materialization"
