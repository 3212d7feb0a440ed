"""Error types raised by the records inventory core.

Every error carries structured diagnostics so callers (the API layer, a form)
can surface a field- or record-scoped message instead of an opaque failure.
"""

from typing import Any, Dict, List, Optional


class InventoryError(Exception):
    """Base class for all records inventory errors."""

    kind = "inventory_error"

    def __init__(self, message: str, diagnostics: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.diagnostics: List[Dict[str, Any]] = diagnostics or []

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for an API response body."""
        return {
            "error": self.kind,
            "message": self.message,
            "diagnostics": self.diagnostics,
        }


class ValidationError(InventoryError):
    """One or more records failed field-level validation.

    Recoverable: the caller fixes the listed fields and resubmits.
    """

    kind = "validation_error"


class DuplicateKeyError(InventoryError):
    """A (schedule_number, item_number) pair conflicts within a batch or with storage."""

    kind = "duplicate_key"


class TransactionAbortError(InventoryError):
    """Storage failed during commit; the whole batch was rolled back."""

    kind = "transaction_aborted"


class MappingError(InventoryError):
    """An audit event could not be remapped to an inserted series _id."""

    kind = "mapping_error"


class SeriesNotFoundError(InventoryError):
    """No series record exists with the requested _id."""

    kind = "not_found"

    def __init__(self, series_id: int):
        super().__init__(
            f"Series {series_id} not found",
            [{"record": None, "_id": series_id, "message": "not found"}],
        )
        self.series_id = series_id
