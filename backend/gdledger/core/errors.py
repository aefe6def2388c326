"""
Domain error taxonomy.

Every workflow failure is raised as a ``LedgerError`` subclass carrying a
machine-readable ``kind`` and a human-readable message. The API layer maps
``status_code`` onto the HTTP response; the enclosing transaction is always
rolled back before the error reaches the caller.
"""
from __future__ import annotations


class LedgerError(Exception):
    """Base class for all domain errors."""

    kind: str = "error"
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(LedgerError):
    """Input rejected before any mutation (bad rate, over-return, empty sale …)."""

    kind = "validation"
    status_code = 422


class InsufficientStockError(LedgerError):
    """FIFO consumption asked for more than the batches hold."""

    kind = "insufficient_stock"
    status_code = 409

    def __init__(self, item_id: str, gd_entry_id: int, requested: float, available: float) -> None:
        super().__init__(
            f"Insufficient stock for item {item_id} in GD {gd_entry_id}: "
            f"requested {requested:g}, available {available:g}"
        )
        self.item_id = item_id
        self.gd_entry_id = gd_entry_id
        self.requested = requested
        self.available = available

    @property
    def shortfall(self) -> float:
        return self.requested - self.available


class ConflictError(LedgerError):
    """State forbids the operation (double stock-in, deleting a paid invoice …)."""

    kind = "conflict"
    status_code = 409


class NotFoundError(LedgerError):
    """Unknown GD / invoice / item / customer reference."""

    kind = "not_found"
    status_code = 404


class PersistenceError(LedgerError):
    """Underlying storage failure; the transaction has been rolled back."""

    kind = "persistence"
    status_code = 500
