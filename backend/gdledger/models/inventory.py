"""SQLModel models for the inventory ledger (batches and append-only movement log)."""
from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field

from gdledger.models.types import UTCDateTime, utcnow


class InventoryBatch(SQLModel, table=True):
    """A lot of one GD item, consumed FIFO by ``stocked_at``."""

    __tablename__ = "inventory"

    id: Optional[int] = Field(default=None, primary_key=True)
    gd_entry_id: int = Field(foreign_key="gd_entries.id", index=True)
    item_id: str = Field(index=True)
    item_code: Optional[str] = None
    hs_code: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None

    quantity: float = Field(default=0.0)  # as stocked
    quantity_remaining: float = Field(default=0.0)  # never negative
    cost: float = Field(default=0.0)
    mrp: float = Field(default=0.0)

    stocked_by: Optional[str] = None
    stocked_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)
    # Set when the batch was created by a sales return restock
    source_return_number: Optional[str] = None
    last_updated: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class InventoryLog(SQLModel, table=True):
    """
    Immutable record of one quantity change.

    ``quantity_changed`` is signed (+ stock-in / restock, - sale). Rows are
    only ever inserted.
    """

    __tablename__ = "inventory_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: str = Field(index=True)
    gd_entry_id: int = Field(index=True)
    batch_id: Optional[int] = None  # batch may since have been removed
    action: str = Field(index=True)  # "stock-in" | "sale" | "restock"
    quantity_changed: float
    resulting_quantity: float
    action_by: Optional[str] = None
    ref: Optional[str] = None  # invoice / return number
    action_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
