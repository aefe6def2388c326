"""SQLModel models for sales invoices, invoice lines and returns."""
from dataclasses import dataclass
from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field

from gdledger.models.types import UTCDateTime, utcnow


@dataclass(frozen=True)
class TotalsAdjustment:
    """A refund applied to an invoice's totals by a return event."""

    refund: float
    tax_reversal: float
    ref: Optional[str] = None  # return number


class SalesInvoice(SQLModel, table=True):
    """
    Invoice header.

    Totals are set once at creation and afterwards only reduced through
    ``apply_adjustment``: current totals always equal the original totals
    minus the refunds and tax reversals applied so far.
    """

    __tablename__ = "sales_invoices"

    id: Optional[int] = Field(default=None, primary_key=True)
    invoice_number: str = Field(index=True, unique=True)
    customer_id: int = Field(foreign_key="customers.id", index=True)
    gd_entry_id: Optional[int] = Field(default=None, index=True)

    # Totals
    gross_total: float = Field(default=0.0)
    sales_tax: float = Field(default=0.0)
    withholding_rate: float = Field(default=0.0)
    withholding_tax: float = Field(default=0.0)
    income_tax_paid: float = Field(default=0.0)
    total_cost: float = Field(default=0.0)
    gross_profit: float = Field(default=0.0)

    tax_section: Optional[str] = Field(default=None, index=True)  # "236G" | "236H"
    filer_status: Optional[str] = None

    # Payment state
    is_paid: bool = Field(default=False, index=True)
    paid_bank: Optional[str] = None
    paid_by: Optional[str] = None
    paid_date: Optional[str] = None
    paid_receipt_ref: Optional[str] = None

    # Refund accumulators
    total_refund: float = Field(default=0.0)
    total_refund_tax: float = Field(default=0.0)
    fully_refunded: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)

    def apply_adjustment(self, adj: TotalsAdjustment) -> None:
        self.gross_total = round(self.gross_total - adj.refund, 2)
        self.sales_tax = round(self.sales_tax - adj.tax_reversal, 2)
        self.gross_profit = round(self.gross_profit - (adj.refund - adj.tax_reversal), 2)
        self.total_refund = round(self.total_refund + adj.refund, 2)
        self.total_refund_tax = round(self.total_refund_tax + adj.tax_reversal, 2)


class SalesInvoiceItem(SQLModel, table=True):
    """One sold line; ``quantity_returned`` never exceeds ``quantity_sold``."""

    __tablename__ = "sales_invoice_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    invoice_id: int = Field(foreign_key="sales_invoices.id", index=True)
    item_id: str = Field(index=True)
    gd_entry_id: int = Field(index=True)
    quantity_sold: float
    retail_price: float = Field(default=0.0)
    sale_rate: float = Field(default=0.0)
    cost: float = Field(default=0.0)  # per unit, FIFO-weighted
    mrp: float = Field(default=0.0)
    unit: Optional[str] = None
    gross_line_total: float = Field(default=0.0)
    quantity_returned: float = Field(default=0.0)


class SalesReturn(SQLModel, table=True):
    """Immutable record of one returned line. Lines returned together share ``return_number``."""

    __tablename__ = "sales_returns"

    id: Optional[int] = Field(default=None, primary_key=True)
    return_number: str = Field(index=True)
    invoice_id: int = Field(foreign_key="sales_invoices.id", index=True)
    invoice_item_id: int = Field(foreign_key="sales_invoice_items.id", index=True)
    item_id: str
    quantity_returned: float
    reason: Optional[str] = None
    restock: bool = Field(default=False)
    refund_amount: float = Field(default=0.0)
    tax_reversal: float = Field(default=0.0)
    refund_method: str = Field(default="withholding")  # "cash" | "withholding"
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
