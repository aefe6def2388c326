"""SQLModel models for Goods Declarations (header, items, charges, retirement log)."""
from typing import Optional
from datetime import date, datetime
from sqlmodel import SQLModel, Field

from gdledger.models.types import UTCDateTime, utcnow


class GDEntry(SQLModel, table=True):
    """A customs Goods Declaration header – the unit of landed-cost computation."""

    __tablename__ = "gd_entries"

    id: Optional[int] = Field(default=None, primary_key=True)
    gd_number: str = Field(index=True)
    gd_date: date = Field(index=True)
    supplier_name: Optional[str] = Field(default=None, index=True)

    # Shipping / customs metadata
    invoice_value: float = Field(default=0.0)
    freight: float = Field(default=0.0)
    insurance: float = Field(default=0.0)
    clearing_charges: float = Field(default=0.0)
    port_charges: float = Field(default=0.0)
    gross_weight: float = Field(default=0.0)
    net_weight: float = Field(default=0.0)
    number_of_packages: Optional[int] = None
    container_no: Optional[str] = None
    vessel_name: Optional[str] = None
    port_of_loading: Optional[str] = None
    port_of_discharge: Optional[str] = None
    delivery_terms: Optional[str] = None
    bl_awb_no: Optional[str] = None
    exchange_rate: float = Field(default=0.0)
    invoice_currency: Optional[str] = None
    assessed_value: float = Field(default=0.0)
    payment_mode: Optional[str] = None
    psid_no: Optional[str] = None
    bank_name: Optional[str] = None
    total_gd_amount: float = Field(default=0.0)
    challan_no: Optional[str] = None

    # Derived: quantity-weighted average of item landed costs
    landed_cost: float = Field(default=0.0)
    # Income-tax rate used by the most recent recompute
    income_tax_rate: float = Field(default=0.35)

    # Lifecycle
    stocked_in: bool = Field(default=False, index=True)
    retired: bool = Field(default=False, index=True)
    retired_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    retired_by: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class GDItem(SQLModel, table=True):
    """
    One customs line of a GD.

    Raw import figures are authoritative; every derived field below them is
    reproducible from the raw figures plus the GD's charges and tax rate.
    """

    __tablename__ = "gd_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    gd_entry_id: int = Field(foreign_key="gd_entries.id", index=True)
    item_id: str = Field(index=True, unique=True)  # "<gd_number>-<hs_code>-<ordinal>"
    item_number: Optional[str] = None  # "<gd_number>-<hs_code>"
    description: Optional[str] = None
    hs_code: Optional[str] = Field(default=None, index=True)
    unit: Optional[str] = None

    # Raw figures
    quantity: float = Field(default=0.0)
    unit_price: float = Field(default=0.0)
    total_value: float = Field(default=0.0)
    total_custom_value: float = Field(default=0.0)
    invoice_value: float = Field(default=0.0)
    unit_cost: float = Field(default=0.0)
    gross_weight: float = Field(default=0.0)
    custom_duty: float = Field(default=0.0)
    sales_tax: float = Field(default=0.0)
    gst: float = Field(default=0.0)
    ast: float = Field(default=0.0)
    income_tax: float = Field(default=0.0)
    acd: float = Field(default=0.0)
    regulatory_duty: float = Field(default=0.0)

    # Derived figures (rounded to 2 dp on persistence)
    landed_cost: float = Field(default=0.0)
    cost: float = Field(default=0.0)
    retail_price: float = Field(default=0.0)
    per_unit_sales_tax: float = Field(default=0.0)
    mrp: float = Field(default=0.0)
    gross_margin: float = Field(default=0.0)
    sale_price: float = Field(default=0.0)


class GDCharge(SQLModel, table=True):
    """Additional landed-cost contributor (freight-like), spread by gross weight."""

    __tablename__ = "gd_charges"

    id: Optional[int] = Field(default=None, primary_key=True)
    gd_entry_id: int = Field(foreign_key="gd_entries.id", index=True)
    charge_type: str
    charge_amount: float = Field(default=0.0)


class GDRetirementLog(SQLModel, table=True):
    """Audit record written when a GD's last inventory batch is exhausted."""

    __tablename__ = "gd_retirement_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    gd_entry_id: int = Field(index=True)
    retired_by: Optional[str] = None
    reason: Optional[str] = None
    retired_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
