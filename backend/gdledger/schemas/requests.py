"""Pydantic request bodies for API endpoints."""
from __future__ import annotations

from datetime import date
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator


# ── GD ────────────────────────────────────────────────────────────────────────


class GDHeaderIn(BaseModel):
    gd_number: str
    gd_date: date
    supplier_name: Optional[str] = None
    invoice_value: Optional[float] = None
    freight: Optional[float] = None
    insurance: Optional[float] = None
    clearing_charges: Optional[float] = None
    port_charges: Optional[float] = None
    gross_weight: Optional[float] = None
    net_weight: Optional[float] = None
    number_of_packages: Optional[int] = None
    container_no: Optional[str] = None
    vessel_name: Optional[str] = None
    port_of_loading: Optional[str] = None
    port_of_discharge: Optional[str] = None
    delivery_terms: Optional[str] = None
    bl_awb_no: Optional[str] = None
    exchange_rate: Optional[float] = None
    invoice_currency: Optional[str] = None
    assessed_value: Optional[float] = None
    payment_mode: Optional[str] = None
    psid_no: Optional[str] = None
    bank_name: Optional[str] = None
    total_gd_amount: Optional[float] = None
    challan_no: Optional[str] = None


class GDItemIn(BaseModel):
    """Raw customs figures of one line; missing numbers count as 0."""

    item_id: Optional[str] = None  # only used when editing
    description: Optional[str] = None
    hs_code: Optional[str] = None
    unit: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    total_value: Optional[float] = None
    total_custom_value: Optional[float] = None
    invoice_value: Optional[float] = None
    unit_cost: Optional[float] = None
    gross_weight: Optional[float] = None
    custom_duty: Optional[float] = None
    sales_tax: Optional[float] = None
    gst: Optional[float] = None
    ast: Optional[float] = None
    income_tax: Optional[float] = None
    acd: Optional[float] = None
    regulatory_duty: Optional[float] = None


class GDChargeIn(BaseModel):
    charge_type: str
    charge_amount: float = 0.0


class GDCreate(GDHeaderIn):
    items: list[GDItemIn] = []
    charges: list[GDChargeIn] = []
    income_tax_rate: Optional[float] = None


class GDItemsUpdate(BaseModel):
    items: list[GDItemIn]
    income_tax_rate: Optional[float] = None

    @field_validator("items")
    @classmethod
    def items_have_ids(cls, v):
        if any(not i.item_id for i in v):
            raise ValueError("every item needs its item_id")
        return v


class GDChargesUpdate(BaseModel):
    charges: list[GDChargeIn]
    income_tax_rate: Optional[float] = None


class StockInRequest(BaseModel):
    stocked_by: Optional[str] = None
    stocked_at: Optional[str] = None  # ISO-8601


# ── Sales ─────────────────────────────────────────────────────────────────────


class InvoiceLineIn(BaseModel):
    item_id: str
    quantity: float
    sale_rate: float
    retail_price: Optional[float] = None
    unit: Optional[str] = None


class InvoiceCreate(BaseModel):
    customer_id: int
    gd_entry_id: int
    items: list[InvoiceLineIn]
    withholding_rate: Optional[float] = None
    tax_section: Optional[Literal["236G", "236H"]] = None
    created_by: Optional[str] = None


class MarkPaidRequest(BaseModel):
    bank_or_cash: Optional[str] = None
    payer_name: Optional[str] = None
    date: Optional[str] = None
    receipt_ref: Optional[str] = None


class ReturnLineIn(BaseModel):
    invoice_item_id: int
    quantity_returned: float
    restock: bool = False
    reason: Optional[str] = None


class ReturnCreate(BaseModel):
    invoice_number: str
    items: list[ReturnLineIn]
    refund_method: Literal["cash", "withholding"] = "withholding"
    created_by: Optional[str] = None


# ── Payments / parties ────────────────────────────────────────────────────────


class PaymentCreate(BaseModel):
    date: Optional[str] = None
    type: Literal["received", "paid"]
    payment_for: Literal["customer", "invoice"] = "invoice"
    customer_id: Optional[int] = None
    invoice_number: Optional[str] = None
    amount: float
    mode: Literal["cash", "bank"]
    bank_id: Optional[int] = None
    bank_name: Optional[str] = None
    remarks: Optional[str] = None
    receipt_ref: Optional[str] = None


class AllocateRequest(BaseModel):
    customer_id: int
    amount: float = Field(gt=0)


class BankCreate(BaseModel):
    name: str
    account_number: Optional[str] = None
    branch: Optional[str] = None
    balance: float = 0.0


class BankUpdate(BaseModel):
    name: Optional[str] = None
    account_number: Optional[str] = None
    branch: Optional[str] = None
    is_active: Optional[bool] = None


class CustomerIn(BaseModel):
    name: Optional[str] = None
    business_name: Optional[str] = None
    address: Optional[str] = None
    cnic: Optional[str] = None
    mobile: Optional[str] = None
    filer_status: Optional[Literal["filer", "non-filer"]] = None
    credit_limit: Optional[float] = None
