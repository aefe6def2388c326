"""Pydantic response schemas for API endpoints."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, ValidationInfo, field_validator


class Money(BaseModel):
    """Base for payloads whose money fields go out rounded to 2 dp.

    Rates and quantities are left as they are.
    """

    @field_validator("*", mode="after")
    @classmethod
    def _round_money(cls, v, info: ValidationInfo):
        name = info.field_name or ""
        if not isinstance(v, float) or name.endswith("_rate") or "qty" in name or "quantity" in name:
            return v
        return round(v, 2)


class HealthResponse(BaseModel):
    status: str
    db: str
    version: str = "1.0.0"


class OkResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None


class ErrorBody(BaseModel):
    kind: str
    message: str


# ── GD ────────────────────────────────────────────────────────────────────────


class GDCreated(Money):
    gd_id: int
    gd_number: str
    landed_cost: float


class LandedCostResponse(Money):
    gd_id: int
    landed_cost: float


class GDChargeRead(Money):
    id: int
    charge_type: str
    charge_amount: float

    class Config:
        from_attributes = True


class GDItemRead(Money):
    id: int
    item_id: str
    item_number: Optional[str]
    description: Optional[str]
    hs_code: Optional[str]
    unit: Optional[str]
    quantity: float
    unit_price: float
    total_value: float
    total_custom_value: float
    invoice_value: float
    unit_cost: float
    gross_weight: float
    custom_duty: float
    sales_tax: float
    gst: float
    ast: float
    income_tax: float
    acd: float
    regulatory_duty: float
    landed_cost: float
    cost: float
    retail_price: float
    per_unit_sales_tax: float
    mrp: float
    gross_margin: float
    sale_price: float

    class Config:
        from_attributes = True


class GDRead(Money):
    id: int
    gd_number: str
    gd_date: date
    supplier_name: Optional[str]
    container_no: Optional[str]
    vessel_name: Optional[str]
    port_of_loading: Optional[str]
    port_of_discharge: Optional[str]
    delivery_terms: Optional[str]
    bl_awb_no: Optional[str]
    invoice_currency: Optional[str]
    exchange_rate: float
    invoice_value: float
    freight: float
    insurance: float
    clearing_charges: float
    port_charges: float
    gross_weight: float
    net_weight: float
    number_of_packages: Optional[int]
    assessed_value: float
    total_gd_amount: float
    payment_mode: Optional[str]
    psid_no: Optional[str]
    bank_name: Optional[str]
    challan_no: Optional[str]
    landed_cost: float
    income_tax_rate: float
    stocked_in: bool
    retired: bool
    retired_at: Optional[datetime]
    retired_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class GDDetail(BaseModel):
    gd: GDRead
    items: list[GDItemRead] = []
    charges: list[GDChargeRead] = []


# ── Stock ─────────────────────────────────────────────────────────────────────


class StockInResponse(BaseModel):
    ok: bool = True
    gd_id: int
    batches: int


class StockSummaryRow(Money):
    item_id: str
    description: Optional[str]
    hs_code: Optional[str]
    unit: Optional[str]
    gd_id: int
    gd_number: str
    retired: bool
    current_qty: float
    unit_cost: float
    mrp: float
    total_sold: float
    total_returned_restock: float
    total_returned_no_restock: float


class StockLedgerEvent(BaseModel):
    action: str
    at: datetime
    by: Optional[str]
    ref: Optional[str]
    batch_id: Optional[int]
    delta: float
    batch_quantity_after: float
    balance_after: float


class StockLedgerResponse(BaseModel):
    item_id: str
    gd_id: int
    events: list[StockLedgerEvent]


# ── Sales ─────────────────────────────────────────────────────────────────────


class InvoiceCreated(Money):
    invoice_number: str
    gross_total: float
    sales_tax: float
    withholding_tax: float
    total_cost: float
    gross_profit: float


class InvoiceRead(Money):
    id: int
    invoice_number: str
    customer_id: int
    gd_entry_id: Optional[int]
    gross_total: float
    sales_tax: float
    withholding_rate: float
    withholding_tax: float
    income_tax_paid: float
    total_cost: float
    gross_profit: float
    tax_section: Optional[str]
    filer_status: Optional[str]
    is_paid: bool
    paid_bank: Optional[str]
    paid_by: Optional[str]
    paid_date: Optional[str]
    paid_receipt_ref: Optional[str]
    total_refund: float
    total_refund_tax: float
    fully_refunded: bool
    created_at: datetime

    class Config:
        from_attributes = True


class InvoiceItemRead(Money):
    id: int
    item_id: str
    gd_entry_id: int
    quantity_sold: float
    retail_price: float
    sale_rate: float
    cost: float
    mrp: float
    unit: Optional[str]
    gross_line_total: float
    quantity_returned: float

    class Config:
        from_attributes = True


class InvoiceDetail(BaseModel):
    invoice: InvoiceRead
    items: list[InvoiceItemRead] = []


class ReturnRead(Money):
    id: int
    return_number: str
    invoice_item_id: int
    item_id: str
    quantity_returned: float
    reason: Optional[str]
    restock: bool
    refund_amount: float
    tax_reversal: float
    refund_method: str
    created_at: datetime

    class Config:
        from_attributes = True


class ReturnResponse(Money):
    return_number: str
    refund_amount: float
    refund_tax: float
    fully_returned: bool
    refund_method: str


# ── Payments / parties ────────────────────────────────────────────────────────


class AllocationRead(Money):
    invoice_id: int
    amount: float


class AllocationResponse(Money):
    allocations: list[AllocationRead]
    allocated: float
    remaining: float


class PaymentResponse(Money):
    payment_id: int
    amount: float
    unallocated_amount: float
    allocations: list[AllocationRead] = []


class BankRead(Money):
    id: int
    name: str
    account_number: Optional[str]
    branch: Optional[str]
    balance: float
    is_active: bool

    class Config:
        from_attributes = True


class CustomerRead(Money):
    id: int
    name: str
    business_name: Optional[str]
    address: Optional[str]
    cnic: Optional[str]
    mobile: Optional[str]
    filer_status: str
    credit_limit: float
    balance: float
    credit_balance: float
    created_at: datetime

    class Config:
        from_attributes = True


class CustomerLedgerEvent(Money):
    at: datetime
    type: str
    ref: Optional[str]
    debit: float
    credit: float
    balance: float


class CustomerLedgerResponse(Money):
    customer_id: int
    name: str
    filer_status: str
    credit_balance: float
    total_invoiced: float
    total_credited: float
    closing_balance: float
    events: list[CustomerLedgerEvent]


class BankPaymentRead(Money):
    id: int
    date: str
    type: str
    payment_for: str
    customer_id: Optional[int]
    invoice_number: Optional[str]
    amount: float
    mode: str
    remarks: Optional[str]
    receipt_ref: Optional[str]

    class Config:
        from_attributes = True


class BankPaymentsResponse(Money):
    bank_id: int
    total: float
    payments: list[BankPaymentRead]


class BankLedgerRow(Money):
    payment_id: int
    date: str
    type: str
    customer_name: Optional[str]
    invoice_number: Optional[str]
    remarks: Optional[str]
    inflow: float
    outflow: float


class BankLedgerResponse(Money):
    bank: BankRead
    inflows: float
    outflows: float
    net: float
    rows: list[BankLedgerRow]


# ── Reports / item lookup ─────────────────────────────────────────────────────


class ProfitTotals(Money):
    invoices: int
    revenue: float
    refunds: float
    net_revenue: float
    sales_tax: float
    income_tax_paid: float
    withholding_tax: float
    cogs: float
    items_sold_qty: float
    returned_qty: float
    gross_profit: float
    gross_margin_pct: float
    net_profit: float


class ProfitTrendRow(Money):
    period: str
    revenue: float
    cogs: float
    gross_profit: float
    net_profit: float


class TopProduct(Money):
    item_id: str
    description: Optional[str]
    qty: float
    revenue: float
    gross_profit: float


class TopCustomer(Money):
    customer_id: int
    name: str
    revenue: float
    gross_profit: float


class ProfitSummaryResponse(BaseModel):
    totals: ProfitTotals
    trend: list[ProfitTrendRow]
    top_products: list[TopProduct]
    top_customers: list[TopCustomer]


class ItemSearchRow(Money):
    item_id: str
    description: Optional[str]
    hs_code: Optional[str]
    unit: Optional[str]
    retail_price: float
    sale_price: float
    available_qty: float


class ItemAvailabilityRow(Money):
    gd_id: int
    gd_number: str
    batch_id: int
    quantity_remaining: float
    cost: float
    mrp: float


class InvoiceSuggestion(BaseModel):
    invoice_number: str
    customer_name: str
    returnable_quantity: float
