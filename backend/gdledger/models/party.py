"""SQLModel models for customers, banks, payments and payment allocations."""
from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field

from gdledger.models.types import UTCDateTime, utcnow


class Customer(SQLModel, table=True):
    """Buyer with a running balance (positive = customer owes money)."""

    __tablename__ = "customers"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    business_name: Optional[str] = None
    address: Optional[str] = None
    cnic: Optional[str] = Field(default=None, index=True, unique=True)
    mobile: Optional[str] = None
    filer_status: str = Field(default="non-filer")  # "filer" | "non-filer"
    credit_limit: float = Field(default=0.0)
    balance: float = Field(default=0.0)
    # Payment received beyond what the unpaid invoices could absorb
    credit_balance: float = Field(default=0.0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Bank(SQLModel, table=True):
    __tablename__ = "banks"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    account_number: Optional[str] = None
    branch: Optional[str] = None
    balance: float = Field(default=0.0)
    is_active: bool = Field(default=True)


class Payment(SQLModel, table=True):
    """A received or paid amount, optionally spread across invoices."""

    __tablename__ = "payments"

    id: Optional[int] = Field(default=None, primary_key=True)
    date: str  # ISO date
    type: str  # "received" | "paid"
    payment_for: str = Field(default="invoice")  # "customer" | "invoice"
    customer_id: Optional[int] = Field(default=None, foreign_key="customers.id", index=True)
    invoice_number: Optional[str] = Field(default=None, index=True)
    amount: float
    mode: str  # "cash" | "bank"
    bank_id: Optional[int] = Field(default=None, foreign_key="banks.id")
    remarks: Optional[str] = None
    receipt_ref: Optional[str] = None
    unallocated_amount: float = Field(default=0.0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class PaymentAllocation(SQLModel, table=True):
    __tablename__ = "payment_allocations"

    id: Optional[int] = Field(default=None, primary_key=True)
    payment_id: Optional[int] = Field(default=None, foreign_key="payments.id", index=True)
    invoice_id: int = Field(foreign_key="sales_invoices.id", index=True)
    amount: float
