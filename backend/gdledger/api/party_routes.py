"""
Payments, banks and customers API.

Endpoints:
  POST   /api/payments                  – record a payment
  POST   /api/payments/allocate         – spread an amount over unpaid invoices
  GET    /api/banks                     – active bank accounts
  POST   /api/banks                     – add a bank account
  PUT    /api/banks/{id}                – edit a bank account
  GET    /api/banks/{id}/payments       – payments through the bank
  GET    /api/banks/{id}/ledger         – inflows and outflows by date
  GET    /api/customers                 – list / search / filter by balance
  POST   /api/customers                 – add customer
  GET    /api/customers/{id}            – one customer
  PUT    /api/customers/{id}            – edit customer
  DELETE /api/customers/{id}            – delete customer without invoices
  GET    /api/customers/{id}/ledger     – invoices, returns, payments
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from gdledger.core.database import atomic, get_session
from gdledger.schemas.requests import AllocateRequest, BankCreate, BankUpdate, CustomerIn, PaymentCreate
from gdledger.schemas.responses import (
    AllocationRead,
    AllocationResponse,
    BankLedgerResponse,
    BankLedgerRow,
    BankPaymentRead,
    BankPaymentsResponse,
    BankRead,
    CustomerLedgerEvent,
    CustomerLedgerResponse,
    CustomerRead,
    OkResponse,
    PaymentResponse,
)
from gdledger.services import customers, payments, reports

payment_router = APIRouter(prefix="/api", tags=["payments"])
customer_router = APIRouter(prefix="/api/customers", tags=["customers"])


# ── Payments ──────────────────────────────────────────────────────────────────


@payment_router.post("/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
def record_payment(body: PaymentCreate, session: Session = Depends(get_session)):
    payment, result = payments.record_payment(session, body.model_dump())
    return PaymentResponse(
        payment_id=payment.id,
        amount=payment.amount,
        unallocated_amount=payment.unallocated_amount,
        allocations=[AllocationRead(invoice_id=i, amount=a) for i, a in result.allocations],
    )


@payment_router.post("/payments/allocate", response_model=AllocationResponse)
def allocate(body: AllocateRequest, session: Session = Depends(get_session)):
    with atomic(session):
        customers.get_customer(session, body.customer_id)
        result = payments.allocate_customer_payment(session, body.customer_id, body.amount)
    return AllocationResponse(
        allocations=[AllocationRead(invoice_id=i, amount=a) for i, a in result.allocations],
        allocated=result.allocated,
        remaining=result.remaining,
    )


@payment_router.get("/banks", response_model=list[BankRead])
def list_banks(session: Session = Depends(get_session)):
    return [BankRead.model_validate(b) for b in payments.list_banks(session)]


@payment_router.post("/banks", response_model=BankRead, status_code=status.HTTP_201_CREATED)
def create_bank(body: BankCreate, session: Session = Depends(get_session)):
    bank = payments.create_bank(session, body.name, body.account_number, body.branch, body.balance)
    return BankRead.model_validate(bank)


@payment_router.put("/banks/{bank_id}", response_model=BankRead)
def update_bank(bank_id: int, body: BankUpdate, session: Session = Depends(get_session)):
    bank = payments.update_bank(session, bank_id, body.model_dump(exclude_unset=True))
    return BankRead.model_validate(bank)


@payment_router.get("/banks/{bank_id}/payments", response_model=BankPaymentsResponse)
def bank_payments(bank_id: int, session: Session = Depends(get_session)):
    rows, total = payments.bank_payments(session, bank_id)
    return BankPaymentsResponse(
        bank_id=bank_id,
        total=total,
        payments=[BankPaymentRead.model_validate(p) for p in rows],
    )


@payment_router.get("/banks/{bank_id}/ledger", response_model=BankLedgerResponse)
def bank_ledger(
    bank_id: int,
    from_date: Optional[date] = Query(default=None),
    to_date: Optional[date] = Query(default=None),
    session: Session = Depends(get_session),
):
    data = payments.bank_ledger(session, bank_id, from_date, to_date)
    return BankLedgerResponse(
        bank=BankRead.model_validate(data["bank"]),
        inflows=data["inflows"],
        outflows=data["outflows"],
        net=data["net"],
        rows=[BankLedgerRow(**r) for r in data["rows"]],
    )


# ── Customers ─────────────────────────────────────────────────────────────────


@customer_router.get("", response_model=list[CustomerRead])
def list_customers(
    search: Optional[str] = Query(default=None),
    balance_gt: Optional[float] = Query(default=None, description="Only customers owing more than this"),
    credit_exceeded: bool = Query(default=False, description="Only customers over their credit limit"),
    session: Session = Depends(get_session),
):
    rows = customers.list_customers(session, search, balance_gt, credit_exceeded)
    return [CustomerRead.model_validate(c) for c in rows]


@customer_router.post("", response_model=CustomerRead, status_code=status.HTTP_201_CREATED)
def create_customer(body: CustomerIn, session: Session = Depends(get_session)):
    customer = customers.create_customer(session, body.model_dump(exclude_none=True))
    return CustomerRead.model_validate(customer)


@customer_router.get("/{customer_id}", response_model=CustomerRead)
def get_customer(customer_id: int, session: Session = Depends(get_session)):
    return CustomerRead.model_validate(customers.get_customer(session, customer_id))


@customer_router.put("/{customer_id}", response_model=CustomerRead)
def update_customer(customer_id: int, body: CustomerIn, session: Session = Depends(get_session)):
    customer = customers.update_customer(session, customer_id, body.model_dump(exclude_unset=True))
    return CustomerRead.model_validate(customer)


@customer_router.delete("/{customer_id}", response_model=OkResponse)
def delete_customer(customer_id: int, session: Session = Depends(get_session)):
    customers.delete_customer(session, customer_id)
    return OkResponse(message=f"Customer {customer_id} deleted")


@customer_router.get("/{customer_id}/ledger", response_model=CustomerLedgerResponse)
def customer_ledger(customer_id: int, session: Session = Depends(get_session)):
    data = reports.customer_ledger(session, customer_id)
    events = [CustomerLedgerEvent(**e) for e in data.pop("events")]
    return CustomerLedgerResponse(**data, events=events)
