"""
Payments, oldest-first allocation to unpaid invoices, and bank accounts.

Every amount applied to an invoice lowers the customer's running ``balance``.
Money that no unpaid invoice can absorb is kept on the payment as
``unallocated_amount`` and credited to the customer's ``credit_balance``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping, Optional

from loguru import logger
from sqlmodel import Session, col, func, select

from gdledger.core.database import atomic
from gdledger.core.errors import NotFoundError, ValidationError
from gdledger.models.party import Bank, Customer, Payment, PaymentAllocation
from gdledger.models.sales import SalesInvoice
from gdledger.services.allocation import num
from gdledger.services.sales import apply_paid_details, find_invoice

PAYMENT_TYPES = ("received", "paid")
PAYMENT_MODES = ("cash", "bank")
PAYMENT_TARGETS = ("customer", "invoice")

_CENT = 0.005


@dataclass
class AllocationResult:
    # (invoice_id, amount) in the order they were applied
    allocations: list[tuple[int, float]] = field(default_factory=list)
    remaining: float = 0.0

    @property
    def allocated(self) -> float:
        return sum(amount for _, amount in self.allocations)


def _already_allocated(session: Session, invoice_id: int) -> float:
    total = session.exec(
        select(func.coalesce(func.sum(PaymentAllocation.amount), 0.0)).where(
            PaymentAllocation.invoice_id == invoice_id
        )
    ).one()
    return float(total or 0.0)


def allocate_customer_payment(
    session: Session,
    customer_id: int,
    amount: float,
    payment_id: Optional[int] = None,
) -> AllocationResult:
    """
    Spread ``amount`` over the customer's unpaid invoices, oldest first.

    An invoice whose remaining due is covered is marked paid; a partial
    allocation uses up the rest of the amount and ends the walk. The
    customer balance drops by what was applied. Runs in the caller's
    transaction.
    """
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than 0")

    unpaid = session.exec(
        select(SalesInvoice)
        .where(
            SalesInvoice.customer_id == customer_id,
            SalesInvoice.is_paid == False,  # noqa: E712
        )
        .order_by(SalesInvoice.created_at, SalesInvoice.id)
    ).all()

    result = AllocationResult(remaining=amount)
    for invoice in unpaid:
        if result.remaining <= _CENT:
            break
        due = round(invoice.gross_total - _already_allocated(session, invoice.id), 2)
        if due <= 0:
            continue

        covered = result.remaining + _CENT >= due
        if covered:
            applied = due
            invoice.is_paid = True
            session.add(invoice)
        else:
            applied = round(result.remaining, 2)

        session.add(PaymentAllocation(payment_id=payment_id, invoice_id=invoice.id, amount=applied))
        result.allocations.append((invoice.id, applied))
        result.remaining = round(result.remaining - applied, 2)
        if not covered:
            break

    if result.remaining < _CENT:
        result.remaining = 0.0
    if result.allocations:
        customer = session.get(Customer, customer_id)
        if customer is not None:
            customer.balance = round(customer.balance - result.allocated, 2)
            session.add(customer)
    session.flush()
    return result


def record_payment(session: Session, payload: Mapping[str, Any]) -> tuple[Payment, AllocationResult]:
    """Insert a payment and apply it to an invoice or across a customer's invoices."""
    amount = num(payload, "amount")
    if amount <= 0:
        raise ValidationError("Invalid payment amount")
    ptype = payload.get("type")
    if ptype not in PAYMENT_TYPES:
        raise ValidationError("Invalid payment type")
    mode = payload.get("mode")
    if mode not in PAYMENT_MODES:
        raise ValidationError("Invalid payment mode")
    payment_for = payload.get("payment_for") or "invoice"
    if payment_for not in PAYMENT_TARGETS:
        raise ValidationError("payment_for must be 'customer' or 'invoice'")
    bank_id = payload.get("bank_id")
    if mode == "bank" and not bank_id:
        raise ValidationError("bank_id is required for bank payments")
    customer_id = payload.get("customer_id")
    invoice_number = payload.get("invoice_number")
    if payment_for == "customer" and not customer_id:
        raise ValidationError("customer_id is required for customer payments")
    if payment_for == "invoice" and not invoice_number:
        raise ValidationError("invoice_number is required for invoice payments")
    paid_on = payload.get("date") or date.today().isoformat()

    with atomic(session):
        bank = None
        if mode == "bank":
            bank = session.get(Bank, bank_id)
            if bank is None:
                raise NotFoundError(f"Bank {bank_id} not found")
        customer = None
        if customer_id:
            customer = session.get(Customer, customer_id)
            if customer is None:
                raise NotFoundError(f"Customer {customer_id} not found")

        payment = Payment(
            date=paid_on,
            type=ptype,
            payment_for=payment_for,
            customer_id=customer_id,
            invoice_number=invoice_number if payment_for == "invoice" else None,
            amount=amount,
            mode=mode,
            bank_id=bank.id if bank else None,
            remarks=payload.get("remarks") or "",
            receipt_ref=payload.get("receipt_ref"),
        )
        session.add(payment)
        session.flush()

        result = AllocationResult(remaining=0.0)
        if payment_for == "invoice":
            invoice = find_invoice(session, invoice_number)
            apply_paid_details(
                invoice,
                payload.get("bank_name") or (bank.name if bank else "Cash"),
                payload.get("remarks") or "Manual entry",
                paid_on,
                payload.get("receipt_ref"),
            )
            session.add(invoice)
            if payment.customer_id is None:
                payment.customer_id = invoice.customer_id
            debtor = session.get(Customer, invoice.customer_id)
            debtor.balance = round(debtor.balance - amount, 2)
            session.add(debtor)
        else:
            result = allocate_customer_payment(session, customer_id, amount, payment.id)
            if result.remaining > 0:
                payment.unallocated_amount = result.remaining
                customer.credit_balance = round(customer.credit_balance + result.remaining, 2)
                session.add(customer)
                logger.warning(
                    f"Payment {payment.id}: {result.remaining:.2f} unallocated, "
                    f"credited to customer {customer_id}"
                )
        session.add(payment)

        if bank is not None:
            delta = amount if ptype == "received" else -amount
            bank.balance = round(bank.balance + delta, 2)
            session.add(bank)

    logger.info(
        f"Payment {payment.id} recorded: {ptype} {amount:.2f} by {mode} for {payment_for}"
    )
    return payment, result


# ── banks ────────────────────────────────────────────────────────────────────


def create_bank(
    session: Session,
    name: str,
    account_number: Optional[str] = None,
    branch: Optional[str] = None,
    balance: float = 0.0,
) -> Bank:
    if not (name or "").strip():
        raise ValidationError("Bank name is required")
    with atomic(session):
        bank = Bank(name=name.strip(), account_number=account_number, branch=branch, balance=balance)
        session.add(bank)
    logger.info(f"Bank {bank.name} added")
    return bank


def list_banks(session: Session, active_only: bool = True) -> list[Bank]:
    stmt = select(Bank)
    if active_only:
        stmt = stmt.where(Bank.is_active == True)  # noqa: E712
    return list(session.exec(stmt.order_by(col(Bank.name))).all())


BANK_FIELDS = ("name", "account_number", "branch", "is_active")


def get_bank(session: Session, bank_id: int) -> Bank:
    bank = session.get(Bank, bank_id)
    if bank is None:
        raise NotFoundError(f"Bank {bank_id} not found")
    return bank


def update_bank(session: Session, bank_id: int, values: Mapping[str, Any]) -> Bank:
    """Edit a bank's details. The balance only moves through payments."""
    data = {k: values[k] for k in BANK_FIELDS if k in values and values[k] is not None}
    if "name" in data:
        data["name"] = (data["name"] or "").strip()
        if not data["name"]:
            raise ValidationError("Bank name is required")
    with atomic(session):
        bank = get_bank(session, bank_id)
        for k, v in data.items():
            setattr(bank, k, v)
        session.add(bank)
    logger.info(f"Bank {bank_id} updated")
    return bank


def bank_payments(session: Session, bank_id: int) -> tuple[list[Payment], float]:
    """Every payment routed through the bank, newest first, with their total."""
    get_bank(session, bank_id)
    payments = list(
        session.exec(
            select(Payment)
            .where(Payment.bank_id == bank_id)
            .order_by(col(Payment.date).desc(), col(Payment.id).desc())
        ).all()
    )
    return payments, round(sum(p.amount for p in payments), 2)


def bank_ledger(
    session: Session,
    bank_id: int,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> dict:
    """
    Bank-mode payments in date order with inflow/outflow columns.

    Received payments are inflows, paid ones outflows; ``net`` is their
    difference over the window.
    """
    bank = get_bank(session, bank_id)
    stmt = (
        select(Payment, Customer.name)
        .join(Customer, Customer.id == Payment.customer_id, isouter=True)
        .where(Payment.bank_id == bank_id, Payment.mode == "bank")
    )
    if from_date:
        stmt = stmt.where(Payment.date >= from_date.isoformat())
    if to_date:
        stmt = stmt.where(Payment.date <= to_date.isoformat())

    rows = []
    inflows = outflows = 0.0
    for payment, customer_name in session.exec(stmt.order_by(Payment.date, Payment.id)).all():
        inflow = payment.amount if payment.type == "received" else 0.0
        outflow = payment.amount if payment.type == "paid" else 0.0
        inflows += inflow
        outflows += outflow
        rows.append(
            {
                "payment_id": payment.id,
                "date": payment.date,
                "type": payment.type,
                "customer_name": customer_name,
                "invoice_number": payment.invoice_number,
                "remarks": payment.remarks,
                "inflow": inflow,
                "outflow": outflow,
            }
        )
    return {
        "bank": bank,
        "inflows": round(inflows, 2),
        "outflows": round(outflows, 2),
        "net": round(inflows - outflows, 2),
        "rows": rows,
    }
