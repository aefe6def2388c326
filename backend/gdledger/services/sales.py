"""
Sales invoice workflow.

An invoice is created in one transaction together with the FIFO consumption
it causes: either the header, every line and every batch deduction are
committed, or none of them are.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from typing import Any, Iterable, Mapping, Optional

from loguru import logger
from sqlmodel import Session, col, func, or_, select

from gdledger.core.config import settings
from gdledger.core.database import atomic
from gdledger.core.errors import ConflictError, NotFoundError, ValidationError
from gdledger.models.gd import GDEntry, GDItem
from gdledger.models.party import Customer, Payment, PaymentAllocation
from gdledger.models.sales import (
    SalesInvoice,
    SalesInvoiceItem,
    SalesReturn,
    TotalsAdjustment,
)
from gdledger.services.allocation import check_rate, num
from gdledger.services.gd_entry import retire_gd
from gdledger.services.inventory import batch_count, consume_fifo, ledger_lock

TAX_SECTIONS = ("236G", "236H")


def new_invoice_number() -> str:
    return uuid.uuid4().hex[:8].upper()


def day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def day_end(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def default_withholding_rate(filer_status: Optional[str]) -> float:
    if (filer_status or "").strip().lower() == "filer":
        return settings.FILER_WITHHOLDING_RATE
    return settings.NON_FILER_WITHHOLDING_RATE


def apply_totals_adjustment(invoice: SalesInvoice, adjustment: TotalsAdjustment) -> SalesInvoice:
    """Reduce an invoice's totals by a return's refund; the invoice does the arithmetic."""
    invoice.apply_adjustment(adjustment)
    return invoice


def _persist_invoice(
    session: Session, invoice: SalesInvoice, lines: list[SalesInvoiceItem]
) -> SalesInvoice:
    session.add(invoice)
    session.flush()
    for line in lines:
        line.invoice_id = invoice.id
        session.add(line)
    session.flush()
    return invoice


def _normalise_lines(items: Iterable[Mapping[str, Any]]) -> list[dict]:
    lines = []
    for raw in items:
        item_id = (raw.get("item_id") or "").strip()
        if not item_id:
            raise ValidationError("Every invoice line needs an item_id")
        quantity = num(raw, "quantity")
        if quantity <= 0:
            raise ValidationError(f"Quantity for {item_id} must be positive")
        sale_rate = num(raw, "sale_rate")
        if sale_rate < 0:
            raise ValidationError(f"Sale rate for {item_id} cannot be negative")
        lines.append(
            {
                "item_id": item_id,
                "quantity": quantity,
                "sale_rate": sale_rate,
                "retail_price": raw.get("retail_price"),
                "unit": raw.get("unit"),
            }
        )
    if not lines:
        raise ValidationError("An invoice needs at least one line")
    return lines


# ── create ───────────────────────────────────────────────────────────────────


def create_invoice(
    session: Session,
    customer_id: int,
    gd_entry_id: int,
    items: Iterable[Mapping[str, Any]],
    withholding_rate: Optional[float] = None,
    tax_section: Optional[str] = None,
    sales_tax_rate: Optional[float] = None,
    created_by: Optional[str] = None,
) -> SalesInvoice:
    """
    Sell goods from one GD to a customer.

    Lines are consumed FIFO from the GD's batches. The GD is retired once its
    last batch is exhausted. Any failure (unknown item, short stock, storage
    error) rolls back the deductions already made.
    """
    lines = _normalise_lines(items)
    st_rate = check_rate(
        "sales_tax_rate", settings.SALES_TAX_RATE if sales_tax_rate is None else sales_tax_rate
    )
    if tax_section is not None and tax_section not in TAX_SECTIONS:
        raise ValidationError(f"tax_section must be one of {', '.join(TAX_SECTIONS)}")

    keys = [(line["item_id"], gd_entry_id) for line in lines]
    with ledger_lock(keys), atomic(session):
        customer = session.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        gd = session.get(GDEntry, gd_entry_id)
        if gd is None:
            raise NotFoundError(f"GD entry {gd_entry_id} not found")

        rate = default_withholding_rate(customer.filer_status) if withholding_rate is None else withholding_rate
        if not 0 <= rate <= 1:
            raise ValidationError(f"withholding_rate must be between 0 and 1, got {rate}")

        invoice_number = new_invoice_number()
        gross_total = 0.0
        sales_tax = 0.0
        total_cost = 0.0
        rows: list[SalesInvoiceItem] = []

        for line in lines:
            gd_item = session.exec(
                select(GDItem).where(
                    GDItem.item_id == line["item_id"],
                    GDItem.gd_entry_id == gd_entry_id,
                )
            ).first()
            if gd_item is None:
                raise NotFoundError(f"Item {line['item_id']} is not part of GD {gd.gd_number}")

            retail_price = round(
                gd_item.retail_price if line["retail_price"] is None else num(line, "retail_price"), 2
            )
            qty = line["quantity"]
            line_total = qty * line["sale_rate"]
            gross_total += line_total
            sales_tax += qty * retail_price * st_rate

            fifo = consume_fifo(
                session,
                line["item_id"],
                gd_entry_id,
                qty,
                action_by=created_by,
                ref=invoice_number,
            )
            total_cost += fifo.total_cost

            rows.append(
                SalesInvoiceItem(
                    invoice_id=0,
                    item_id=line["item_id"],
                    gd_entry_id=gd_entry_id,
                    quantity_sold=qty,
                    retail_price=retail_price,
                    sale_rate=line["sale_rate"],
                    cost=round(fifo.total_cost / qty, 2),
                    mrp=gd_item.mrp,
                    unit=line["unit"] or gd_item.unit,
                    gross_line_total=round(line_total, 2),
                )
            )

        if batch_count(session, gd_entry_id) == 0:
            retire_gd(session, gd_entry_id, retired_by=created_by, reason=f"exhausted by invoice {invoice_number}")

        income_tax_paid = session.exec(
            select(func.coalesce(func.sum(GDItem.income_tax), 0.0)).where(
                GDItem.gd_entry_id == gd_entry_id
            )
        ).one()

        invoice = SalesInvoice(
            invoice_number=invoice_number,
            customer_id=customer_id,
            gd_entry_id=gd_entry_id,
            gross_total=round(gross_total, 2),
            sales_tax=round(sales_tax, 2),
            withholding_rate=rate,
            withholding_tax=round(gross_total * rate, 2),
            income_tax_paid=round(float(income_tax_paid or 0.0), 2),
            total_cost=round(total_cost, 2),
            gross_profit=round(gross_total - total_cost, 2),
            tax_section=tax_section,
            filer_status=customer.filer_status,
        )
        _persist_invoice(session, invoice, rows)

        customer.balance = round(customer.balance + invoice.gross_total, 2)
        session.add(customer)
        if customer.credit_limit > 0 and customer.balance > customer.credit_limit:
            logger.warning(
                f"Customer {customer_id} balance {customer.balance:.2f} exceeds "
                f"credit limit {customer.credit_limit:.2f}"
            )

    logger.info(
        f"Invoice {invoice_number} for customer {customer_id}: {len(rows)} line(s), "
        f"gross {invoice.gross_total:.2f}, cost {invoice.total_cost:.2f}"
    )
    return invoice


# ── reads ────────────────────────────────────────────────────────────────────


def find_invoice(session: Session, invoice_number: str) -> SalesInvoice:
    invoice = session.exec(
        select(SalesInvoice).where(SalesInvoice.invoice_number == invoice_number)
    ).first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_number} not found")
    return invoice


def invoice_lines(session: Session, invoice_id: int) -> list[SalesInvoiceItem]:
    return list(
        session.exec(
            select(SalesInvoiceItem)
            .where(SalesInvoiceItem.invoice_id == invoice_id)
            .order_by(SalesInvoiceItem.id)
        ).all()
    )


def get_invoice(session: Session, invoice_number: str) -> tuple[SalesInvoice, list[SalesInvoiceItem]]:
    invoice = find_invoice(session, invoice_number)
    return invoice, invoice_lines(session, invoice.id)


def list_invoices(
    session: Session,
    search: Optional[str] = None,
    tax_section: Optional[str] = None,
    filer_status: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    payment_status: Optional[str] = None,
) -> list[SalesInvoice]:
    """Invoices newest first. ``payment_status`` is "paid" or "unpaid"."""
    stmt = select(SalesInvoice)
    if search:
        stmt = stmt.where(
            or_(
                col(SalesInvoice.invoice_number).contains(search.upper()),
                col(SalesInvoice.customer_id).in_(
                    select(Customer.id).where(
                        or_(
                            col(Customer.name).contains(search),
                            col(Customer.business_name).contains(search),
                        )
                    )
                ),
            )
        )
    if tax_section:
        stmt = stmt.where(SalesInvoice.tax_section == tax_section)
    if filer_status:
        stmt = stmt.where(SalesInvoice.filer_status == filer_status)
    if from_date:
        stmt = stmt.where(SalesInvoice.created_at >= day_start(from_date))
    if to_date:
        stmt = stmt.where(SalesInvoice.created_at <= day_end(to_date))
    if payment_status == "paid":
        stmt = stmt.where(SalesInvoice.is_paid == True)  # noqa: E712
    elif payment_status == "unpaid":
        stmt = stmt.where(SalesInvoice.is_paid == False)  # noqa: E712
    elif payment_status:
        raise ValidationError("payment_status must be 'paid' or 'unpaid'")
    stmt = stmt.order_by(col(SalesInvoice.created_at).desc(), col(SalesInvoice.id).desc())
    return list(session.exec(stmt).all())


# ── payment state / delete ───────────────────────────────────────────────────


def apply_paid_details(
    invoice: SalesInvoice,
    bank_or_cash: Optional[str],
    payer_name: Optional[str],
    paid_date: Optional[str],
    receipt_ref: Optional[str],
) -> SalesInvoice:
    if invoice.is_paid:
        logger.warning(f"Invoice {invoice.invoice_number} already paid; payment details overwritten")
    invoice.is_paid = True
    invoice.paid_bank = bank_or_cash
    invoice.paid_by = payer_name
    invoice.paid_date = paid_date or date.today().isoformat()
    invoice.paid_receipt_ref = receipt_ref
    return invoice


def mark_paid(
    session: Session,
    invoice_number: str,
    bank_or_cash: Optional[str] = None,
    payer_name: Optional[str] = None,
    paid_date: Optional[str] = None,
    receipt_ref: Optional[str] = None,
) -> SalesInvoice:
    with atomic(session):
        invoice = find_invoice(session, invoice_number)
        apply_paid_details(invoice, bank_or_cash, payer_name, paid_date, receipt_ref)
        session.add(invoice)
    logger.info(f"Invoice {invoice_number} marked paid ({bank_or_cash or 'unspecified'})")
    return invoice


def delete_invoice(session: Session, invoice_number: str) -> None:
    """
    Remove an unpaid invoice that has no returns, with its lines and allocations.

    Partial allocations go back to their payments as unallocated credit and the
    customer balance drops by what was still owed. Stock is not restored.
    """
    with atomic(session):
        invoice = find_invoice(session, invoice_number)
        if invoice.is_paid:
            raise ConflictError(f"Invoice {invoice_number} is paid and cannot be deleted")
        returned = session.exec(
            select(func.count(SalesReturn.id)).where(SalesReturn.invoice_id == invoice.id)
        ).one()
        if returned:
            raise ConflictError(f"Invoice {invoice_number} has returns and cannot be deleted")

        released = 0.0
        for alloc in session.exec(
            select(PaymentAllocation).where(PaymentAllocation.invoice_id == invoice.id)
        ).all():
            released += alloc.amount
            payment = session.get(Payment, alloc.payment_id) if alloc.payment_id else None
            if payment is not None:
                payment.unallocated_amount = round(payment.unallocated_amount + alloc.amount, 2)
                session.add(payment)
            session.delete(alloc)

        customer = session.get(Customer, invoice.customer_id)
        if customer is not None:
            customer.balance = round(customer.balance - (invoice.gross_total - released), 2)
            customer.credit_balance = round(customer.credit_balance + released, 2)
            session.add(customer)

        for line in invoice_lines(session, invoice.id):
            session.delete(line)
        session.flush()
        session.delete(invoice)

    logger.info(f"Deleted invoice {invoice_number}")
