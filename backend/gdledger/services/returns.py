"""
Sales returns.

A return is validated in full before anything is written. Returns are
append-only: there is no reversal path, a mistaken return would be corrected
by a new event rather than by editing history.
"""
from __future__ import annotations

import random
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from loguru import logger
from sqlmodel import Session, col, func, or_, select

from gdledger.core.config import settings
from gdledger.core.database import atomic
from gdledger.core.errors import NotFoundError, ValidationError
from gdledger.models.party import Customer
from gdledger.models.sales import SalesInvoice, SalesInvoiceItem, SalesReturn, TotalsAdjustment
from gdledger.services.allocation import check_rate, num
from gdledger.services.gd_entry import reactivate_gd
from gdledger.services.inventory import batches_for, ledger_lock, restock
from gdledger.services.sales import apply_totals_adjustment, invoice_lines

REFUND_METHODS = ("cash", "withholding")


@dataclass
class ReturnResult:
    return_number: str
    refund_amount: float
    refund_tax: float
    fully_returned: bool
    refund_method: str


def new_return_number() -> str:
    return f"RET-{random.randint(100000, 999999)}"


def _restock_basis(session: Session, line: SalesInvoiceItem) -> tuple[float, float]:
    """(cost, mrp) of the earliest batch still held for the line, else the line's own figures."""
    batches = batches_for(session, line.item_id, line.gd_entry_id)
    if batches:
        return batches[0].cost, batches[0].mrp
    return line.cost, line.mrp


def _restock_keys(session: Session, line_ids: list[int]) -> list[tuple[str, int]]:
    """(item_id, gd_entry_id) of the lines going back to stock, for the ledger lock."""
    if not line_ids:
        return []
    rows = session.exec(
        select(SalesInvoiceItem.item_id, SalesInvoiceItem.gd_entry_id).where(
            col(SalesInvoiceItem.id).in_(line_ids)
        )
    ).all()
    return [(item_id, gd_id) for item_id, gd_id in rows]


def create_return(
    session: Session,
    invoice_number: str,
    items: Iterable[Mapping[str, Any]],
    refund_method: str = "withholding",
    sales_tax_rate: Optional[float] = None,
    created_by: Optional[str] = None,
) -> ReturnResult:
    """Record returned quantities against an invoice, optionally putting them back in stock."""
    if refund_method not in REFUND_METHODS:
        raise ValidationError(f"refund_method must be one of {', '.join(REFUND_METHODS)}")
    st_rate = check_rate(
        "sales_tax_rate", settings.SALES_TAX_RATE if sales_tax_rate is None else sales_tax_rate
    )

    requested = []
    for raw in items:
        qty = num(raw, "quantity_returned")
        if qty < 0:
            raise ValidationError("quantity_returned cannot be negative")
        if qty == 0:
            continue
        try:
            line_id = int(raw.get("invoice_item_id"))
        except (TypeError, ValueError):
            raise ValidationError("Every return line needs an invoice_item_id")
        requested.append(
            {
                "invoice_item_id": line_id,
                "quantity": qty,
                "restock": bool(raw.get("restock")),
                "reason": raw.get("reason"),
            }
        )
    if not requested:
        raise ValidationError("Nothing to return")

    restock_keys = _restock_keys(session, [r["invoice_item_id"] for r in requested if r["restock"]])

    with ledger_lock(restock_keys), atomic(session):
        invoice = session.exec(
            select(SalesInvoice).where(SalesInvoice.invoice_number == invoice_number)
        ).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_number} not found")
        lines = {line.id: line for line in invoice_lines(session, invoice.id)}

        # Validate the whole request before the first write
        wanted: dict[int, float] = defaultdict(float)
        for req in requested:
            line = lines.get(req["invoice_item_id"])
            if line is None:
                raise ValidationError(
                    f"Line {req['invoice_item_id']} does not belong to invoice {invoice_number}"
                )
            wanted[line.id] += req["quantity"]
        for line_id, qty in wanted.items():
            line = lines[line_id]
            if line.quantity_returned + qty > line.quantity_sold + 1e-9:
                raise ValidationError(
                    f"Return exceeds sold quantity for {line.item_id}: sold {line.quantity_sold:g}, "
                    f"already returned {line.quantity_returned:g}, requested {qty:g}"
                )

        return_number = new_return_number()
        total_refund = 0.0
        total_tax = 0.0
        for req in requested:
            line = lines[req["invoice_item_id"]]
            qty = req["quantity"]
            refund = qty * line.sale_rate
            tax_reversal = qty * line.retail_price * st_rate
            total_refund += refund
            total_tax += tax_reversal

            session.add(
                SalesReturn(
                    return_number=return_number,
                    invoice_id=invoice.id,
                    invoice_item_id=line.id,
                    item_id=line.item_id,
                    quantity_returned=qty,
                    reason=req["reason"],
                    restock=req["restock"],
                    refund_amount=round(refund, 2),
                    tax_reversal=round(tax_reversal, 2),
                    refund_method=refund_method,
                )
            )
            line.quantity_returned += qty
            session.add(line)

            if req["restock"]:
                cost, mrp = _restock_basis(session, line)
                restock(
                    session,
                    line.item_id,
                    line.gd_entry_id,
                    qty,
                    cost,
                    mrp,
                    action_by=created_by,
                    ref=return_number,
                )
                reactivate_gd(session, line.gd_entry_id)
        session.flush()

        customer = session.get(Customer, invoice.customer_id)
        if customer is not None:
            customer.balance = round(customer.balance + total_refund, 2)
            session.add(customer)

        apply_totals_adjustment(
            invoice,
            TotalsAdjustment(refund=total_refund, tax_reversal=total_tax, ref=return_number),
        )
        fully_returned = all(
            line.quantity_returned + 1e-9 >= line.quantity_sold for line in lines.values()
        )
        invoice.fully_refunded = fully_returned
        session.add(invoice)

    logger.info(
        f"Return {return_number} on invoice {invoice_number}: refund {total_refund:.2f}, "
        f"tax reversal {total_tax:.2f} ({refund_method})"
    )
    return ReturnResult(
        return_number=return_number,
        refund_amount=round(total_refund, 2),
        refund_tax=round(total_tax, 2),
        fully_returned=fully_returned,
        refund_method=refund_method,
    )


def list_returns(session: Session, invoice_number: str) -> list[SalesReturn]:
    invoice = session.exec(
        select(SalesInvoice).where(SalesInvoice.invoice_number == invoice_number)
    ).first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_number} not found")
    return list(
        session.exec(
            select(SalesReturn)
            .where(SalesReturn.invoice_id == invoice.id)
            .order_by(SalesReturn.created_at, SalesReturn.id)
        ).all()
    )


SUGGESTION_LIMIT = 10


def invoice_suggestions(session: Session, q: Optional[str]) -> list[dict]:
    """Newest invoices matching ``q`` by number or customer name that still have units to return."""
    q = (q or "").strip()
    if not q:
        return []
    returnable = func.sum(SalesInvoiceItem.quantity_sold - SalesInvoiceItem.quantity_returned)
    rows = session.exec(
        select(SalesInvoice.invoice_number, Customer.name, returnable.label("returnable"))
        .join(Customer, Customer.id == SalesInvoice.customer_id)
        .join(SalesInvoiceItem, SalesInvoiceItem.invoice_id == SalesInvoice.id)
        .where(or_(col(SalesInvoice.invoice_number).contains(q), col(Customer.name).contains(q)))
        .group_by(SalesInvoice.id, SalesInvoice.invoice_number, Customer.name)
        .having(returnable > 1e-9)
        .order_by(col(SalesInvoice.id).desc())
        .limit(SUGGESTION_LIMIT)
    ).all()
    return [
        {"invoice_number": number, "customer_name": name, "returnable_quantity": float(qty)}
        for number, name, qty in rows
    ]
