"""
Read-only reports: stock summary, per-item movement ledger, customer ledger,
profit summary and item lookup.

Each report is assembled from a handful of grouped queries merged in Python,
keyed by (item_id, gd_entry_id) or by customer.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from sqlmodel import Session, col, func, or_, select

from gdledger.core.errors import NotFoundError, ValidationError
from gdledger.models.gd import GDEntry, GDItem
from gdledger.models.inventory import InventoryBatch, InventoryLog
from gdledger.models.party import Customer, Payment
from gdledger.models.sales import SalesInvoice, SalesInvoiceItem, SalesReturn
from gdledger.services.customers import get_customer
from gdledger.services.sales import day_end, day_start


def stock_summary(session: Session, q: Optional[str] = None, only_in_stock: bool = False) -> list[dict]:
    """One row per stocked (item, GD): current quantity, unit cost, mrp, sold and returned."""
    stmt = (
        select(GDItem, GDEntry)
        .join(GDEntry, GDEntry.id == GDItem.gd_entry_id)
        .where(GDEntry.stocked_in == True)  # noqa: E712
    )
    if q:
        stmt = stmt.where(
            or_(
                col(GDItem.description).contains(q),
                col(GDItem.hs_code).contains(q),
                col(GDItem.item_id).contains(q),
                col(GDEntry.gd_number).contains(q),
            )
        )
    pairs = session.exec(stmt).all()

    current = {
        (item_id, gd_id): float(qty or 0.0)
        for item_id, gd_id, qty in session.exec(
            select(
                InventoryBatch.item_id,
                InventoryBatch.gd_entry_id,
                func.sum(InventoryBatch.quantity_remaining),
            ).group_by(InventoryBatch.item_id, InventoryBatch.gd_entry_id)
        ).all()
    }
    sold = {
        (item_id, gd_id): float(qty or 0.0)
        for item_id, gd_id, qty in session.exec(
            select(
                SalesInvoiceItem.item_id,
                SalesInvoiceItem.gd_entry_id,
                func.sum(SalesInvoiceItem.quantity_sold),
            ).group_by(SalesInvoiceItem.item_id, SalesInvoiceItem.gd_entry_id)
        ).all()
    }
    returned: dict[tuple[str, int], list[float]] = {}
    for item_id, gd_id, restocked, qty in session.exec(
        select(
            SalesInvoiceItem.item_id,
            SalesInvoiceItem.gd_entry_id,
            SalesReturn.restock,
            func.sum(SalesReturn.quantity_returned),
        )
        .join(SalesInvoiceItem, SalesInvoiceItem.id == SalesReturn.invoice_item_id)
        .group_by(SalesInvoiceItem.item_id, SalesInvoiceItem.gd_entry_id, SalesReturn.restock)
    ).all():
        slot = returned.setdefault((item_id, gd_id), [0.0, 0.0])
        slot[0 if restocked else 1] += float(qty or 0.0)

    rows = []
    for item, gd in pairs:
        key = (item.item_id, gd.id)
        qty = current.get(key, 0.0)
        if only_in_stock and qty <= 0:
            continue
        restocked, not_restocked = returned.get(key, [0.0, 0.0])
        rows.append(
            {
                "item_id": item.item_id,
                "description": item.description,
                "hs_code": item.hs_code,
                "unit": item.unit,
                "gd_id": gd.id,
                "gd_number": gd.gd_number,
                "retired": gd.retired,
                "current_qty": round(qty, 4),
                "unit_cost": item.cost,
                "mrp": item.mrp,
                "total_sold": sold.get(key, 0.0),
                "total_returned_restock": restocked,
                "total_returned_no_restock": not_restocked,
            }
        )
    rows.sort(key=lambda r: ((r["description"] or "").lower(), r["gd_number"]))
    return rows


def stock_ledger(session: Session, item_id: str, gd_id: int) -> list[dict]:
    """Movement history of one item in one GD with the running balance."""
    if not item_id or not gd_id:
        raise ValidationError("item_id and gd_id are required")
    if session.get(GDEntry, gd_id) is None:
        raise NotFoundError(f"GD entry {gd_id} not found")

    entries = session.exec(
        select(InventoryLog)
        .where(InventoryLog.item_id == item_id, InventoryLog.gd_entry_id == gd_id)
        .order_by(InventoryLog.action_at, InventoryLog.id)
    ).all()

    running = 0.0
    events = []
    for e in entries:
        running += e.quantity_changed
        events.append(
            {
                "action": e.action,
                "at": e.action_at,
                "by": e.action_by,
                "ref": e.ref,
                "batch_id": e.batch_id,
                "delta": e.quantity_changed,
                "batch_quantity_after": e.resulting_quantity,
                "balance_after": round(running, 4),
            }
        )
    return events


def customer_ledger(session: Session, customer_id: int) -> dict:
    """Invoices, returns and payments of a customer, oldest first, with a running balance."""
    customer: Customer = get_customer(session, customer_id)

    events = []
    invoices = session.exec(
        select(SalesInvoice).where(SalesInvoice.customer_id == customer_id)
    ).all()
    for inv in invoices:
        original = round(inv.gross_total + inv.total_refund, 2)
        events.append(
            {"at": inv.created_at, "type": "invoice", "ref": inv.invoice_number,
             "debit": original, "credit": 0.0}
        )

    invoice_numbers = {inv.id: inv.invoice_number for inv in invoices}
    if invoice_numbers:
        returns = session.exec(
            select(SalesReturn).where(col(SalesReturn.invoice_id).in_(list(invoice_numbers)))
        ).all()
        for ret in returns:
            events.append(
                {"at": ret.created_at, "type": "return",
                 "ref": f"{ret.return_number} / {invoice_numbers[ret.invoice_id]}",
                 "debit": 0.0, "credit": ret.refund_amount}
            )

    payments = session.exec(
        select(Payment).where(Payment.customer_id == customer_id, Payment.type == "received")
    ).all()
    for pay in payments:
        events.append(
            {"at": pay.created_at, "type": "payment", "ref": pay.invoice_number or pay.receipt_ref,
             "debit": 0.0, "credit": pay.amount}
        )

    events.sort(key=lambda e: e["at"])
    running = 0.0
    for e in events:
        running = round(running + e["debit"] - e["credit"], 2)
        e["balance"] = running

    return {
        "customer_id": customer.id,
        "name": customer.name,
        "filer_status": customer.filer_status,
        "credit_balance": customer.credit_balance,
        "total_invoiced": round(sum(e["debit"] for e in events), 2),
        "total_credited": round(sum(e["credit"] for e in events), 2),
        "closing_balance": running,
        "events": events,
    }


# ── profit summary ───────────────────────────────────────────────────────────

GROUPINGS = {
    "day": lambda at: at.date().isoformat(),
    "week": lambda at: at.strftime("%Y-%W"),
    "month": lambda at: at.strftime("%Y-%m"),
}
TOP_N = 10


def _filtered_invoices(
    session: Session,
    from_date: Optional[date],
    to_date: Optional[date],
    tax_section: Optional[str],
    filer_status: Optional[str],
    q: Optional[str],
) -> list[tuple[SalesInvoice, Customer]]:
    stmt = select(SalesInvoice, Customer).join(Customer, Customer.id == SalesInvoice.customer_id)
    if from_date:
        stmt = stmt.where(SalesInvoice.created_at >= day_start(from_date))
    if to_date:
        stmt = stmt.where(SalesInvoice.created_at <= day_end(to_date))
    if tax_section and tax_section != "all":
        stmt = stmt.where(SalesInvoice.tax_section == tax_section)
    if filer_status and filer_status != "all":
        stmt = stmt.where(SalesInvoice.filer_status == filer_status)
    if q:
        matching_lines = (
            select(SalesInvoiceItem.invoice_id)
            .join(GDItem, GDItem.item_id == SalesInvoiceItem.item_id)
            .where(or_(col(GDItem.description).contains(q), col(GDItem.hs_code).contains(q)))
        )
        stmt = stmt.where(
            or_(
                col(Customer.name).contains(q),
                col(Customer.business_name).contains(q),
                col(SalesInvoice.id).in_(matching_lines),
            )
        )
    return list(session.exec(stmt.order_by(SalesInvoice.created_at, SalesInvoice.id)).all())


def profit_summary(
    session: Session,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    group_by: str = "month",
    tax_section: Optional[str] = None,
    filer_status: Optional[str] = None,
    q: Optional[str] = None,
) -> dict:
    """
    Revenue, cost of goods and profit over the filtered invoices.

    Invoice totals are already net of refunds: ``revenue`` adds the refunds back,
    ``net_revenue`` is the invoices as they stand, and cost of goods counts only
    the quantity that was not returned:

        cogs         = sum((quantity_sold - quantity_returned) * cost)
        gross_profit = net_revenue - cogs
        net_profit   = gross_profit - income_tax_paid

    ``trend`` groups the same figures by day, week (``%Y-%W``) or month.
    """
    period_of = GROUPINGS.get(group_by)
    if period_of is None:
        raise ValidationError(f"group_by must be one of {', '.join(GROUPINGS)}")

    pairs = _filtered_invoices(session, from_date, to_date, tax_section, filer_status, q)
    invoice_ids = [inv.id for inv, _ in pairs]
    lines = (
        session.exec(select(SalesInvoiceItem).where(col(SalesInvoiceItem.invoice_id).in_(invoice_ids))).all()
        if invoice_ids
        else []
    )

    cogs_by_invoice: dict[int, float] = {}
    products: dict[str, dict] = {}
    items_sold = 0.0
    returned = 0.0
    for line in lines:
        net_qty = line.quantity_sold - line.quantity_returned
        cogs_by_invoice[line.invoice_id] = cogs_by_invoice.get(line.invoice_id, 0.0) + net_qty * line.cost
        items_sold += line.quantity_sold
        returned += line.quantity_returned
        row = products.setdefault(line.item_id, {"item_id": line.item_id, "qty": 0.0, "revenue": 0.0, "gross_profit": 0.0})
        row["qty"] += net_qty
        row["revenue"] += net_qty * line.sale_rate
        row["gross_profit"] += net_qty * (line.sale_rate - line.cost)

    descriptions: dict[str, Optional[str]] = {}
    if products:
        descriptions = dict(
            session.exec(
                select(GDItem.item_id, GDItem.description).where(col(GDItem.item_id).in_(list(products)))
            ).all()
        )
    for item_id, row in products.items():
        row["description"] = descriptions.get(item_id)

    totals = {
        "invoices": len(pairs),
        "revenue": 0.0,
        "refunds": 0.0,
        "net_revenue": 0.0,
        "sales_tax": 0.0,
        "income_tax_paid": 0.0,
        "withholding_tax": 0.0,
        "cogs": 0.0,
        "items_sold_qty": items_sold,
        "returned_qty": returned,
    }
    trend: dict[str, dict] = {}
    customers: dict[int, dict] = {}
    for inv, customer in pairs:
        cogs = cogs_by_invoice.get(inv.id, 0.0)
        totals["revenue"] += inv.gross_total + inv.total_refund
        totals["refunds"] += inv.total_refund
        totals["net_revenue"] += inv.gross_total
        totals["sales_tax"] += inv.sales_tax
        totals["income_tax_paid"] += inv.income_tax_paid
        totals["withholding_tax"] += inv.withholding_tax
        totals["cogs"] += cogs

        period = trend.setdefault(
            period_of(inv.created_at),
            {"revenue": 0.0, "cogs": 0.0, "income_tax_paid": 0.0},
        )
        period["revenue"] += inv.gross_total
        period["cogs"] += cogs
        period["income_tax_paid"] += inv.income_tax_paid

        buyer = customers.setdefault(
            customer.id, {"customer_id": customer.id, "name": customer.name, "revenue": 0.0, "gross_profit": 0.0}
        )
        buyer["revenue"] += inv.gross_total
        buyer["gross_profit"] += inv.gross_total - cogs

    totals["gross_profit"] = totals["net_revenue"] - totals["cogs"]
    totals["gross_margin_pct"] = (
        totals["gross_profit"] / totals["net_revenue"] * 100 if totals["net_revenue"] > 0 else 0.0
    )
    totals["net_profit"] = totals["gross_profit"] - totals["income_tax_paid"]

    trend_rows = []
    for key, period in trend.items():
        gross_profit = period["revenue"] - period["cogs"]
        trend_rows.append(
            {
                "period": key,
                "revenue": period["revenue"],
                "cogs": period["cogs"],
                "gross_profit": gross_profit,
                "net_profit": gross_profit - period["income_tax_paid"],
            }
        )

    def top(rows):
        return sorted(rows, key=lambda r: r["revenue"], reverse=True)[:TOP_N]

    return {
        "totals": totals,
        "trend": trend_rows,
        "top_products": top(products.values()),
        "top_customers": top(customers.values()),
    }


# ── item lookup ──────────────────────────────────────────────────────────────

SEARCH_LIMIT = 200


def search_items(session: Session, query: Optional[str] = None) -> list[dict]:
    """Items with stock on hand, most available first. Matches description or HS code."""
    available = func.sum(InventoryBatch.quantity_remaining).label("available_qty")
    stmt = (
        select(
            GDItem.item_id,
            GDItem.description,
            GDItem.hs_code,
            GDItem.unit,
            GDItem.retail_price,
            GDItem.sale_price,
            available,
        )
        .join(InventoryBatch, InventoryBatch.item_id == GDItem.item_id)
        .where(InventoryBatch.quantity_remaining > 0)
    )
    query = (query or "").strip()
    if query:
        stmt = stmt.where(or_(col(GDItem.description).contains(query), col(GDItem.hs_code).contains(query)))
    stmt = (
        stmt.group_by(
            GDItem.item_id,
            GDItem.description,
            GDItem.hs_code,
            GDItem.unit,
            GDItem.retail_price,
            GDItem.sale_price,
        )
        .order_by(available.desc(), GDItem.description)
        .limit(SEARCH_LIMIT)
    )
    return [
        {
            "item_id": item_id,
            "description": description,
            "hs_code": hs_code,
            "unit": unit,
            "retail_price": retail_price,
            "sale_price": sale_price,
            "available_qty": float(total or 0.0),
        }
        for item_id, description, hs_code, unit, retail_price, sale_price, total in session.exec(stmt).all()
    ]


def item_availability(session: Session, item_id: str) -> list[dict]:
    """Batches of one item still holding stock, per GD, oldest GD first."""
    if session.exec(select(GDItem.id).where(GDItem.item_id == item_id)).first() is None:
        raise NotFoundError(f"Item {item_id} not found")
    rows = session.exec(
        select(InventoryBatch, GDEntry)
        .join(GDEntry, GDEntry.id == InventoryBatch.gd_entry_id)
        .where(InventoryBatch.item_id == item_id, InventoryBatch.quantity_remaining > 0)
        .order_by(GDEntry.gd_date, InventoryBatch.id)
    ).all()
    return [
        {
            "gd_id": gd.id,
            "gd_number": gd.gd_number,
            "batch_id": batch.id,
            "quantity_remaining": batch.quantity_remaining,
            "cost": batch.cost,
            "mrp": batch.mrp,
        }
        for batch, gd in rows
    ]
