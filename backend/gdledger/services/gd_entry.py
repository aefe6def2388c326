"""
GD entry workflow: create, recompute, retire.

A GD moves Stored → StockedIn → Retired. Every write that changes raw item
figures or charges re-runs the allocation calculator for *all* items of the
GD against what is persisted, then refreshes the GD's average landed cost.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional

from dateutil import parser as date_parser
from loguru import logger
from sqlmodel import Session, col, func, select

from gdledger.core.config import settings
from gdledger.core.database import atomic
from gdledger.core.errors import ConflictError, NotFoundError, ValidationError
from gdledger.models.gd import GDCharge, GDEntry, GDItem, GDRetirementLog
from gdledger.models.inventory import InventoryBatch
from gdledger.models.sales import SalesInvoiceItem
from gdledger.models.types import utcnow
from gdledger.services.allocation import (
    average_landed_cost,
    check_rate,
    compute_item_economics,
    gd_aggregates,
    num,
)

HEADER_TEXT_FIELDS = (
    "supplier_name",
    "container_no",
    "vessel_name",
    "port_of_loading",
    "port_of_discharge",
    "delivery_terms",
    "bl_awb_no",
    "invoice_currency",
    "payment_mode",
    "psid_no",
    "bank_name",
    "challan_no",
)
HEADER_NUMERIC_FIELDS = (
    "invoice_value",
    "freight",
    "insurance",
    "clearing_charges",
    "port_charges",
    "gross_weight",
    "net_weight",
    "exchange_rate",
    "assessed_value",
    "total_gd_amount",
)
ITEM_TEXT_FIELDS = ("description", "hs_code", "unit")
ITEM_NUMERIC_FIELDS = (
    "quantity",
    "unit_price",
    "total_value",
    "total_custom_value",
    "invoice_value",
    "unit_cost",
    "gross_weight",
    "custom_duty",
    "sales_tax",
    "gst",
    "ast",
    "income_tax",
    "acd",
    "regulatory_duty",
)

_WS_RE = re.compile(r"\s+")


# ── helpers ──────────────────────────────────────────────────────────────────


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        raise ValidationError("gd_date is required")
    try:
        return date_parser.isoparse(str(value)).date()
    except (ValueError, OverflowError):
        raise ValidationError(f"gd_date is not an ISO-8601 date: {value!r}")


def _synth_ids(gd_number: str, hs_code: Optional[str], ordinal: int) -> tuple[str, str]:
    """(item_id, item_number) – GD number without whitespace + HS code (+ ordinal)."""
    compact = _WS_RE.sub("", gd_number or "")
    item_number = f"{compact}-{hs_code or ''}"
    return f"{item_number}-{ordinal}", item_number


def _resolve_rate(income_tax_rate: Optional[float], fallback: float) -> float:
    return check_rate(
        "income_tax_rate", fallback if income_tax_rate is None else income_tax_rate
    )


def _raw_item_values(data: Mapping[str, Any]) -> dict:
    values: dict[str, Any] = {k: num(data, k) for k in ITEM_NUMERIC_FIELDS}
    for k in ITEM_TEXT_FIELDS:
        values[k] = data.get(k)
    return values


def _get_gd(session: Session, gd_entry_id: int) -> GDEntry:
    gd = session.get(GDEntry, gd_entry_id)
    if gd is None:
        raise NotFoundError(f"GD entry {gd_entry_id} not found")
    return gd


def _items_of(session: Session, gd_entry_id: int) -> list[GDItem]:
    return list(
        session.exec(
            select(GDItem).where(GDItem.gd_entry_id == gd_entry_id).order_by(GDItem.id)
        ).all()
    )


def _charges_of(session: Session, gd_entry_id: int) -> list[GDCharge]:
    return list(
        session.exec(
            select(GDCharge).where(GDCharge.gd_entry_id == gd_entry_id).order_by(GDCharge.id)
        ).all()
    )


def _recompute(
    session: Session,
    gd: GDEntry,
    income_tax_rate: float,
    sales_tax_rate: Optional[float] = None,
) -> float:
    """Re-derive every item of the GD from persisted raw figures and charges."""
    items = _items_of(session, gd.id)
    charges = _charges_of(session, gd.id)
    total_charges, total_weight = gd_aggregates(items, charges)

    for item in items:
        derived = compute_item_economics(
            item, total_charges, total_weight, income_tax_rate, sales_tax_rate
        )
        for k, v in derived.rounded().items():
            setattr(item, k, v)
        session.add(item)

    avg = round(average_landed_cost(items), 2)
    gd.landed_cost = avg
    gd.income_tax_rate = income_tax_rate
    session.add(gd)
    session.flush()
    return avg


# ── workflow entry points ────────────────────────────────────────────────────


def create_gd(
    session: Session,
    header: Mapping[str, Any],
    items: Iterable[Mapping[str, Any]],
    charges: Iterable[Mapping[str, Any]] = (),
    income_tax_rate: Optional[float] = None,
    sales_tax_rate: Optional[float] = None,
) -> tuple[GDEntry, float]:
    """
    Insert header, charges and items with derived fields as one unit.

    Returns (gd, average landed cost). Any failure leaves no trace of the GD.
    """
    rate = _resolve_rate(income_tax_rate, settings.INCOME_TAX_RATE)
    gd_number = (header.get("gd_number") or "").strip()
    if not gd_number:
        raise ValidationError("gd_number is required")
    gd_date = _parse_date(header.get("gd_date"))
    items = list(items)
    charges = list(charges)

    for c in charges:
        if not (c.get("charge_type") or "").strip():
            raise ValidationError("Every charge needs a charge_type")

    with atomic(session):
        gd = GDEntry(
            gd_number=gd_number,
            gd_date=gd_date,
            number_of_packages=header.get("number_of_packages"),
            income_tax_rate=rate,
            **{k: header.get(k) for k in HEADER_TEXT_FIELDS},
            **{k: num(header, k) for k in HEADER_NUMERIC_FIELDS},
        )
        session.add(gd)
        session.flush()

        for c in charges:
            session.add(
                GDCharge(
                    gd_entry_id=gd.id,
                    charge_type=c["charge_type"].strip(),
                    charge_amount=num(c, "charge_amount"),
                )
            )

        total_charges, total_weight = gd_aggregates(items, charges)
        rows: list[GDItem] = []
        for ordinal, data in enumerate(items, 1):
            raw = _raw_item_values(data)
            item_id, item_number = _synth_ids(gd_number, raw["hs_code"], ordinal)
            clash = session.exec(select(GDItem.id).where(GDItem.item_id == item_id)).first()
            if clash is not None:
                raise ConflictError(f"Item id {item_id} already exists")

            derived = compute_item_economics(
                raw, total_charges, total_weight, rate, sales_tax_rate
            )
            row = GDItem(
                gd_entry_id=gd.id,
                item_id=item_id,
                item_number=item_number,
                **raw,
                **derived.rounded(),
            )
            session.add(row)
            rows.append(row)

        avg = round(average_landed_cost(rows), 2)
        gd.landed_cost = avg
        session.add(gd)

    logger.info(
        f"GD {gd_number} created: {len(rows)} item(s), {len(charges)} charge(s), "
        f"avg landed cost {avg:.2f}"
    )
    return gd, avg


def update_items(
    session: Session,
    gd_entry_id: int,
    items: Iterable[Mapping[str, Any]],
    income_tax_rate: Optional[float] = None,
    sales_tax_rate: Optional[float] = None,
) -> float:
    """Apply edited raw figures (matched by item_id), recompute the GD, return the new average."""
    items = list(items)
    with atomic(session):
        gd = _get_gd(session, gd_entry_id)
        rate = _resolve_rate(income_tax_rate, gd.income_tax_rate)

        for data in items:
            item_id = data.get("item_id")
            row = session.exec(
                select(GDItem).where(
                    GDItem.gd_entry_id == gd_entry_id,
                    GDItem.item_id == item_id,
                )
            ).first()
            if row is None:
                raise NotFoundError(f"Item {item_id!r} not found on GD {gd.gd_number}")
            for k in ITEM_NUMERIC_FIELDS:
                if k in data:
                    setattr(row, k, num(data, k))
            for k in ITEM_TEXT_FIELDS:
                if k in data:
                    setattr(row, k, data.get(k))
            session.add(row)
        session.flush()

        if gd.stocked_in:
            logger.warning(
                f"GD {gd.gd_number} is already stocked in; batch costs keep their original basis"
            )
        avg = _recompute(session, gd, rate, sales_tax_rate)

    logger.info(f"GD {gd_entry_id}: {len(items)} item(s) updated, avg landed cost {avg:.2f}")
    return avg


def update_charges(
    session: Session,
    gd_entry_id: int,
    charges: Iterable[Mapping[str, Any]],
    income_tax_rate: Optional[float] = None,
    sales_tax_rate: Optional[float] = None,
) -> float:
    """Replace the GD's charges and recompute every item."""
    charges = list(charges)
    with atomic(session):
        gd = _get_gd(session, gd_entry_id)
        rate = _resolve_rate(income_tax_rate, gd.income_tax_rate)

        for old in _charges_of(session, gd_entry_id):
            session.delete(old)
        session.flush()
        for c in charges:
            if not (c.get("charge_type") or "").strip():
                raise ValidationError("Every charge needs a charge_type")
            session.add(
                GDCharge(
                    gd_entry_id=gd_entry_id,
                    charge_type=c["charge_type"].strip(),
                    charge_amount=num(c, "charge_amount"),
                )
            )
        session.flush()
        avg = _recompute(session, gd, rate, sales_tax_rate)

    logger.info(f"GD {gd_entry_id}: charges replaced ({len(charges)}), avg landed cost {avg:.2f}")
    return avg


def retire_gd(
    session: Session,
    gd_entry_id: int,
    retired_by: Optional[str] = None,
    reason: str = "inventory exhausted",
) -> GDEntry:
    """
    Flag a GD whose last batch is gone. Runs inside the caller's transaction.

    The header, items and charges are kept so the cost basis stays auditable.
    """
    gd = _get_gd(session, gd_entry_id)
    if gd.retired:
        return gd
    gd.retired = True
    gd.retired_at = utcnow()
    gd.retired_by = retired_by or "System"
    session.add(gd)
    session.add(
        GDRetirementLog(gd_entry_id=gd_entry_id, retired_by=gd.retired_by, reason=reason)
    )
    session.flush()
    logger.warning(f"GD {gd.gd_number} retired ({reason}) by {gd.retired_by}")
    return gd


def reactivate_gd(session: Session, gd_entry_id: int) -> Optional[GDEntry]:
    """Clear the retired flag after stock is put back against the GD (caller's transaction)."""
    gd = session.get(GDEntry, gd_entry_id)
    if gd is None or not gd.retired:
        return gd
    gd.retired = False
    gd.retired_at = None
    gd.retired_by = None
    session.add(gd)
    session.flush()
    logger.info(f"GD {gd.gd_number} reactivated by restock")
    return gd


def delete_gd_item(session: Session, item_id: str) -> None:
    """Remove a GD item that was never stocked or sold; refreshes the GD average."""
    with atomic(session):
        row = session.exec(select(GDItem).where(GDItem.item_id == item_id)).first()
        if row is None:
            raise NotFoundError(f"Item {item_id!r} not found")

        in_stock = session.exec(
            select(func.count(InventoryBatch.id)).where(InventoryBatch.item_id == item_id)
        ).one()
        sold = session.exec(
            select(func.count(SalesInvoiceItem.id)).where(SalesInvoiceItem.item_id == item_id)
        ).one()
        if in_stock or sold:
            raise ConflictError(f"Item {item_id} is used in inventory or sales and cannot be deleted")

        gd = _get_gd(session, row.gd_entry_id)
        session.delete(row)
        session.flush()
        _recompute(session, gd, gd.income_tax_rate)

    logger.info(f"Deleted GD item {item_id}")


# ── reads ────────────────────────────────────────────────────────────────────


def get_gd(session: Session, gd_entry_id: int) -> tuple[GDEntry, list[GDItem], list[GDCharge]]:
    gd = _get_gd(session, gd_entry_id)
    return gd, _items_of(session, gd_entry_id), _charges_of(session, gd_entry_id)


def list_gds(
    session: Session,
    gd_number: Optional[str] = None,
    supplier_name: Optional[str] = None,
    hs_code: Optional[str] = None,
    include_retired: bool = True,
) -> list[GDEntry]:
    stmt = select(GDEntry)
    if gd_number:
        stmt = stmt.where(col(GDEntry.gd_number).contains(gd_number))
    if supplier_name:
        stmt = stmt.where(col(GDEntry.supplier_name).contains(supplier_name))
    if hs_code:
        stmt = stmt.where(
            col(GDEntry.id).in_(
                select(GDItem.gd_entry_id).where(col(GDItem.hs_code).contains(hs_code))
            )
        )
    if not include_retired:
        stmt = stmt.where(GDEntry.retired == False)  # noqa: E712
    stmt = stmt.order_by(col(GDEntry.gd_date).desc(), col(GDEntry.id).desc())
    return list(session.exec(stmt).all())


def list_unstocked_gds(session: Session) -> list[GDEntry]:
    return list(
        session.exec(
            select(GDEntry)
            .where(GDEntry.stocked_in == False)  # noqa: E712
            .order_by(GDEntry.gd_date, GDEntry.id)
        ).all()
    )
