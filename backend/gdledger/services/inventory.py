"""
Inventory ledger: GD stock-in, FIFO consumption and restock.

Batches are keyed by (item_id, gd_entry_id) and drawn oldest-first. Every
quantity change appends one ``InventoryLog`` row, so for any item and GD:

    sum(quantity_remaining) == stocked - consumed + restocked

``consume_fifo`` and ``restock`` never commit; they run inside the caller's
transaction. ``stock_in`` is a workflow entry point and owns its transaction.
"""
from __future__ import annotations

import threading
import weakref
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Iterator, Optional

from dateutil import parser as date_parser
from loguru import logger
from sqlmodel import Session, func, select

from gdledger.core.database import atomic
from gdledger.core.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from gdledger.models.gd import GDEntry, GDItem
from gdledger.models.inventory import InventoryBatch, InventoryLog
from gdledger.models.types import as_utc, utcnow

# Tolerance for float quantity comparisons
_EPS = 1e-9


# ── Per-(item, GD) locking ────────────────────────────────────────────────────


class _KeyLock:
    """Lock of one (item_id, gd_entry_id) key. Lives only while someone holds or waits on it."""

    __slots__ = ("lock", "__weakref__")

    def __init__(self) -> None:
        self.lock = threading.Lock()

    def locked(self) -> bool:
        return self.lock.locked()


_locks: "weakref.WeakValueDictionary[tuple[str, int], _KeyLock]" = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def _lock_for(key: tuple[str, int]) -> _KeyLock:
    with _locks_guard:
        entry = _locks.get(key)
        if entry is None:
            entry = _locks[key] = _KeyLock()
        return entry


@contextmanager
def ledger_lock(keys: Iterable[tuple[str, int]]) -> Iterator[None]:
    """
    Serialise consumption of the given (item_id, gd_entry_id) batch sets.

    Locks are taken in sorted order so two sales touching the same items can
    never deadlock. Hold the lock around the whole transaction, commit included.
    """
    held = [_lock_for(key) for key in sorted(set(keys))]
    with ExitStack() as stack:
        for entry in held:
            stack.enter_context(entry.lock)
        yield


# ── Results ───────────────────────────────────────────────────────────────────


@dataclass
class Deduction:
    batch_id: int
    deducted: float
    resulting_remaining: float
    unit_cost: float


@dataclass
class FifoResult:
    item_id: str
    gd_entry_id: int
    requested: float
    deductions: list[Deduction] = field(default_factory=list)
    shortfall: float = 0.0

    @property
    def total_cost(self) -> float:
        return sum(d.deducted * d.unit_cost for d in self.deductions)

    @property
    def consumed(self) -> float:
        return sum(d.deducted for d in self.deductions)


# ── Queries ───────────────────────────────────────────────────────────────────


def batches_for(
    session: Session, item_id: str, gd_entry_id: int, for_update: bool = False
) -> list[InventoryBatch]:
    """Batches of one item+GD in FIFO order."""
    stmt = (
        select(InventoryBatch)
        .where(
            InventoryBatch.item_id == item_id,
            InventoryBatch.gd_entry_id == gd_entry_id,
        )
        .order_by(InventoryBatch.stocked_at, InventoryBatch.id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return list(session.exec(stmt).all())


def remaining_quantity(session: Session, item_id: str, gd_entry_id: int) -> float:
    total = session.exec(
        select(func.coalesce(func.sum(InventoryBatch.quantity_remaining), 0.0)).where(
            InventoryBatch.item_id == item_id,
            InventoryBatch.gd_entry_id == gd_entry_id,
        )
    ).one()
    return float(total or 0.0)


def batch_count(session: Session, gd_entry_id: int) -> int:
    return session.exec(
        select(func.count(InventoryBatch.id)).where(
            InventoryBatch.gd_entry_id == gd_entry_id
        )
    ).one()


def log_for(session: Session, item_id: str, gd_entry_id: int) -> list[InventoryLog]:
    return list(
        session.exec(
            select(InventoryLog)
            .where(
                InventoryLog.item_id == item_id,
                InventoryLog.gd_entry_id == gd_entry_id,
            )
            .order_by(InventoryLog.action_at, InventoryLog.id)
        ).all()
    )


def _append_log(
    session: Session,
    *,
    item_id: str,
    gd_entry_id: int,
    batch_id: Optional[int],
    action: str,
    delta: float,
    resulting: float,
    action_by: Optional[str],
    ref: Optional[str] = None,
) -> InventoryLog:
    entry = InventoryLog(
        item_id=item_id,
        gd_entry_id=gd_entry_id,
        batch_id=batch_id,
        action=action,
        quantity_changed=delta,
        resulting_quantity=resulting,
        action_by=action_by,
        ref=ref,
    )
    session.add(entry)
    return entry


def parse_stocked_at(value: datetime | str | None) -> datetime:
    """Accept a datetime, an ISO-8601 string or None (now). Naive values are taken as UTC."""
    if value is None or value == "":
        return utcnow()
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(date_parser.isoparse(value))
    except (ValueError, OverflowError):
        raise ValidationError(f"stocked_at is not an ISO-8601 date/time: {value!r}")


# ── Stock in ──────────────────────────────────────────────────────────────────


def stock_in(
    session: Session,
    gd_entry_id: int,
    stocked_by: Optional[str] = None,
    stocked_at: datetime | str | None = None,
) -> list[InventoryBatch]:
    """Create one batch per GD item and mark the GD stocked. Refuses a second stock-in."""
    when = parse_stocked_at(stocked_at)
    actor = stocked_by or "Unknown"

    with atomic(session):
        gd = session.get(GDEntry, gd_entry_id)
        if gd is None:
            raise NotFoundError(f"GD entry {gd_entry_id} not found")
        if gd.stocked_in:
            raise ConflictError(f"GD {gd.gd_number} is already stocked in")

        items = session.exec(
            select(GDItem).where(GDItem.gd_entry_id == gd_entry_id).order_by(GDItem.id)
        ).all()
        if not items:
            raise ValidationError(f"GD {gd.gd_number} has no items to stock in")

        batches: list[InventoryBatch] = []
        for item in items:
            if item.quantity <= 0:
                logger.warning(f"Skipping stock-in of {item.item_id}: quantity {item.quantity:g}")
                continue
            batch = InventoryBatch(
                gd_entry_id=gd_entry_id,
                item_id=item.item_id,
                item_code=item.item_number,
                hs_code=item.hs_code,
                description=item.description,
                unit=(item.unit or "").strip().upper() or None,
                quantity=item.quantity,
                quantity_remaining=item.quantity,
                cost=item.cost,
                mrp=item.mrp,
                stocked_by=actor,
                stocked_at=when,
            )
            session.add(batch)
            session.flush()
            _append_log(
                session,
                item_id=item.item_id,
                gd_entry_id=gd_entry_id,
                batch_id=batch.id,
                action="stock-in",
                delta=item.quantity,
                resulting=item.quantity,
                action_by=actor,
                ref=gd.gd_number,
            )
            batches.append(batch)

        gd.stocked_in = True
        session.add(gd)

    logger.info(f"Stocked in GD {gd.gd_number}: {len(batches)} batch(es) by {actor}")
    return batches


# ── FIFO consumption ──────────────────────────────────────────────────────────


def consume_fifo(
    session: Session,
    item_id: str,
    gd_entry_id: int,
    quantity: float,
    action_by: Optional[str] = None,
    ref: Optional[str] = None,
) -> FifoResult:
    """
    Deduct ``quantity`` from the item's batches in this GD, oldest first.

    Availability is checked before any batch is touched: a short request raises
    ``InsufficientStockError`` and leaves the batches as they were. Batches that
    reach zero are deleted; each deduction logs a negative movement.
    """
    if quantity <= 0:
        raise ValidationError(f"Quantity to consume must be positive, got {quantity}")

    batches = batches_for(session, item_id, gd_entry_id, for_update=True)
    available = sum(b.quantity_remaining for b in batches)
    if available + _EPS < quantity:
        raise InsufficientStockError(item_id, gd_entry_id, quantity, available)

    result = FifoResult(item_id=item_id, gd_entry_id=gd_entry_id, requested=quantity)
    to_deduct = quantity
    for batch in batches:
        if to_deduct <= _EPS:
            break
        deduct = min(to_deduct, batch.quantity_remaining)
        if deduct <= 0:
            continue

        remaining = batch.quantity_remaining - deduct
        if abs(remaining) < _EPS:
            remaining = 0.0

        _append_log(
            session,
            item_id=item_id,
            gd_entry_id=gd_entry_id,
            batch_id=batch.id,
            action="sale",
            delta=-deduct,
            resulting=remaining,
            action_by=action_by,
            ref=ref,
        )
        result.deductions.append(
            Deduction(
                batch_id=batch.id,
                deducted=deduct,
                resulting_remaining=remaining,
                unit_cost=batch.cost,
            )
        )

        if remaining == 0:
            session.delete(batch)
        else:
            batch.quantity_remaining = remaining
            batch.last_updated = utcnow()
            session.add(batch)
        to_deduct -= deduct

    result.shortfall = max(0.0, to_deduct) if to_deduct > _EPS else 0.0
    session.flush()
    logger.debug(
        f"FIFO {item_id}@GD{gd_entry_id}: consumed {result.consumed:g} "
        f"from {len(result.deductions)} batch(es)"
    )
    return result


# ── Restock ───────────────────────────────────────────────────────────────────


def restock(
    session: Session,
    item_id: str,
    gd_entry_id: int,
    quantity: float,
    cost: float,
    mrp: float = 0.0,
    action_by: Optional[str] = None,
    ref: Optional[str] = None,
    source: str = "return",
) -> InventoryBatch:
    """Put returned quantity back as a new batch (never merged: cost basis may differ)."""
    if quantity <= 0:
        raise ValidationError(f"Quantity to restock must be positive, got {quantity}")

    template = session.exec(
        select(GDItem).where(GDItem.item_id == item_id)
    ).first()
    unit = None
    if template is not None:
        unit = (template.unit or "").strip().upper() or None

    batch = InventoryBatch(
        gd_entry_id=gd_entry_id,
        item_id=item_id,
        item_code=template.item_number if template else None,
        hs_code=template.hs_code if template else None,
        description=template.description if template else None,
        unit=unit,
        quantity=quantity,
        quantity_remaining=quantity,
        cost=cost,
        mrp=mrp,
        stocked_by=action_by or "System",
        source_return_number=ref if source == "return" else None,
    )
    session.add(batch)
    session.flush()
    _append_log(
        session,
        item_id=item_id,
        gd_entry_id=gd_entry_id,
        batch_id=batch.id,
        action="restock",
        delta=quantity,
        resulting=quantity,
        action_by=action_by or "System",
        ref=ref,
    )
    logger.debug(f"Restocked {quantity:g} of {item_id}@GD{gd_entry_id} (batch {batch.id})")
    return batch
