"""
Allocation calculator: per-item landed cost and retail pricing for a GD.

Pure functions only – no I/O, no hidden state. Given the same raw figures,
charges and rates they always return the same result, which is what lets the
GD workflow recompute items whenever a user edits them.

Per unit:
  customs      = (custom_duty + acd + income_tax) / qty
  other cost   = (gross_weight * total_charges / total_gross_weight) / qty
  cost         = unit_price + customs + other cost
  sales tax    = (sales_tax + gst + ast) / qty
  retail       = sales tax / sales_tax_rate
  mrp          = retail + sales tax
  sale price   = cost + (income_tax / income_tax_rate) / qty,
                 capped at cost + 0.9 * (retail - cost) when above retail

Nothing is rounded here; ``DerivedFields.rounded()`` is applied only when the
figures are written to the database.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Mapping

from gdledger.core.config import settings
from gdledger.core.errors import ValidationError

SALES_TAX_FIELDS = ("sales_tax", "gst", "ast")
CUSTOMS_FIELDS = ("custom_duty", "acd", "income_tax")

# Derived columns written to gd_items
PERSISTED_FIELDS = (
    "landed_cost",
    "cost",
    "retail_price",
    "per_unit_sales_tax",
    "mrp",
    "gross_margin",
    "sale_price",
)


@dataclass(frozen=True)
class DerivedFields:
    customs_per_unit: float
    other_cost_per_unit: float
    cost: float
    per_unit_sales_tax: float
    retail_price: float
    mrp: float
    gross_margin: float
    per_unit_profit: float
    sale_price: float
    clamped: bool = False

    @property
    def landed_cost(self) -> float:
        return self.cost

    def rounded(self) -> dict[str, float]:
        """Persistable derived columns, each rounded to 2 dp."""
        values = asdict(self)
        values["landed_cost"] = self.cost
        return {k: round(values[k], 2) for k in PERSISTED_FIELDS}


def num(raw: Any, key: str) -> float:
    """Read a numeric field from a mapping or object; absent/None/NaN/garbage → 0."""
    if isinstance(raw, Mapping):
        value = raw.get(key)
    else:
        value = getattr(raw, key, None)
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        f = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(f) or math.isinf(f):
        return 0.0
    return f


def effective_quantity(raw: Any) -> float:
    """Quantity used as divisor: 0 (or missing) counts as 1."""
    qty = num(raw, "quantity")
    return qty if qty != 0 else 1.0


def check_rate(name: str, rate: float) -> float:
    """Validate a tax rate: finite and strictly positive."""
    try:
        r = float(rate)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number, got {rate!r}")
    if not math.isfinite(r) or r <= 0:
        raise ValidationError(f"{name} must be a finite value greater than 0, got {rate!r}")
    return r


def compute_item_economics(
    raw_item: Any,
    total_other_charges: float,
    total_gross_weight: float,
    income_tax_rate: float,
    sales_tax_rate: float | None = None,
    retail_margin_share: float | None = None,
) -> DerivedFields:
    """Derive landed cost, retail, MRP, margin and suggested sale price for one item."""
    income_tax_rate = check_rate("income_tax_rate", income_tax_rate)
    sales_tax_rate = check_rate(
        "sales_tax_rate", settings.SALES_TAX_RATE if sales_tax_rate is None else sales_tax_rate
    )
    share = settings.RETAIL_MARGIN_SHARE if retail_margin_share is None else retail_margin_share

    qty = effective_quantity(raw_item)

    customs_per_unit = sum(num(raw_item, k) for k in CUSTOMS_FIELDS) / qty

    other_cost_per_unit = 0.0
    if total_gross_weight > 0:
        share_of_charges = num(raw_item, "gross_weight") * total_other_charges / total_gross_weight
        other_cost_per_unit = share_of_charges / qty

    cost = num(raw_item, "unit_price") + customs_per_unit + other_cost_per_unit

    per_unit_sales_tax = sum(num(raw_item, k) for k in SALES_TAX_FIELDS) / qty
    retail_price = per_unit_sales_tax / sales_tax_rate
    mrp = retail_price + per_unit_sales_tax
    gross_margin = retail_price - cost

    per_unit_profit = (num(raw_item, "income_tax") / income_tax_rate) / qty
    sale_price = cost + per_unit_profit

    clamped = False
    if sale_price > retail_price:
        sale_price = cost + share * (retail_price - cost)
        clamped = True

    return DerivedFields(
        customs_per_unit=customs_per_unit,
        other_cost_per_unit=other_cost_per_unit,
        cost=cost,
        per_unit_sales_tax=per_unit_sales_tax,
        retail_price=retail_price,
        mrp=mrp,
        gross_margin=gross_margin,
        per_unit_profit=per_unit_profit,
        sale_price=sale_price,
        clamped=clamped,
    )


def gd_aggregates(items: Iterable[Any], charges: Iterable[Any]) -> tuple[float, float]:
    """(total other charges, total gross weight) across a GD."""
    total_charges = sum(num(c, "charge_amount") for c in charges)
    total_weight = sum(num(i, "gross_weight") for i in items)
    return total_charges, total_weight


def average_landed_cost(items: Iterable[Any]) -> float:
    """Quantity-weighted mean of item landed costs (0 when there is no quantity)."""
    total_value = 0.0
    total_qty = 0.0
    for it in items:
        qty = num(it, "quantity")
        total_value += num(it, "landed_cost") * qty
        total_qty += qty
    return total_value / total_qty if total_qty else 0.0
