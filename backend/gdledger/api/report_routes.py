"""
Reports and item lookup API.

Endpoints:
  GET /api/reports/profit/summary        – revenue, COGS and profit with trend and top lists
  GET /api/items/search                  – items with stock on hand
  GET /api/items/{item_id}/availability  – remaining stock of one item per GD
"""
from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from gdledger.core.database import get_session
from gdledger.schemas.responses import (
    ItemAvailabilityRow,
    ItemSearchRow,
    ProfitSummaryResponse,
    ProfitTotals,
    ProfitTrendRow,
    TopCustomer,
    TopProduct,
)
from gdledger.services import reports

report_router = APIRouter(prefix="/api/reports", tags=["reports"])
item_router = APIRouter(prefix="/api/items", tags=["items"])


@report_router.get("/profit/summary", response_model=ProfitSummaryResponse)
def profit_summary(
    from_date: Optional[date] = Query(default=None),
    to_date: Optional[date] = Query(default=None),
    group_by: Literal["day", "week", "month"] = Query(default="month"),
    tax_section: Optional[str] = Query(default=None),
    filer_status: Optional[str] = Query(default=None),
    q: Optional[str] = Query(default=None, description="Customer, item description or HS code"),
    session: Session = Depends(get_session),
):
    data = reports.profit_summary(session, from_date, to_date, group_by, tax_section, filer_status, q)
    return ProfitSummaryResponse(
        totals=ProfitTotals(**data["totals"]),
        trend=[ProfitTrendRow(**r) for r in data["trend"]],
        top_products=[TopProduct(**r) for r in data["top_products"]],
        top_customers=[TopCustomer(**r) for r in data["top_customers"]],
    )


@item_router.get("/search", response_model=list[ItemSearchRow])
def search_items(q: Optional[str] = Query(default=None), session: Session = Depends(get_session)):
    return [ItemSearchRow(**r) for r in reports.search_items(session, q)]


@item_router.get("/{item_id}/availability", response_model=list[ItemAvailabilityRow])
def item_availability(item_id: str, session: Session = Depends(get_session)):
    return [ItemAvailabilityRow(**r) for r in reports.item_availability(session, item_id)]
