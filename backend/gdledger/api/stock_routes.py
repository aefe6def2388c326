"""
Stock API.

Endpoints:
  POST /api/stock/stock-in/{gd_id}   – create batches for every GD item
  GET  /api/stock/summary            – current quantity per item × GD
  GET  /api/stock/ledger             – movement history of one item × GD
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlmodel import Session

from gdledger.core.database import get_session
from gdledger.schemas.requests import StockInRequest
from gdledger.schemas.responses import (
    StockInResponse,
    StockLedgerEvent,
    StockLedgerResponse,
    StockSummaryRow,
)
from gdledger.services import inventory, reports

stock_router = APIRouter(prefix="/api/stock", tags=["stock"])


@stock_router.post("/stock-in/{gd_id}", response_model=StockInResponse)
def stock_in(
    gd_id: int,
    body: Optional[StockInRequest] = Body(default=None),
    session: Session = Depends(get_session),
):
    body = body or StockInRequest()
    batches = inventory.stock_in(session, gd_id, body.stocked_by, body.stocked_at)
    return StockInResponse(gd_id=gd_id, batches=len(batches))


@stock_router.get("/summary", response_model=list[StockSummaryRow])
def stock_summary(
    q: Optional[str] = Query(default=None, description="Search description, HS code, item or GD number"),
    only_in_stock: bool = Query(default=False),
    session: Session = Depends(get_session),
):
    return [StockSummaryRow(**r) for r in reports.stock_summary(session, q, only_in_stock)]


@stock_router.get("/ledger", response_model=StockLedgerResponse)
def stock_ledger(
    item_id: str = Query(...),
    gd_id: int = Query(...),
    session: Session = Depends(get_session),
):
    events = reports.stock_ledger(session, item_id, gd_id)
    return StockLedgerResponse(
        item_id=item_id,
        gd_id=gd_id,
        events=[StockLedgerEvent(**e) for e in events],
    )
