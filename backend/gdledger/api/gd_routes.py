"""
Goods Declaration API.

Endpoints:
  POST   /api/gd                   – create GD with items and charges
  GET    /api/gd                   – list / search GDs
  GET    /api/gd/unstocked         – GDs awaiting stock-in
  GET    /api/gd/{gd_id}           – header, items and charges
  PUT    /api/gd/{gd_id}/items     – edit raw item figures, recompute
  PUT    /api/gd/{gd_id}/charges   – replace charges, recompute
  DELETE /api/gd/items/{item_id}   – remove an unused item
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from gdledger.core.database import get_session
from gdledger.schemas.requests import GDChargesUpdate, GDCreate, GDItemsUpdate
from gdledger.schemas.responses import (
    GDChargeRead,
    GDCreated,
    GDDetail,
    GDItemRead,
    GDRead,
    LandedCostResponse,
    OkResponse,
)
from gdledger.services import gd_entry

gd_router = APIRouter(prefix="/api/gd", tags=["gd"])


@gd_router.post("", response_model=GDCreated, status_code=status.HTTP_201_CREATED)
def create_gd(body: GDCreate, session: Session = Depends(get_session)):
    header = body.model_dump(exclude={"items", "charges", "income_tax_rate"})
    gd, avg = gd_entry.create_gd(
        session,
        header,
        [i.model_dump() for i in body.items],
        [c.model_dump() for c in body.charges],
        income_tax_rate=body.income_tax_rate,
    )
    return GDCreated(gd_id=gd.id, gd_number=gd.gd_number, landed_cost=avg)


@gd_router.get("", response_model=list[GDRead])
def list_gds(
    gd_number: Optional[str] = Query(default=None),
    supplier_name: Optional[str] = Query(default=None),
    hs_code: Optional[str] = Query(default=None),
    include_retired: bool = Query(default=True),
    session: Session = Depends(get_session),
):
    rows = gd_entry.list_gds(session, gd_number, supplier_name, hs_code, include_retired)
    return [GDRead.model_validate(r) for r in rows]


@gd_router.get("/unstocked", response_model=list[GDRead])
def list_unstocked(session: Session = Depends(get_session)):
    return [GDRead.model_validate(r) for r in gd_entry.list_unstocked_gds(session)]


@gd_router.get("/{gd_id}", response_model=GDDetail)
def get_gd(gd_id: int, session: Session = Depends(get_session)):
    gd, items, charges = gd_entry.get_gd(session, gd_id)
    return GDDetail(
        gd=GDRead.model_validate(gd),
        items=[GDItemRead.model_validate(i) for i in items],
        charges=[GDChargeRead.model_validate(c) for c in charges],
    )


@gd_router.put("/{gd_id}/items", response_model=LandedCostResponse)
def update_items(gd_id: int, body: GDItemsUpdate, session: Session = Depends(get_session)):
    avg = gd_entry.update_items(
        session,
        gd_id,
        [i.model_dump(exclude_unset=True) for i in body.items],
        income_tax_rate=body.income_tax_rate,
    )
    return LandedCostResponse(gd_id=gd_id, landed_cost=avg)


@gd_router.put("/{gd_id}/charges", response_model=LandedCostResponse)
def update_charges(gd_id: int, body: GDChargesUpdate, session: Session = Depends(get_session)):
    avg = gd_entry.update_charges(
        session,
        gd_id,
        [c.model_dump() for c in body.charges],
        income_tax_rate=body.income_tax_rate,
    )
    return LandedCostResponse(gd_id=gd_id, landed_cost=avg)


@gd_router.delete("/items/{item_id}", response_model=OkResponse)
def delete_item(item_id: str, session: Session = Depends(get_session)):
    gd_entry.delete_gd_item(session, item_id)
    return OkResponse(message=f"Item {item_id} deleted")
