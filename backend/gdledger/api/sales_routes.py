"""
Sales API.

Endpoints:
  POST   /api/sales/invoice                        – create invoice (FIFO)
  GET    /api/sales/invoices                       – list / filter invoices
  GET    /api/sales/invoices/suggestions           – returnable invoices by number or customer
  GET    /api/sales/invoice/{number}               – invoice with lines
  DELETE /api/sales/invoice/{number}               – delete an unpaid invoice
  POST   /api/sales/invoice/{number}/mark-paid     – record payment details
  GET    /api/sales/invoice/{number}/returns       – returns on an invoice
  POST   /api/sales/returns                        – process a return
"""
from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from gdledger.core.database import get_session
from gdledger.schemas.requests import InvoiceCreate, MarkPaidRequest, ReturnCreate
from gdledger.schemas.responses import (
    InvoiceCreated,
    InvoiceDetail,
    InvoiceItemRead,
    InvoiceRead,
    InvoiceSuggestion,
    OkResponse,
    ReturnRead,
    ReturnResponse,
)
from gdledger.services import returns, sales

sales_router = APIRouter(prefix="/api/sales", tags=["sales"])


@sales_router.post("/invoice", response_model=InvoiceCreated, status_code=status.HTTP_201_CREATED)
def create_invoice(body: InvoiceCreate, session: Session = Depends(get_session)):
    invoice = sales.create_invoice(
        session,
        body.customer_id,
        body.gd_entry_id,
        [line.model_dump() for line in body.items],
        withholding_rate=body.withholding_rate,
        tax_section=body.tax_section,
        created_by=body.created_by,
    )
    return InvoiceCreated(
        invoice_number=invoice.invoice_number,
        gross_total=invoice.gross_total,
        sales_tax=invoice.sales_tax,
        withholding_tax=invoice.withholding_tax,
        total_cost=invoice.total_cost,
        gross_profit=invoice.gross_profit,
    )


@sales_router.get("/invoices", response_model=list[InvoiceRead])
def list_invoices(
    search: Optional[str] = Query(default=None),
    tax_section: Optional[str] = Query(default=None),
    filer_status: Optional[str] = Query(default=None),
    from_date: Optional[date] = Query(default=None),
    to_date: Optional[date] = Query(default=None),
    payment_status: Optional[Literal["paid", "unpaid"]] = Query(default=None),
    session: Session = Depends(get_session),
):
    rows = sales.list_invoices(
        session, search, tax_section, filer_status, from_date, to_date, payment_status
    )
    return [InvoiceRead.model_validate(r) for r in rows]


@sales_router.get("/invoices/suggestions", response_model=list[InvoiceSuggestion])
def invoice_suggestions(q: Optional[str] = Query(default=None), session: Session = Depends(get_session)):
    return [InvoiceSuggestion(**r) for r in returns.invoice_suggestions(session, q)]


@sales_router.get("/invoice/{invoice_number}", response_model=InvoiceDetail)
def get_invoice(invoice_number: str, session: Session = Depends(get_session)):
    invoice, items = sales.get_invoice(session, invoice_number)
    return InvoiceDetail(
        invoice=InvoiceRead.model_validate(invoice),
        items=[InvoiceItemRead.model_validate(i) for i in items],
    )


@sales_router.delete("/invoice/{invoice_number}", response_model=OkResponse)
def delete_invoice(invoice_number: str, session: Session = Depends(get_session)):
    sales.delete_invoice(session, invoice_number)
    return OkResponse(message=f"Invoice {invoice_number} deleted")


@sales_router.post("/invoice/{invoice_number}/mark-paid", response_model=OkResponse)
def mark_paid(invoice_number: str, body: MarkPaidRequest, session: Session = Depends(get_session)):
    sales.mark_paid(
        session,
        invoice_number,
        bank_or_cash=body.bank_or_cash,
        payer_name=body.payer_name,
        paid_date=body.date,
        receipt_ref=body.receipt_ref,
    )
    return OkResponse(message=f"Invoice {invoice_number} marked paid")


@sales_router.get("/invoice/{invoice_number}/returns", response_model=list[ReturnRead])
def list_returns(invoice_number: str, session: Session = Depends(get_session)):
    return [ReturnRead.model_validate(r) for r in returns.list_returns(session, invoice_number)]


@sales_router.post("/returns", response_model=ReturnResponse, status_code=status.HTTP_201_CREATED)
def create_return(body: ReturnCreate, session: Session = Depends(get_session)):
    result = returns.create_return(
        session,
        body.invoice_number,
        [line.model_dump() for line in body.items],
        refund_method=body.refund_method,
        created_by=body.created_by,
    )
    return ReturnResponse(
        return_number=result.return_number,
        refund_amount=result.refund_amount,
        refund_tax=result.refund_tax,
        fully_returned=result.fully_returned,
        refund_method=result.refund_method,
    )
