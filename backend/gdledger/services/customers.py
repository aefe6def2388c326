"""Customer records."""
from __future__ import annotations

from typing import Any, Mapping, Optional

from loguru import logger
from sqlmodel import Session, col, func, or_, select

from gdledger.core.database import atomic
from gdledger.core.errors import ConflictError, NotFoundError, ValidationError
from gdledger.models.party import Customer
from gdledger.models.sales import SalesInvoice

EDITABLE_FIELDS = (
    "name",
    "business_name",
    "address",
    "cnic",
    "mobile",
    "filer_status",
    "credit_limit",
)
FILER_STATUSES = ("filer", "non-filer")


def _check(values: Mapping[str, Any]) -> None:
    if "name" in values and not (values.get("name") or "").strip():
        raise ValidationError("name is required")
    status = values.get("filer_status")
    if status is not None and status not in FILER_STATUSES:
        raise ValidationError("filer_status must be 'filer' or 'non-filer'")


def _cnic_taken(session: Session, cnic: Optional[str], exclude_id: Optional[int] = None) -> bool:
    if not cnic:
        return False
    stmt = select(Customer.id).where(Customer.cnic == cnic)
    if exclude_id is not None:
        stmt = stmt.where(Customer.id != exclude_id)
    return session.exec(stmt).first() is not None


def get_customer(session: Session, customer_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def list_customers(
    session: Session,
    search: Optional[str] = None,
    balance_gt: Optional[float] = None,
    credit_exceeded: bool = False,
) -> list[Customer]:
    """Customers matching name, CNIC or mobile. ``credit_exceeded`` keeps those owing more than their limit."""
    stmt = select(Customer)
    if search:
        stmt = stmt.where(
            or_(
                col(Customer.name).contains(search),
                col(Customer.cnic).contains(search),
                col(Customer.mobile).contains(search),
            )
        )
    if balance_gt is not None:
        stmt = stmt.where(Customer.balance > balance_gt)
    if credit_exceeded:
        stmt = stmt.where(Customer.balance > Customer.credit_limit)
    return list(session.exec(stmt.order_by(col(Customer.name))).all())


def create_customer(session: Session, values: Mapping[str, Any]) -> Customer:
    data = {k: values.get(k) for k in EDITABLE_FIELDS if values.get(k) is not None}
    data.setdefault("name", "")
    _check(data)
    with atomic(session):
        if _cnic_taken(session, data.get("cnic")):
            raise ConflictError("CNIC already exists")
        customer = Customer(**data)
        session.add(customer)
    logger.info(f"Customer {customer.id} created: {customer.name}")
    return customer


def update_customer(session: Session, customer_id: int, values: Mapping[str, Any]) -> Customer:
    data = {k: values[k] for k in EDITABLE_FIELDS if k in values}
    _check(data)
    with atomic(session):
        customer = get_customer(session, customer_id)
        if "cnic" in data and _cnic_taken(session, data["cnic"], exclude_id=customer_id):
            raise ConflictError("CNIC already exists")
        for k, v in data.items():
            if k == "credit_limit" and v is None:
                continue
            setattr(customer, k, v)
        session.add(customer)
    logger.info(f"Customer {customer_id} updated")
    return customer


def delete_customer(session: Session, customer_id: int) -> None:
    with atomic(session):
        customer = get_customer(session, customer_id)
        invoices = session.exec(
            select(func.count(SalesInvoice.id)).where(SalesInvoice.customer_id == customer_id)
        ).one()
        if invoices:
            raise ConflictError(f"Customer {customer_id} has {invoices} invoice(s) and cannot be deleted")
        session.delete(customer)
    logger.info(f"Customer {customer_id} deleted")
