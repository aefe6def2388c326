"""
Shared pytest fixtures.

Every test gets its own in-memory SQLite database. Environment variables are
set before the application package is imported so the module-level engine
and log sink never touch the filesystem.
"""
import os
import sys

# Ensure gdledger package is importable when running pytest from project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FILE"] = ""

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session  # noqa: E402

from gdledger.core.database import build_engine, create_db_and_tables, get_session  # noqa: E402
from gdledger.models import Customer  # noqa: E402
from gdledger.services import gd_entry, inventory  # noqa: E402

GD_NUMBER = "KPAF-HC-1234"
HS_CODE = "8471.3010"


@pytest.fixture()
def engine():
    eng = build_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture()
def client(engine):
    from gdledger.main import app

    def _override():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _override
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
    app.dependency_overrides.clear()


# ── Builders ──────────────────────────────────────────────────────────────────


def widget(**overrides):
    """One customs line: 100 pcs at 10, duty 100, sales tax 180, income tax 35."""
    item = {
        "description": "Widget",
        "hs_code": HS_CODE,
        "unit": "pcs",
        "quantity": 100,
        "unit_price": 10,
        "custom_duty": 100,
        "sales_tax": 180,
        "income_tax": 35,
    }
    item.update(overrides)
    return item


@pytest.fixture()
def make_gd(session):
    def _make(items=None, charges=(), gd_number=GD_NUMBER, stock=False, **kwargs):
        header = {"gd_number": gd_number, "gd_date": "2024-01-15", "supplier_name": "Acme Trading"}
        gd, _ = gd_entry.create_gd(session, header, items or [widget()], charges, **kwargs)
        if stock:
            inventory.stock_in(session, gd.id, stocked_by="tester")
        return gd

    return _make


@pytest.fixture()
def make_customer(session):
    def _make(name="Bilal Traders", filer_status="non-filer", cnic=None):
        c = Customer(name=name, filer_status=filer_status, cnic=cnic)
        session.add(c)
        session.commit()
        session.refresh(c)
        return c

    return _make
