"""Tests for stock and customer reports."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import select

from conftest import GD_NUMBER, HS_CODE, widget
from gdledger.core.errors import NotFoundError, ValidationError
from gdledger.models import SalesInvoiceItem
from gdledger.services import payments, reports, returns, sales

ITEM_ID = f"{GD_NUMBER}-{HS_CODE}-1"


@pytest.fixture()
def trading_day(session, make_gd, make_customer):
    gd = make_gd(items=[widget(), widget(hs_code="3926.9099", description="Gasket", quantity=5)], stock=True)
    customer = make_customer()
    inv = sales.create_invoice(session, customer.id, gd.id, [{"item_id": ITEM_ID, "quantity": 10, "sale_rate": 20}])
    line = session.exec(select(SalesInvoiceItem)).one()
    returns.create_return(
        session, inv.invoice_number, [{"invoice_item_id": line.id, "quantity_returned": 2, "restock": True}]
    )
    returns.create_return(
        session, inv.invoice_number, [{"invoice_item_id": line.id, "quantity_returned": 1, "restock": False}]
    )
    return gd, customer, inv


class TestStockSummary:
    def test_rows_per_item(self, session, trading_day):
        gd, _, _ = trading_day
        rows = {r["item_id"]: r for r in reports.stock_summary(session)}
        widget_row = rows[ITEM_ID]
        assert widget_row["current_qty"] == 92
        assert widget_row["total_sold"] == 10
        assert widget_row["total_returned_restock"] == 2
        assert widget_row["total_returned_no_restock"] == 1
        assert widget_row["gd_number"] == GD_NUMBER
        assert len(rows) == 2

    def test_search_and_in_stock_filter(self, session, trading_day):
        rows = reports.stock_summary(session, q="Gasket")
        assert [r["description"] for r in rows] == ["Gasket"]
        assert len(reports.stock_summary(session, only_in_stock=True)) == 2

    def test_unstocked_gd_not_listed(self, session, make_gd):
        make_gd()
        assert reports.stock_summary(session) == []


class TestStockLedger:
    def test_running_balance(self, session, trading_day):
        gd, _, _ = trading_day
        events = reports.stock_ledger(session, ITEM_ID, gd.id)
        assert [e["action"] for e in events] == ["stock-in", "sale", "restock"]
        assert [e["balance_after"] for e in events] == [100, 90, 92]

    def test_requires_keys(self, session):
        with pytest.raises(ValidationError):
            reports.stock_ledger(session, "", 1)
        with pytest.raises(NotFoundError):
            reports.stock_ledger(session, ITEM_ID, 404)


class TestCustomerLedger:
    def test_invoices_returns_payments(self, session, trading_day):
        _, customer, inv = trading_day
        payments.record_payment(
            session,
            {"type": "received", "payment_for": "customer", "customer_id": customer.id, "amount": 100, "mode": "cash"},
        )
        ledger = reports.customer_ledger(session, customer.id)

        assert [e["type"] for e in ledger["events"]] == ["invoice", "return", "return", "payment"]
        assert ledger["total_invoiced"] == 200
        # refunds 40 + 20, payment 100
        assert ledger["total_credited"] == 160
        assert ledger["closing_balance"] == 40
        assert ledger["events"][0]["ref"] == inv.invoice_number

    def test_unknown_customer(self, session):
        with pytest.raises(NotFoundError):
            reports.customer_ledger(session, 5)


def _utc_today():
    return datetime.now(timezone.utc).date()


class TestProfitSummary:
    def test_totals_net_of_returns(self, session, trading_day):
        summary = reports.profit_summary(session)
        totals = summary["totals"]

        assert totals["invoices"] == 1
        assert totals["revenue"] == pytest.approx(200)
        assert totals["refunds"] == pytest.approx(60)
        assert totals["net_revenue"] == pytest.approx(140)
        # 7 units kept at 11.35
        assert totals["cogs"] == pytest.approx(79.45)
        assert totals["gross_profit"] == pytest.approx(60.55)
        assert totals["gross_margin_pct"] == pytest.approx(60.55 / 140 * 100)
        # income tax of both GD lines
        assert totals["income_tax_paid"] == pytest.approx(70)
        assert totals["net_profit"] == pytest.approx(-9.45)
        assert totals["items_sold_qty"] == 10
        assert totals["returned_qty"] == 3

    def test_trend_and_top_lists(self, session, trading_day):
        _, customer, inv = trading_day
        session.refresh(inv)
        summary = reports.profit_summary(session, group_by="month")

        assert [r["period"] for r in summary["trend"]] == [inv.created_at.strftime("%Y-%m")]
        assert summary["trend"][0]["gross_profit"] == pytest.approx(60.55)
        [product] = summary["top_products"]
        assert product["item_id"] == ITEM_ID
        assert product["description"] == "Widget"
        assert product["qty"] == 7
        assert product["revenue"] == pytest.approx(140)
        [buyer] = summary["top_customers"]
        assert buyer["customer_id"] == customer.id
        assert buyer["gross_profit"] == pytest.approx(60.55)

    @pytest.mark.parametrize("q, expected", [("Bilal", 1), ("8471", 1), ("Widget", 1), ("Gasket", 0)])
    def test_search_matches_customer_or_item(self, session, trading_day, q, expected):
        assert reports.profit_summary(session, q=q)["totals"]["invoices"] == expected

    def test_date_window(self, session, trading_day):
        later = _utc_today() + timedelta(days=2)
        earlier = _utc_today() - timedelta(days=2)
        assert reports.profit_summary(session, from_date=later)["totals"]["invoices"] == 0
        assert reports.profit_summary(session, to_date=earlier)["totals"]["invoices"] == 0
        assert reports.profit_summary(session, from_date=earlier, to_date=later)["totals"]["invoices"] == 1

    def test_filters_and_empty_range(self, session, trading_day):
        assert reports.profit_summary(session, filer_status="filer")["totals"]["invoices"] == 0
        assert reports.profit_summary(session, filer_status="all")["totals"]["invoices"] == 1
        empty = reports.profit_summary(session, tax_section="236H")
        assert empty["totals"]["gross_margin_pct"] == 0
        assert empty["trend"] == [] and empty["top_products"] == []

    def test_unknown_grouping(self, session):
        with pytest.raises(ValidationError):
            reports.profit_summary(session, group_by="year")


class TestItemLookup:
    def test_search_orders_by_available(self, session, trading_day):
        rows = reports.search_items(session)
        assert [(r["description"], r["available_qty"]) for r in rows] == [("Widget", 92), ("Gasket", 5)]
        assert [r["description"] for r in reports.search_items(session, "3926")] == ["Gasket"]

    def test_search_skips_drained_items(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        sales.create_invoice(session, make_customer().id, gd.id, [{"item_id": ITEM_ID, "quantity": 100, "sale_rate": 20}])
        assert reports.search_items(session) == []

    def test_availability_per_batch(self, session, trading_day):
        gd, _, _ = trading_day
        rows = reports.item_availability(session, ITEM_ID)
        assert [r["quantity_remaining"] for r in rows] == [90, 2]
        assert all(r["gd_number"] == GD_NUMBER and r["gd_id"] == gd.id for r in rows)
        assert rows[0]["cost"] == pytest.approx(11.35)

    def test_availability_unknown_item(self, session):
        with pytest.raises(NotFoundError):
            reports.item_availability(session, "nope")
