"""Tests for the sales invoice workflow."""
import pytest
from sqlmodel import select

from conftest import GD_NUMBER, HS_CODE, widget
from gdledger.core.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from gdledger.models import (
    Customer,
    GDEntry,
    GDRetirementLog,
    InventoryLog,
    Payment,
    PaymentAllocation,
    SalesInvoice,
    SalesInvoiceItem,
    SalesReturn,
    TotalsAdjustment,
)
from gdledger.services import inventory, payments, returns, sales

ITEM_ID = f"{GD_NUMBER}-{HS_CODE}-1"


def _sell(session, customer, gd, qty=30, rate=15, **kwargs):
    return sales.create_invoice(
        session,
        customer.id,
        gd.id,
        [{"item_id": ITEM_ID, "quantity": qty, "sale_rate": rate}],
        **kwargs,
    )


class TestCreateInvoice:
    def test_totals(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        inv = _sell(session, make_customer(), gd)

        assert len(inv.invoice_number) == 8
        assert inv.invoice_number == inv.invoice_number.upper()
        assert inv.gross_total == 450
        # 30 * retail 10 * 18%
        assert inv.sales_tax == pytest.approx(54)
        assert inv.withholding_rate == 0.01
        assert inv.withholding_tax == pytest.approx(4.5)
        assert inv.total_cost == pytest.approx(340.5)
        assert inv.gross_profit == pytest.approx(109.5)
        assert inv.income_tax_paid == pytest.approx(35)
        assert inv.filer_status == "non-filer"

        line = session.exec(select(SalesInvoiceItem)).one()
        assert line.quantity_sold == 30
        assert line.cost == pytest.approx(11.35)
        assert line.retail_price == 10
        assert line.gross_line_total == 450
        assert inventory.remaining_quantity(session, ITEM_ID, gd.id) == 70

    def test_filer_withholding_default(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        inv = _sell(session, make_customer(filer_status="filer"), gd)
        assert inv.withholding_rate == 0.005
        assert inv.withholding_tax == pytest.approx(2.25)

    def test_explicit_withholding_wins(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        inv = _sell(session, make_customer(filer_status="filer"), gd, withholding_rate=0.02, tax_section="236H")
        assert inv.withholding_tax == pytest.approx(9.0)
        assert inv.tax_section == "236H"

    def test_line_retail_price_override(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        inv = sales.create_invoice(
            session,
            make_customer().id,
            gd.id,
            [{"item_id": ITEM_ID, "quantity": 10, "sale_rate": 50, "retail_price": 40}],
        )
        assert inv.sales_tax == pytest.approx(72)

    def test_sale_logged_with_invoice_ref(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        inv = _sell(session, make_customer(), gd, created_by="cashier")
        sale = session.exec(select(InventoryLog).where(InventoryLog.action == "sale")).one()
        assert sale.ref == inv.invoice_number
        assert sale.action_by == "cashier"
        assert sale.quantity_changed == -30

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"withholding_rate": 1.5},
            {"withholding_rate": -0.1},
            {"tax_section": "153"},
        ],
    )
    def test_rejected_parameters(self, session, make_gd, make_customer, kwargs):
        gd = make_gd(stock=True)
        with pytest.raises(ValidationError):
            _sell(session, make_customer(), gd, **kwargs)
        assert inventory.remaining_quantity(session, ITEM_ID, gd.id) == 100

    def test_empty_or_bad_lines(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        customer = make_customer()
        with pytest.raises(ValidationError):
            sales.create_invoice(session, customer.id, gd.id, [])
        with pytest.raises(ValidationError):
            _sell(session, customer, gd, qty=0)

    def test_unknown_customer_or_item(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        with pytest.raises(NotFoundError):
            sales.create_invoice(session, 999, gd.id, [{"item_id": ITEM_ID, "quantity": 1, "sale_rate": 1}])
        with pytest.raises(NotFoundError):
            sales.create_invoice(
                session, make_customer().id, gd.id, [{"item_id": "ghost", "quantity": 1, "sale_rate": 1}]
            )


class TestAtomicity:
    def test_short_second_line_rolls_back_first(self, session, make_gd, make_customer):
        gd = make_gd(items=[widget(), widget(hs_code="3926.9099", quantity=5)], stock=True)
        with pytest.raises(InsufficientStockError):
            sales.create_invoice(
                session,
                make_customer().id,
                gd.id,
                [
                    {"item_id": ITEM_ID, "quantity": 30, "sale_rate": 15},
                    {"item_id": f"{GD_NUMBER}-3926.9099-2", "quantity": 6, "sale_rate": 15},
                ],
            )
        assert inventory.remaining_quantity(session, ITEM_ID, gd.id) == 100
        assert session.exec(select(SalesInvoice)).all() == []
        assert session.exec(select(InventoryLog).where(InventoryLog.action == "sale")).all() == []

    def test_failure_after_deduction_restores_stock(self, session, make_gd, make_customer, monkeypatch):
        gd = make_gd(stock=True)
        customer = make_customer()

        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(sales, "_persist_invoice", broken)
        with pytest.raises(RuntimeError):
            _sell(session, customer, gd, qty=100)

        assert inventory.remaining_quantity(session, ITEM_ID, gd.id) == 100
        assert inventory.batch_count(session, gd.id) == 1
        assert not session.get(GDEntry, gd.id).retired
        assert session.exec(select(SalesInvoice)).all() == []
        assert session.exec(select(SalesInvoiceItem)).all() == []


class TestRetirement:
    def test_last_batch_retires_gd(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        _sell(session, make_customer(), gd, qty=100, created_by="cashier")

        stored = session.get(GDEntry, gd.id)
        assert stored.retired
        assert stored.retired_by == "cashier"
        assert inventory.batch_count(session, gd.id) == 0
        assert session.exec(select(GDRetirementLog)).one().gd_entry_id == gd.id

    def test_partial_sale_keeps_gd_active(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        _sell(session, make_customer(), gd, qty=99)
        assert not session.get(GDEntry, gd.id).retired


class TestPaymentStateAndDelete:
    def test_mark_paid_twice_overwrites(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        inv = _sell(session, make_customer(), gd)
        sales.mark_paid(session, inv.invoice_number, "HBL", "Ahmed", "2024-03-01", "R1")
        sales.mark_paid(session, inv.invoice_number, "Cash", "Sana", "2024-03-02", "R2")
        stored, _ = sales.get_invoice(session, inv.invoice_number)
        assert stored.is_paid
        assert (stored.paid_bank, stored.paid_by, stored.paid_receipt_ref) == ("Cash", "Sana", "R2")

    def test_delete_unpaid(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        inv = _sell(session, make_customer(), gd)
        sales.delete_invoice(session, inv.invoice_number)
        assert session.exec(select(SalesInvoice)).all() == []
        assert session.exec(select(SalesInvoiceItem)).all() == []
        # stock is not restored by deleting
        assert inventory.remaining_quantity(session, ITEM_ID, gd.id) == 70
        assert session.get(Customer, inv.customer_id).balance == 0

    def test_delete_with_returns_refused(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        inv = _sell(session, make_customer(), gd)
        line = session.exec(select(SalesInvoiceItem)).one()
        returns.create_return(session, inv.invoice_number, [{"invoice_item_id": line.id, "quantity_returned": 1}])
        with pytest.raises(ConflictError):
            sales.delete_invoice(session, inv.invoice_number)
        assert len(session.exec(select(SalesReturn)).all()) == 1

    def test_delete_releases_partial_allocation(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        customer = make_customer()
        inv = _sell(session, customer, gd)
        payment, _ = payments.record_payment(
            session,
            {"type": "received", "payment_for": "customer", "customer_id": customer.id, "amount": 100, "mode": "cash"},
        )
        assert session.get(Customer, customer.id).balance == 350

        sales.delete_invoice(session, inv.invoice_number)

        stored = session.get(Customer, customer.id)
        assert stored.balance == 0
        assert stored.credit_balance == 100
        assert session.get(Payment, payment.id).unallocated_amount == 100
        assert session.exec(select(PaymentAllocation)).all() == []

    def test_delete_paid_refused(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        inv = _sell(session, make_customer(), gd)
        sales.mark_paid(session, inv.invoice_number)
        with pytest.raises(ConflictError):
            sales.delete_invoice(session, inv.invoice_number)

    def test_unknown_invoice(self, session):
        with pytest.raises(NotFoundError):
            sales.get_invoice(session, "NOPE")


class TestListInvoices:
    def test_filters(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        a = _sell(session, make_customer(name="Alpha Store", cnic="1"), gd, qty=1, tax_section="236G")
        b = _sell(session, make_customer(name="Beta Mart", cnic="2", filer_status="filer"), gd, qty=1)
        sales.mark_paid(session, b.invoice_number)

        assert {i.invoice_number for i in sales.list_invoices(session)} == {a.invoice_number, b.invoice_number}
        assert [i.invoice_number for i in sales.list_invoices(session, search="Alpha")] == [a.invoice_number]
        assert [i.invoice_number for i in sales.list_invoices(session, tax_section="236G")] == [a.invoice_number]
        assert [i.invoice_number for i in sales.list_invoices(session, filer_status="filer")] == [b.invoice_number]
        assert [i.invoice_number for i in sales.list_invoices(session, payment_status="unpaid")] == [a.invoice_number]

    def test_bad_payment_status(self, session):
        with pytest.raises(ValidationError):
            sales.list_invoices(session, payment_status="overdue")


def test_totals_adjustment_arithmetic():
    inv = SalesInvoice(
        invoice_number="X", customer_id=1, gross_total=500, sales_tax=72, gross_profit=100
    )
    sales.apply_totals_adjustment(inv, TotalsAdjustment(refund=250, tax_reversal=36))
    assert inv.gross_total == 250
    assert inv.sales_tax == 36
    assert inv.gross_profit == 100 - 214
    assert inv.total_refund == 250
    assert inv.total_refund_tax == 36
