"""Tests for payment recording, allocation and customers."""
from datetime import date

import pytest
from sqlmodel import select

from conftest import GD_NUMBER, HS_CODE
from gdledger.core.errors import ConflictError, NotFoundError, ValidationError
from gdledger.models import Bank, Customer, Payment, PaymentAllocation, SalesInvoice
from gdledger.services import customers, payments, sales

ITEM_ID = f"{GD_NUMBER}-{HS_CODE}-1"


@pytest.fixture()
def two_invoices(session, make_gd, make_customer):
    """Unpaid invoices of 600 and 700, oldest first."""
    gd = make_gd(stock=True)
    customer = make_customer()
    first = sales.create_invoice(session, customer.id, gd.id, [{"item_id": ITEM_ID, "quantity": 10, "sale_rate": 60}])
    second = sales.create_invoice(session, customer.id, gd.id, [{"item_id": ITEM_ID, "quantity": 10, "sale_rate": 70}])
    return customer, first, second


class TestAllocate:
    def test_oldest_first_with_partial(self, session, two_invoices):
        customer, first, second = two_invoices
        result = payments.allocate_customer_payment(session, customer.id, 1000)
        session.commit()

        assert result.allocations == [(first.id, 600), (second.id, 400)]
        assert result.remaining == 0
        assert session.get(SalesInvoice, first.id).is_paid
        assert not session.get(SalesInvoice, second.id).is_paid

    def test_prior_allocations_reduce_due(self, session, two_invoices):
        customer, first, second = two_invoices
        payments.allocate_customer_payment(session, customer.id, 1000)
        session.commit()
        result = payments.allocate_customer_payment(session, customer.id, 300)
        session.commit()

        assert result.allocations == [(second.id, 300)]
        assert session.get(SalesInvoice, second.id).is_paid

    def test_surplus_is_returned(self, session, two_invoices):
        customer, _, _ = two_invoices
        result = payments.allocate_customer_payment(session, customer.id, 1500)
        assert result.allocated == 1300
        assert result.remaining == 200

    def test_non_positive_amount(self, session, two_invoices):
        customer, _, _ = two_invoices
        with pytest.raises(ValidationError):
            payments.allocate_customer_payment(session, customer.id, 0)


class TestRecordPayment:
    def test_customer_overpayment_becomes_credit(self, session, two_invoices):
        customer, first, second = two_invoices
        payment, result = payments.record_payment(
            session,
            {"type": "received", "payment_for": "customer", "customer_id": customer.id, "amount": 1500, "mode": "cash"},
        )
        assert payment.unallocated_amount == 200
        assert session.get(Customer, customer.id).credit_balance == 200
        assert all(a.payment_id == payment.id for a in session.exec(select(PaymentAllocation)).all())
        assert session.get(SalesInvoice, second.id).is_paid

    def test_invoice_payment_marks_paid(self, session, two_invoices):
        customer, first, _ = two_invoices
        payment, _ = payments.record_payment(
            session,
            {
                "type": "received",
                "payment_for": "invoice",
                "invoice_number": first.invoice_number,
                "amount": 600,
                "mode": "cash",
                "date": "2024-04-01",
                "remarks": "counter",
            },
        )
        stored = session.get(SalesInvoice, first.id)
        assert stored.is_paid
        assert stored.paid_bank == "Cash"
        assert stored.paid_date == "2024-04-01"
        assert payment.customer_id == customer.id

    def test_bank_balance_synced(self, session, two_invoices):
        customer, first, _ = two_invoices
        bank = payments.create_bank(session, "HBL", "0012", balance=1000)
        payments.record_payment(
            session,
            {"type": "received", "payment_for": "invoice", "invoice_number": first.invoice_number,
             "amount": 600, "mode": "bank", "bank_id": bank.id},
        )
        payments.record_payment(
            session,
            {"type": "paid", "payment_for": "customer", "customer_id": customer.id,
             "amount": 50, "mode": "bank", "bank_id": bank.id},
        )
        assert session.get(Bank, bank.id).balance == 1550
        assert session.get(SalesInvoice, first.id).paid_bank == "HBL"

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "received", "amount": -5, "mode": "cash", "payment_for": "customer", "customer_id": 1},
            {"type": "gift", "amount": 5, "mode": "cash", "payment_for": "customer", "customer_id": 1},
            {"type": "received", "amount": 5, "mode": "cheque", "payment_for": "customer", "customer_id": 1},
            {"type": "received", "amount": 5, "mode": "bank", "payment_for": "customer", "customer_id": 1},
            {"type": "received", "amount": 5, "mode": "cash", "payment_for": "invoice"},
        ],
    )
    def test_invalid_payloads(self, session, payload):
        with pytest.raises(ValidationError):
            payments.record_payment(session, payload)
        assert session.exec(select(Payment)).all() == []

    def test_unknown_invoice_rolls_back(self, session, two_invoices):
        with pytest.raises(NotFoundError):
            payments.record_payment(
                session,
                {"type": "received", "payment_for": "invoice", "invoice_number": "NOPE", "amount": 5, "mode": "cash"},
            )
        assert session.exec(select(Payment)).all() == []

    def test_list_banks(self, session):
        payments.create_bank(session, "Meezan")
        payments.create_bank(session, "Allied")
        assert [b.name for b in payments.list_banks(session)] == ["Allied", "Meezan"]


class TestCustomers:
    def test_crud(self, session):
        c = customers.create_customer(session, {"name": "Zain", "cnic": "35202-1", "filer_status": "filer"})
        assert c.filer_status == "filer"
        customers.update_customer(session, c.id, {"mobile": "0300", "credit_limit": None})
        assert customers.get_customer(session, c.id).mobile == "0300"
        assert [x.name for x in customers.list_customers(session, "Zai")] == ["Zain"]
        customers.delete_customer(session, c.id)
        with pytest.raises(NotFoundError):
            customers.get_customer(session, c.id)

    def test_duplicate_cnic(self, session):
        customers.create_customer(session, {"name": "A", "cnic": "1"})
        with pytest.raises(ConflictError):
            customers.create_customer(session, {"name": "B", "cnic": "1"})
        b = customers.create_customer(session, {"name": "B", "cnic": "2"})
        with pytest.raises(ConflictError):
            customers.update_customer(session, b.id, {"cnic": "1"})

    def test_validation(self, session):
        with pytest.raises(ValidationError):
            customers.create_customer(session, {"name": ""})
        with pytest.raises(ValidationError):
            customers.create_customer(session, {"name": "X", "filer_status": "maybe"})

    def test_delete_with_invoices_refused(self, session, two_invoices):
        customer, _, _ = two_invoices
        with pytest.raises(ConflictError):
            customers.delete_customer(session, customer.id)

    def test_balance_filters(self, session, two_invoices, make_customer):
        customer, _, _ = two_invoices
        make_customer(name="Nadia Stores")
        assert [c.id for c in customers.list_customers(session, balance_gt=1000)] == [customer.id]
        assert [c.id for c in customers.list_customers(session, credit_exceeded=True)] == [customer.id]

        customers.update_customer(session, customer.id, {"credit_limit": 2000})
        assert customers.list_customers(session, credit_exceeded=True) == []
        assert len(customers.list_customers(session, balance_gt=-1)) == 2


class TestCustomerBalance:
    def test_invoice_then_allocation(self, session, make_gd, make_customer):
        gd = make_gd(stock=True)
        customer = make_customer()
        sales.create_invoice(session, customer.id, gd.id, [{"item_id": ITEM_ID, "quantity": 10, "sale_rate": 60}])
        assert session.get(Customer, customer.id).balance == 600

        payments.allocate_customer_payment(session, customer.id, 100)
        session.commit()
        assert session.get(Customer, customer.id).balance == 500

    def test_received_payments_settle_balance(self, session, two_invoices):
        customer, _, second = two_invoices
        assert session.get(Customer, customer.id).balance == 1300

        payments.record_payment(
            session,
            {"type": "received", "payment_for": "customer", "customer_id": customer.id, "amount": 700, "mode": "cash"},
        )
        assert session.get(Customer, customer.id).balance == 600

        payments.record_payment(
            session,
            {"type": "received", "payment_for": "invoice", "invoice_number": second.invoice_number,
             "amount": 600, "mode": "cash"},
        )
        assert session.get(Customer, customer.id).balance == 0

    def test_overpayment_goes_to_credit_not_balance(self, session, two_invoices):
        customer, _, _ = two_invoices
        payments.record_payment(
            session,
            {"type": "received", "payment_for": "customer", "customer_id": customer.id, "amount": 1500, "mode": "cash"},
        )
        stored = session.get(Customer, customer.id)
        assert stored.balance == 0
        assert stored.credit_balance == 200


class TestBanks:
    @pytest.fixture()
    def bank_activity(self, session, two_invoices):
        customer, first, _ = two_invoices
        bank = payments.create_bank(session, "HBL", "0012", balance=1000)
        payments.record_payment(
            session,
            {"type": "received", "payment_for": "invoice", "invoice_number": first.invoice_number,
             "amount": 600, "mode": "bank", "bank_id": bank.id, "date": "2024-03-01"},
        )
        payments.record_payment(
            session,
            {"type": "paid", "payment_for": "customer", "customer_id": customer.id,
             "amount": 50, "mode": "bank", "bank_id": bank.id, "date": "2024-03-05"},
        )
        payments.record_payment(
            session,
            {"type": "received", "payment_for": "customer", "customer_id": customer.id,
             "amount": 20, "mode": "cash", "date": "2024-03-02"},
        )
        return bank

    def test_update_keeps_balance(self, session, bank_activity):
        bank = payments.update_bank(session, bank_activity.id, {"name": "  Habib Bank ", "branch": "Saddar"})
        assert bank.name == "Habib Bank"
        assert bank.branch == "Saddar"
        assert bank.balance == 1550
        with pytest.raises(ValidationError):
            payments.update_bank(session, bank.id, {"name": " "})
        with pytest.raises(NotFoundError):
            payments.update_bank(session, 404, {"name": "X"})

    def test_bank_payments_newest_first(self, session, bank_activity):
        rows, total = payments.bank_payments(session, bank_activity.id)
        assert [p.date for p in rows] == ["2024-03-05", "2024-03-01"]
        assert total == 650

    def test_ledger_inflows_and_outflows(self, session, bank_activity, two_invoices):
        customer, _, _ = two_invoices
        ledger = payments.bank_ledger(session, bank_activity.id)
        assert ledger["bank"].id == bank_activity.id
        assert (ledger["inflows"], ledger["outflows"], ledger["net"]) == (600, 50, 550)
        assert [(r["date"], r["inflow"], r["outflow"]) for r in ledger["rows"]] == [
            ("2024-03-01", 600, 0),
            ("2024-03-05", 0, 50),
        ]
        assert {r["customer_name"] for r in ledger["rows"]} == {customer.name}

    def test_ledger_date_window(self, session, bank_activity):
        ledger = payments.bank_ledger(session, bank_activity.id, from_date=date(2024, 3, 2), to_date=date(2024, 3, 31))
        assert [r["date"] for r in ledger["rows"]] == ["2024-03-05"]
        assert ledger["net"] == -50

    def test_unknown_bank(self, session):
        with pytest.raises(NotFoundError):
            payments.bank_payments(session, 9)
        with pytest.raises(NotFoundError):
            payments.bank_ledger(session, 9)
