"""
Payment reconciliation tests.

Verifies:
- paid_amount == SUM(payments) and payment_status follows it after every payment
- Overpayment is accepted as PAID
- Payments are refused on CANCELED / REJECTED deals
- Debt overview and client discipline figures
"""

from datetime import datetime

import pytest

from dealflow.errors import AuthorizationError, NotFoundError, ValidationError
from dealflow.extensions import db
from dealflow.models import Deal, Payment
from dealflow.services import deal_service, payment_service


def _sum_payments(deal_id):
    return sum(p.amount_cents for p in db.session.query(Payment).filter_by(deal_id=deal_id))


class TestDerivePaymentStatus:

    @pytest.mark.parametrize(
        "amount,paid,expected",
        [
            (630, 0, "UNPAID"),
            (630, 1, "PARTIAL"),
            (630, 629, "PARTIAL"),
            (630, 630, "PAID"),
            (630, 700, "PAID"),
            (0, 0, "UNPAID"),
        ],
    )
    def test_status(self, amount, paid, expected):
        assert payment_service.derive_payment_status(amount, paid) == expected


class TestRecordPayment:

    def test_partial_then_paid(self, workflow, accountant):
        deal = workflow.priced()
        assert deal.amount_cents == 630

        payment_service.record_payment(accountant, deal.id, 300, method="bank")
        deal = db.session.get(Deal, deal.id)
        assert deal.paid_amount_cents == 300
        assert deal.payment_status == "PARTIAL"
        assert payment_service.debt(deal) == 330

        payment_service.record_payment(accountant, deal.id, 330)
        deal = db.session.get(Deal, deal.id)
        assert deal.paid_amount_cents == 630
        assert deal.payment_status == "PAID"
        assert payment_service.debt(deal) == 0
        assert _sum_payments(deal.id) == deal.paid_amount_cents

        payments = payment_service.get_deal_payments(accountant, deal.id)
        assert [(p.amount_cents, p.method) for p in payments] == [(300, "bank"), (330, None)]

    def test_overpayment_is_paid(self, workflow, manager):
        deal = workflow.priced()
        payment_service.record_payment(manager, deal.id, 1000)
        deal = db.session.get(Deal, deal.id)
        assert deal.payment_status == "PAID"
        assert deal.paid_amount_cents == 1000
        assert deal.debt_cents == 0

    @pytest.mark.parametrize("amount", [0, -5])
    def test_amount_must_be_positive(self, workflow, accountant, amount):
        deal = workflow.priced()
        with pytest.raises(ValidationError):
            payment_service.record_payment(accountant, deal.id, amount)
        assert _sum_payments(deal.id) == 0

    def test_refused_on_canceled_deal(self, workflow, manager, accountant):
        deal = workflow.create()
        deal_service.cancel(manager, deal.id, reason="client left")
        with pytest.raises(ValidationError):
            payment_service.record_payment(accountant, deal.id, 100)

    def test_refused_on_rejected_deal(self, workflow, accountant):
        deal = workflow.priced()
        deal_service.reject_finance(accountant, deal.id, "price too low")
        with pytest.raises(ValidationError):
            payment_service.record_payment(accountant, deal.id, 100)

    def test_warehouse_cannot_record_payments(self, workflow, warehouse):
        deal = workflow.priced()
        with pytest.raises(AuthorizationError):
            payment_service.record_payment(warehouse, deal.id, 100)

    def test_manager_scope(self, workflow, other_manager):
        deal = workflow.priced()
        with pytest.raises(NotFoundError):
            payment_service.record_payment(other_manager, deal.id, 100)

    def test_paid_at_accepts_iso_string(self, workflow, accountant):
        deal = workflow.priced()
        payment = payment_service.record_payment(accountant, deal.id, 100, paid_at="2026-10-01T10:00:00+02:00")
        assert payment.paid_at == datetime(2026, 10, 1, 8, 0)


class TestDebts:

    def test_overview_totals(self, workflow, accountant):
        first = workflow.priced()
        second = workflow.priced()
        payment_service.record_payment(accountant, first.id, 300)
        payment_service.record_payment(accountant, second.id, 630)

        overview = payment_service.debts_overview(accountant)
        assert [d["id"] for d in overview["deals"]] == [first.id]
        assert overview["totals"] == {
            "count": 1,
            "amount_cents": 630,
            "paid_cents": 300,
            "debt_cents": 330,
        }

    def test_overview_skips_archived_and_canceled(self, workflow, admin, manager, accountant):
        archived = workflow.priced()
        canceled = workflow.priced()
        deal_service.archive(admin, archived.id)
        deal_service.cancel(manager, canceled.id)

        assert payment_service.debts_overview(accountant)["totals"]["count"] == 0

    def test_client_debt_and_discipline(self, workflow, accountant, customer, stock_in, product_a, product_b):
        stock_in(product_a, 20)
        stock_in(product_b, 20)
        on_time = workflow.closed()
        late = workflow.closed()
        open_deal = workflow.priced()

        # Due date used by the workflow helper is 2026-12-31
        payment_service.record_payment(accountant, on_time.id, 630, paid_at=datetime(2026, 12, 30))
        payment_service.record_payment(accountant, late.id, 630, paid_at=datetime(2027, 1, 10))
        payment_service.record_payment(accountant, open_deal.id, 30)

        report = payment_service.client_debt(accountant, customer.id)
        assert [d["id"] for d in report["deals"]] == [open_deal.id]
        assert report["total_debt_cents"] == 600
        assert report["discipline"]["total_closed_deals"] == 2
        assert report["discipline"]["deals_with_due_date"] == 2
        assert report["discipline"]["on_time_rate"] == 0.5
        assert report["discipline"]["tag"] == "pays_late"
        assert report["discipline"]["avg_payment_delay_days"] == 10
        assert len(report["payments"]) == 3

    def test_client_without_due_dates_is_good(self, accountant, customer):
        report = payment_service.client_debt(accountant, customer.id)
        assert report["total_debt_cents"] == 0
        assert report["discipline"]["tag"] == "good"
