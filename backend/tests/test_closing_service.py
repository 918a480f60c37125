"""
Daily closing tests.

Verifies:
- close_day batches every CLOSED deal without a closing
- A deal is counted in exactly one closing
- Running twice on one date adds to the same row
"""

from datetime import datetime, timedelta

import pytest

from dealflow.errors import AuthorizationError
from dealflow.extensions import db
from dealflow.models import DailyClosing, Deal
from dealflow.services import closing_service


@pytest.fixture
def stocked(product_a, product_b, stock_in):
    stock_in(product_a, 50)
    stock_in(product_b, 50)


class TestCloseDay:

    def test_nothing_to_close(self, admin):
        assert closing_service.close_day(admin) is None
        assert db.session.query(DailyClosing).count() == 0

    def test_closes_only_closed_deals(self, workflow, admin, stocked):
        closed = workflow.closed()
        shipped = workflow.shipped()

        closing = closing_service.close_day(admin, now=datetime(2026, 10, 19, 18, 0))

        assert closing.business_date.isoformat() == "2026-10-19"
        assert closing.closed_deals_count == 1
        assert closing.total_amount_cents == 630
        assert closing.closed_by_user_id == admin.user_id
        assert db.session.get(Deal, closed.id).daily_closing_id == closing.id
        assert db.session.get(Deal, shipped.id).daily_closing_id is None

    def test_second_run_is_idempotent(self, workflow, admin, stocked):
        workflow.closed()
        now = datetime(2026, 10, 19, 18, 0)
        first = closing_service.close_day(admin, now=now)
        again = closing_service.close_day(admin, now=now)

        assert again.id == first.id
        assert again.closed_deals_count == 1
        assert again.total_amount_cents == 630

    def test_same_day_rerun_adds_new_deals(self, workflow, admin, stocked):
        now = datetime(2026, 10, 19, 18, 0)
        workflow.closed()
        first = closing_service.close_day(admin, now=now)
        workflow.closed()
        second = closing_service.close_day(admin, now=now + timedelta(hours=1))

        assert second.id == first.id
        assert second.closed_deals_count == 2
        assert second.total_amount_cents == 1260
        assert db.session.query(DailyClosing).count() == 1

    def test_next_day_gets_its_own_closing(self, workflow, admin, stocked):
        workflow.closed()
        monday = closing_service.close_day(admin, now=datetime(2026, 10, 19, 18, 0))
        workflow.closed()
        tuesday = closing_service.close_day(admin, now=datetime(2026, 10, 20, 18, 0))

        assert tuesday.id != monday.id
        assert tuesday.closed_deals_count == 1
        assert [c.id for c in closing_service.list_closings()] == [tuesday.id, monday.id]

    def test_manager_cannot_close_day(self, manager):
        with pytest.raises(AuthorizationError):
            closing_service.close_day(manager)

    def test_accountant_cannot_close_day(self, accountant):
        with pytest.raises(AuthorizationError):
            closing_service.close_day(accountant)
