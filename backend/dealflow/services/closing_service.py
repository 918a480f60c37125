# Overview: Daily closing of CLOSED deals into one batch per business date.

"""
Daily Closing Service

RULES:
- A CLOSED deal joins exactly one DailyClosing; daily_closing_id is written
  once and never changed
- At most one DailyClosing per business date (unique constraint); a second
  run on the same date adds to the existing row
- Claiming is a conditional UPDATE (daily_closing_id IS NULL), so two
  concurrent runs can never count the same deal twice
- Nothing to claim: return today's closing unchanged, or None
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Deal, DailyClosing
from ..permissions import Actor, authorize
from dealflow.time_utils import business_date
from .concurrency import begin_write, lock_for_update, run_with_retry
from . import audit_service


def get_closing(closing_date) -> DailyClosing | None:
    return db.session.query(DailyClosing).filter_by(business_date=closing_date).first()


def close_day(actor: Actor, *, now=None) -> DailyClosing | None:
    """
    Batch every CLOSED deal that has no closing yet into today's closing.

    Retries on IntegrityError: two runs racing to create the same date's row
    resolve by the loser picking up the winner's row on its next attempt.
    """
    authorize(actor, "close_day")
    closing_date = business_date(now)

    def _op():
        begin_write()
        candidates = lock_for_update(
            db.session.query(Deal).filter(
                Deal.status == "CLOSED",
                Deal.daily_closing_id.is_(None),
            )
        ).order_by(Deal.id).all()

        if not candidates:
            closing = get_closing(closing_date)
            db.session.commit()
            return closing, []

        closing = get_closing(closing_date)
        if closing is None:
            closing = DailyClosing(
                business_date=closing_date,
                total_amount_cents=0,
                closed_deals_count=0,
                closed_by_user_id=actor.user_id,
            )
            db.session.add(closing)
            db.session.flush()

        ids = [d.id for d in candidates]
        result = db.session.execute(
            update(Deal)
            .where(Deal.id.in_(ids), Deal.daily_closing_id.is_(None))
            .values(daily_closing_id=closing.id),
            execution_options={"synchronize_session": False},
        )
        if result.rowcount != len(ids):
            raise StaleDataError("Deals were claimed by a concurrent closing")

        closing.total_amount_cents += sum(d.amount_cents for d in candidates)
        closing.closed_deals_count += len(candidates)
        closing.closed_by_user_id = actor.user_id
        db.session.commit()
        return closing, ids

    closing, claimed_ids = run_with_retry(_op, retry_on=(IntegrityError,))
    if claimed_ids:
        current_app.logger.info(
            "Closed day %s: %d deals, %d cents",
            closing.business_date.isoformat(),
            len(claimed_ids),
            closing.total_amount_cents,
        )
        audit_service.record(
            actor.user_id,
            "closing.created",
            "daily_closing",
            closing.id,
            after={**closing.to_dict(), "claimed_deal_ids": claimed_ids},
        )
    return closing


def list_closings(limit: int = 100) -> list[DailyClosing]:
    return (
        db.session.query(DailyClosing)
        .order_by(DailyClosing.business_date.desc())
        .limit(limit)
        .all()
    )
