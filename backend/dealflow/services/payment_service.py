# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Reconciliation Service

WHY: A deal is paid over time (prepayment, installments, debt). The deal's
paid amount and payment status must always agree with the payments that were
actually received.

DESIGN PRINCIPLES:
- Payments are separate from deals (many-to-one relationship)
- Immutable: a payment is never edited or deleted; corrections are new rows
- paid_amount_cents is recomputed as SUM(payments) in the SAME transaction
  as every payment insert, never incremented from a value read earlier
- Overpayment is accepted and reported as PAID
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Deal, Payment
from ..errors import ValidationError
from ..permissions import Actor, authorize
from ..validation import require_amount_cents, optional_text, coerce_datetime
from dealflow.time_utils import utcnow
from .concurrency import begin_write, run_with_retry
from .deal_scope import require_deal, scoped_deals_query
from .directory_service import require_client
from . import audit_service


# =============================================================================
# PAYMENT STATUS / TYPE (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_UNPAID = "UNPAID"
PAYMENT_STATUS_PARTIAL = "PARTIAL"
PAYMENT_STATUS_PAID = "PAID"

PAYMENT_TYPE_FULL = "FULL"
PAYMENT_TYPE_PARTIAL = "PARTIAL"
PAYMENT_TYPE_DEBT = "DEBT"

VALID_PAYMENT_TYPES = {PAYMENT_TYPE_FULL, PAYMENT_TYPE_PARTIAL, PAYMENT_TYPE_DEBT}

# Deals in these statuses take no money and carry no debt
NON_PAYABLE_STATUSES = {"CANCELED", "REJECTED"}

DISCIPLINE_GOOD = "good"
DISCIPLINE_PAYS_LATE = "pays_late"
DISCIPLINE_CHRONIC = "chronic"


# =============================================================================
# RECONCILIATION
# =============================================================================

def derive_payment_status(amount_cents: int, paid_cents: int) -> str:
    if paid_cents <= 0:
        return PAYMENT_STATUS_UNPAID
    if paid_cents >= amount_cents:
        return PAYMENT_STATUS_PAID
    return PAYMENT_STATUS_PARTIAL


def debt(deal: Deal) -> int:
    return max(0, deal.amount_cents - deal.paid_amount_cents)


def sum_payments(deal_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.deal_id == deal_id)
        .scalar()
    )
    return int(total or 0)


def recompute(deal: Deal) -> Deal:
    """
    Re-derive paid_amount_cents and payment_status from the payment rows.

    Also called when the deal amount changes (quantities set, items removed)
    so the status keeps matching the new amount.
    """
    deal.paid_amount_cents = sum_payments(deal.id)
    deal.payment_status = derive_payment_status(deal.amount_cents, deal.paid_amount_cents)
    return deal


def record_payment_locked(
    deal: Deal,
    amount_cents,
    *,
    method: str | None = None,
    note: str | None = None,
    paid_at=None,
    user_id: int | None = None,
) -> Payment:
    """Insert one payment and reconcile the deal. Does NOT commit."""
    if deal.status in NON_PAYABLE_STATUSES:
        raise ValidationError(
            f"Cannot record payment on a {deal.status} deal",
            details={"deal_id": deal.id, "status": deal.status},
        )

    amount_cents = require_amount_cents(amount_cents, "amount_cents", allow_zero=False)
    payment = Payment(
        deal_id=deal.id,
        client_id=deal.client_id,
        amount_cents=amount_cents,
        method=optional_text(method, "method", max_length=50),
        note=optional_text(note, "note"),
        paid_at=coerce_datetime(paid_at, "paid_at") or utcnow(),
        created_by_user_id=user_id,
    )
    db.session.add(payment)
    db.session.flush()

    recompute(deal)
    return payment


def record_payment(
    actor: Actor,
    deal_id: int,
    amount_cents,
    *,
    method: str | None = None,
    note: str | None = None,
    paid_at=None,
) -> Payment:
    """
    Record money received against a deal.

    Raises:
        ValidationError: amount <= 0, or the deal is CANCELED/REJECTED
        NotFoundError: deal missing, archived or outside the caller's scope
    """
    authorize(actor, "record_payment")
    before = {}

    def _op():
        begin_write()
        deal = require_deal(actor, deal_id, lock=True)
        before.update(paid_amount_cents=deal.paid_amount_cents, payment_status=deal.payment_status)
        payment = record_payment_locked(
            deal,
            amount_cents,
            method=method,
            note=note,
            paid_at=paid_at,
            user_id=actor.user_id,
        )
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    deal = payment.deal
    audit_service.record(
        actor.user_id,
        "deal.payment_recorded",
        "deal",
        deal.id,
        before=before,
        after={
            "payment_id": payment.id,
            "amount_cents": payment.amount_cents,
            "paid_amount_cents": deal.paid_amount_cents,
            "payment_status": deal.payment_status,
        },
    )
    return payment


def get_deal_payments(actor: Actor, deal_id: int) -> list[Payment]:
    authorize(actor, "view_deals")
    deal = require_deal(actor, deal_id, include_archived=True)
    return list(deal.payments)


# =============================================================================
# DEBTS
# =============================================================================

def _open_debt_filter(query):
    return query.filter(
        Deal.payment_status.in_([PAYMENT_STATUS_UNPAID, PAYMENT_STATUS_PARTIAL]),
        Deal.status.notin_(NON_PAYABLE_STATUSES),
        Deal.amount_cents > Deal.paid_amount_cents,
    )


def debts_overview(actor: Actor) -> dict:
    """Every open debt the caller can see, with totals."""
    authorize(actor, "view_debts")
    deals = (
        _open_debt_filter(scoped_deals_query(actor))
        .order_by(Deal.due_date.is_(None), Deal.due_date, Deal.id)
        .all()
    )
    return {
        "deals": [d.to_dict() for d in deals],
        "totals": {
            "count": len(deals),
            "amount_cents": sum(d.amount_cents for d in deals),
            "paid_cents": sum(d.paid_amount_cents for d in deals),
            "debt_cents": sum(debt(d) for d in deals),
        },
    }


def client_total_debt(client_id: int) -> int:
    deals = _open_debt_filter(
        db.session.query(Deal).filter(Deal.client_id == client_id, Deal.is_archived.is_(False))
    ).all()
    return sum(debt(d) for d in deals)


def payment_discipline(client_id: int) -> dict:
    """
    How reliably a client pays CLOSED deals that had a due date.

    A deal counts as on time when its last payment is not after the due date.
    Late deals contribute their delay to the average. A client with no such
    deals is rated good.
    """
    closed = (
        db.session.query(Deal)
        .filter(Deal.client_id == client_id, Deal.status == "CLOSED", Deal.is_archived.is_(False))
        .all()
    )

    with_due_date = 0
    on_time = 0
    total_delay_days = 0.0
    for deal in closed:
        if deal.due_date is None:
            continue
        with_due_date += 1
        last_paid_at = (
            db.session.query(func.max(Payment.paid_at))
            .filter(Payment.deal_id == deal.id)
            .scalar()
        )
        if last_paid_at is None:
            continue
        delay_days = (last_paid_at - deal.due_date).total_seconds() / 86400
        if delay_days <= 0:
            on_time += 1
        else:
            total_delay_days += delay_days

    on_time_rate = on_time / with_due_date if with_due_date else 1.0
    late = with_due_date - on_time
    avg_delay = total_delay_days / late if late else 0.0

    if on_time_rate < 0.5:
        tag = DISCIPLINE_CHRONIC
    elif on_time_rate < 0.8:
        tag = DISCIPLINE_PAYS_LATE
    else:
        tag = DISCIPLINE_GOOD

    return {
        "on_time_rate": on_time_rate,
        "avg_payment_delay_days": round(avg_delay),
        "tag": tag,
        "total_closed_deals": len(closed),
        "deals_with_due_date": with_due_date,
    }


def client_debt(actor: Actor, client_id: int, *, payments_limit: int = 50) -> dict:
    authorize(actor, "view_debts")
    client = require_client(client_id)

    deals = (
        _open_debt_filter(scoped_deals_query(actor).filter(Deal.client_id == client.id))
        .order_by(Deal.created_at.desc(), Deal.id.desc())
        .all()
    )
    payments = (
        db.session.query(Payment)
        .filter(Payment.client_id == client.id)
        .order_by(Payment.paid_at.desc(), Payment.id.desc())
        .limit(payments_limit)
        .all()
    )
    return {
        "client": client.to_dict(),
        "deals": [d.to_dict() for d in deals],
        "payments": [p.to_dict() for p in payments],
        "total_debt_cents": sum(debt(d) for d in deals),
        "discipline": payment_discipline(client.id),
    }
