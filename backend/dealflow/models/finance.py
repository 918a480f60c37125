from __future__ import annotations

from ..extensions import db
from dealflow.time_utils import to_utc_z


class Payment(db.Model):
    """
    Money received against a deal.

    IMMUTABLE: Payments are never edited or deleted; a correction is a new
    record. Replay invariant: SUM(payments.amount_cents) == deals.paid_amount_cents.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        db.Index("ix_payments_deal_paid_at", "deal_id", "paid_at"),
        db.Index("ix_payments_client_paid_at", "client_id", "paid_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(db.Integer, db.ForeignKey("deals.id"), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(50), nullable=True)
    note = db.Column(db.String(500), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    deal = db.relationship("Deal", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "client_id": self.client_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "note": self.note,
            "paid_at": to_utc_z(self.paid_at),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class DailyClosing(db.Model):
    """
    Daily batch of CLOSED deals.

    One row per business date (unique). A deal joins exactly one closing and
    its daily_closing_id never changes afterwards.
    """
    __tablename__ = "daily_closings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_date = db.Column(db.Date, nullable=False, unique=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    closed_deals_count = db.Column(db.Integer, nullable=False, default=0)

    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    deals = db.relationship("Deal", backref="daily_closing", lazy=True, order_by="Deal.id")

    def to_dict(self, include_deals: bool = False) -> dict:
        data = {
            "id": self.id,
            "business_date": self.business_date.isoformat(),
            "total_amount_cents": self.total_amount_cents,
            "closed_deals_count": self.closed_deals_count,
            "closed_by_user_id": self.closed_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_deals:
            data["deals"] = [d.to_dict() for d in self.deals]
        return data
