from __future__ import annotations

from ..extensions import db
from dealflow.time_utils import to_utc_z


class Deal(db.Model):
    """
    One sales transaction moving through the workflow.

    WHY amounts live on the deal:
    - amount_cents is computed from items minus discount when quantities are set
    - paid_amount_cents / payment_status are recomputed from Payment rows
      inside the same transaction as every payment insert
    Status changes go through lifecycle_service only.
    """
    __tablename__ = "deals"
    __table_args__ = (
        db.Index("ix_deals_status_archived", "status", "is_archived"),
        db.Index("ix_deals_client_status", "client_id", "status"),
        db.Index("ix_deals_closing_status", "daily_closing_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    contract_id = db.Column(db.Integer, db.ForeignKey("contracts.id"), nullable=True)

    status = db.Column(db.String(32), nullable=False, default="NEW", index=True)

    # Money (all amounts in cents)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID", index=True)  # UNPAID, PARTIAL, PAID
    payment_type = db.Column(db.String(16), nullable=False, default="FULL")  # FULL, PARTIAL, DEBT
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    terms = db.Column(db.Text, nullable=True)

    # Sub-flag of STOCK_CONFIRMED: set once the manager priced every item
    quantities_finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Active view only; full history lives in deal_status_changes
    hold_reason = db.Column(db.String(500), nullable=True)
    rejection_reason = db.Column(db.String(500), nullable=True)

    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)

    # Set once by closing_service.close_day(), never changed afterwards
    daily_closing_id = db.Column(db.Integer, db.ForeignKey("daily_closings.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client")
    manager = db.relationship("User", foreign_keys=[manager_id])
    contract = db.relationship("Contract")
    items = db.relationship(
        "DealItem",
        backref="deal",
        cascade="all, delete-orphan",
        order_by="DealItem.id",
    )
    status_changes = db.relationship(
        "DealStatusChange",
        backref="deal",
        cascade="all, delete-orphan",
        order_by="DealStatusChange.id",
    )
    shipment = db.relationship("Shipment", backref="deal", uselist=False, cascade="all, delete-orphan")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def quantities_finalized(self) -> bool:
        return self.quantities_finalized_at is not None

    @property
    def debt_cents(self) -> int:
        return max(0, self.amount_cents - self.paid_amount_cents)

    def __repr__(self) -> str:
        return f"<Deal id={self.id} status={self.status} amount_cents={self.amount_cents}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "client_id": self.client_id,
            "manager_id": self.manager_id,
            "contract_id": self.contract_id,
            "status": self.status,
            "amount_cents": self.amount_cents,
            "discount_cents": self.discount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "debt_cents": self.debt_cents,
            "payment_status": self.payment_status,
            "payment_type": self.payment_type,
            "due_date": to_utc_z(self.due_date) if self.due_date else None,
            "terms": self.terms,
            "quantities_finalized": self.quantities_finalized,
            "hold_reason": self.hold_reason,
            "rejection_reason": self.rejection_reason,
            "is_archived": self.is_archived,
            "daily_closing_id": self.daily_closing_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class DealItem(db.Model):
    """Requested product line on a deal."""
    __tablename__ = "deal_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(db.Integer, db.ForeignKey("deals.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Nullable until the manager sets quantities after the warehouse response
    requested_qty = db.Column(db.Integer, nullable=True)
    price_cents = db.Column(db.Integer, nullable=True)

    request_comment = db.Column(db.String(500), nullable=True)
    warehouse_comment = db.Column(db.String(500), nullable=True)
    confirmed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return (self.requested_qty or 0) * (self.price_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "product_id": self.product_id,
            "requested_qty": self.requested_qty,
            "price_cents": self.price_cents,
            "line_total_cents": self.line_total_cents,
            "request_comment": self.request_comment,
            "warehouse_comment": self.warehouse_comment,
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "created_at": to_utc_z(self.created_at),
        }


class DealStatusChange(db.Model):
    """
    Status history of a deal.

    IMMUTABLE: Append-only, written in the same transaction as the change.
    Keeps hold and rejection reasons after the deal's active fields are cleared.
    """
    __tablename__ = "deal_status_changes"
    __table_args__ = (
        db.Index("ix_deal_status_changes_deal_occurred", "deal_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(db.Integer, db.ForeignKey("deals.id"), nullable=False)
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=False)
    reason = db.Column(db.String(500), nullable=True)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "reason": self.reason,
            "changed_by_user_id": self.changed_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class Shipment(db.Model):
    __tablename__ = "shipments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(db.Integer, db.ForeignKey("deals.id"), nullable=False, unique=True)

    vehicle_type = db.Column(db.String(64), nullable=False)
    vehicle_number = db.Column(db.String(64), nullable=False)
    driver_name = db.Column(db.String(255), nullable=False)
    departure_time = db.Column(db.DateTime(timezone=True), nullable=False)
    delivery_note_number = db.Column(db.String(64), nullable=False)
    comment = db.Column(db.String(500), nullable=True)

    shipped_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "vehicle_type": self.vehicle_type,
            "vehicle_number": self.vehicle_number,
            "driver_name": self.driver_name,
            "departure_time": to_utc_z(self.departure_time),
            "delivery_note_number": self.delivery_note_number,
            "comment": self.comment,
            "shipped_by_user_id": self.shipped_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
