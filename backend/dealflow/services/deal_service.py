# Overview: Workflow orchestrator; every deal operation enters here.

"""
Deal Workflow Orchestrator

================================================================================
PURPOSE: Drive a deal from client request to shipment and closing
================================================================================

ONE REQUEST, ONE UNIT OF WORK:
    1. authorize(actor, operation)     - once, before anything is read for write
    2. load the deal in the caller's scope, write-locked
    3. check the transition table       - lifecycle_service
    4. mutate deal / items / stock / payments
    5. commit, or roll back everything on any error
    6. hand a before/after entry to the audit recorder (best-effort)

Stock and payments are changed only through the *_locked helpers of
inventory_service and payment_service, which never commit on their own.

ITEM FREEZE:
    Items can be added while NEW, IN_PROGRESS or WAITING_STOCK_CONFIRMATION and
    removed until quantities are finalized in STOCK_CONFIRMED. After that
    they are frozen until the deal is rejected and reopened.
================================================================================
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Deal, DealItem, DealStatusChange, Shipment, MOVEMENT_OUT
from ..errors import AuthorizationError, ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from ..permissions import Actor, authorize, is_admin
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    require_amount_cents,
    require_choice,
    require_positive_int,
    require_text,
    optional_text,
    coerce_int,
    coerce_datetime,
)
from dealflow.time_utils import utcnow
from .concurrency import begin_write, run_with_retry
from .deal_scope import require_deal, scoped_deals_query
from . import audit_service
from . import directory_service
from . import inventory_service
from . import lifecycle_service as lifecycle
from . import payment_service


DEAL_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"title", "terms", "contract_id", "manager_id", "due_date"},
)

FROZEN_ITEMS_MESSAGE = "Deal items are frozen in status {status}"


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _run_deal_op(actor: Actor, deal_id: int, action: str, mutate) -> Deal:
    """
    Shared unit of work for operations on an existing deal.

    The caller has already authorized. mutate(deal) runs with the deal
    write-locked and must not commit.
    """
    snapshot = {}

    def _op():
        begin_write()
        deal = require_deal(actor, deal_id, lock=True)
        snapshot["before"] = deal.to_dict()
        mutate(deal)
        db.session.commit()
        return deal

    deal = run_with_retry(_op)
    audit_service.record(
        actor.user_id,
        action,
        "deal",
        deal.id,
        before=snapshot.get("before"),
        after=deal.to_dict(),
    )
    return deal


def _transition_op(actor: Actor, deal_id: int, operation: str, *, reason: str | None = None) -> Deal:
    authorize(actor, operation)

    def _mutate(deal: Deal) -> None:
        lifecycle.apply_transition(deal, operation, changed_by_user_id=actor.user_id, reason=reason)

    return _run_deal_op(actor, deal_id, f"deal.{operation}", _mutate)


def _find_item(deal: Deal, item_id) -> DealItem:
    item_id = coerce_int(item_id, "deal_item_id")
    for item in deal.items:
        if item.id == item_id:
            return item
    raise NotFoundError(
        f"Item {item_id} does not belong to deal {deal.id}",
        details={"deal_id": deal.id, "deal_item_id": item_id},
    )


def _items_removable(deal: Deal) -> bool:
    if deal.status in lifecycle.ITEM_EDITABLE_STATUSES:
        return True
    return deal.status == lifecycle.STOCK_CONFIRMED and not deal.quantities_finalized


def _recalculate_amount(deal: Deal) -> None:
    gross = sum(item.line_total_cents for item in deal.items)
    deal.amount_cents = max(0, gross - deal.discount_cents)
    payment_service.recompute(deal)


def _require_owner(actor: Actor, deal: Deal) -> None:
    """Pricing and reopening belong to the deal's manager, whatever the caller can see."""
    if not is_admin(actor) and deal.manager_id != actor.user_id:
        raise AuthorizationError(
            f"Only the deal's manager may change deal {deal.id}",
            details={"deal_id": deal.id, "manager_id": deal.manager_id},
        )


def _require_list(value, field: str) -> list:
    if not isinstance(value, list) or not value:
        raise ValidationError(f"{field} must be a non-empty list")
    return value


# =============================================================================
# AUTHORING
# =============================================================================

def create_deal(
    actor: Actor,
    *,
    client_id: int,
    items: list[dict],
    payment_type: str = payment_service.PAYMENT_TYPE_FULL,
    discount_cents=0,
    title: str | None = None,
    contract_id: int | None = None,
    terms: str | None = None,
    due_date=None,
    manager_id: int | None = None,
) -> Deal:
    """
    Open a new deal for a client.

    Args:
        items: [{"product_id": int, "request_comment": str | None}, ...], at least one
        manager_id: only admins may open a deal on behalf of another manager

    Raises:
        ValidationError: no items, inactive product, bad payment type or discount
        NotFoundError: unknown product, client or contract
    """
    authorize(actor, "create_deal")
    items = _require_list(items, "items")
    payment_type = require_choice(payment_type, "payment_type", payment_service.VALID_PAYMENT_TYPES)
    discount_cents = require_amount_cents(discount_cents, "discount_cents")
    due_date = coerce_datetime(due_date, "due_date")
    terms = optional_text(terms, "terms", max_length=5000)

    if manager_id is not None and manager_id != actor.user_id and not is_admin(actor):
        raise AuthorizationError("Only admins may assign a deal to another manager")

    def _op():
        begin_write()
        client = directory_service.require_client(client_id)
        if contract_id is not None:
            directory_service.require_contract(contract_id, client.id)
        owner_id = actor.user_id
        if manager_id is not None:
            owner_id = directory_service.require_active_user(manager_id).id

        deal = Deal(
            title=require_text(title, "title") if title else f"Deal of {utcnow().date().isoformat()}",
            client_id=client.id,
            manager_id=owner_id,
            contract_id=contract_id,
            status=lifecycle.NEW,
            amount_cents=0,
            discount_cents=discount_cents,
            paid_amount_cents=0,
            payment_status=payment_service.PAYMENT_STATUS_UNPAID,
            payment_type=payment_type,
            due_date=due_date,
            terms=terms,
        )
        for entry in items:
            if not isinstance(entry, dict):
                raise ValidationError("Each item must be an object")
            product = inventory_service.require_active_product(
                coerce_int(entry.get("product_id"), "product_id")
            )
            deal.items.append(
                DealItem(
                    product_id=product.id,
                    request_comment=optional_text(entry.get("request_comment"), "request_comment"),
                )
            )
        lifecycle.record_initial_status(deal, changed_by_user_id=actor.user_id)
        db.session.add(deal)
        db.session.commit()
        return deal

    deal = run_with_retry(_op)
    audit_service.record(actor.user_id, "deal.created", "deal", deal.id, after=deal.to_dict(include_items=True))
    return deal


def update_deal(actor: Actor, deal_id: int, changes: dict) -> Deal:
    """Edit deal header fields. Reassigning the manager is admin-only."""
    authorize(actor, "update_deal")
    patch = validate_payload(model=Deal, payload=changes, policy=DEAL_UPDATE_POLICY, partial=True)
    if "manager_id" in patch and not is_admin(actor):
        raise AuthorizationError("Only admins may reassign a deal")

    def _mutate(deal: Deal) -> None:
        if deal.status in (lifecycle.CLOSED, lifecycle.CANCELED):
            raise ValidationError(f"Cannot edit a {deal.status} deal")
        if "manager_id" in patch:
            directory_service.require_active_user(patch["manager_id"])
        if patch.get("contract_id") is not None:
            directory_service.require_contract(patch["contract_id"], deal.client_id)
        for key, value in patch.items():
            setattr(deal, key, value)

    return _run_deal_op(actor, deal_id, "deal.updated", _mutate)


def add_item(actor: Actor, deal_id: int, product_id: int, request_comment: str | None = None) -> DealItem:
    authorize(actor, "add_item")
    added = []

    def _mutate(deal: Deal) -> None:
        # A retried attempt starts over
        added.clear()
        if deal.status not in lifecycle.ITEM_EDITABLE_STATUSES:
            raise ValidationError(FROZEN_ITEMS_MESSAGE.format(status=deal.status))
        product = inventory_service.require_active_product(coerce_int(product_id, "product_id"))
        item = DealItem(
            product_id=product.id,
            request_comment=optional_text(request_comment, "request_comment"),
        )
        deal.items.append(item)
        added.append(item)

    _run_deal_op(actor, deal_id, "deal.item_added", _mutate)
    return added[0]


def remove_item(actor: Actor, deal_id: int, item_id: int) -> Deal:
    authorize(actor, "remove_item")

    def _mutate(deal: Deal) -> None:
        if not _items_removable(deal):
            raise ValidationError(FROZEN_ITEMS_MESSAGE.format(status=deal.status))
        item = _find_item(deal, item_id)
        if len(deal.items) == 1:
            raise ValidationError("A deal must keep at least one item")
        deal.items.remove(item)
        db.session.flush()
        _recalculate_amount(deal)

    return _run_deal_op(actor, deal_id, "deal.item_removed", _mutate)


# =============================================================================
# WORKFLOW TRANSITIONS
# =============================================================================

def start_work(actor: Actor, deal_id: int) -> Deal:
    return _transition_op(actor, deal_id, "start_work")


def request_stock_confirmation(actor: Actor, deal_id: int) -> Deal:
    authorize(actor, "request_stock_confirmation")

    def _mutate(deal: Deal) -> None:
        lifecycle.require_transition(deal, "request_stock_confirmation")
        if not deal.items:
            raise ValidationError("Deal has no items to confirm")
        lifecycle.apply_transition(deal, "request_stock_confirmation", changed_by_user_id=actor.user_id)

    return _run_deal_op(actor, deal_id, "deal.request_stock_confirmation", _mutate)


def submit_warehouse_response(actor: Actor, deal_id: int, items: list[dict]) -> Deal:
    """
    Attach the warehouse's answer to each listed item and confirm the deal.

    Every listed item must belong to the deal. The deal moves to
    STOCK_CONFIRMED in the same transaction; items left out of the answer
    stay unconfirmed.
    """
    authorize(actor, "submit_warehouse_response")
    items = _require_list(items, "items")

    def _mutate(deal: Deal) -> None:
        lifecycle.require_transition(deal, "confirm_stock")
        now = utcnow()
        for entry in items:
            if not isinstance(entry, dict):
                raise ValidationError("Each item must be an object")
            item = _find_item(deal, entry.get("deal_item_id"))
            item.warehouse_comment = optional_text(entry.get("comment"), "comment")
            item.confirmed_by_user_id = actor.user_id
            item.confirmed_at = now
        lifecycle.apply_transition(deal, "confirm_stock", changed_by_user_id=actor.user_id)

    return _run_deal_op(actor, deal_id, "deal.warehouse_response", _mutate)


def set_item_quantities(
    actor: Actor,
    deal_id: int,
    *,
    items: list[dict],
    discount_cents=None,
    payment_type: str | None = None,
    paid_amount_cents=None,
    due_date=None,
    terms: str | None = None,
) -> Deal:
    """
    Price the confirmed items and fix the payment terms.

    amount = SUM(qty * price) - discount. Any paid amount above what the deal
    already holds is written as a Payment, so SUM(payments) == paid amount
    stays true. Status stays STOCK_CONFIRMED; quantities_finalized_at is set.

    Raises:
        InvalidTransitionError: deal is not STOCK_CONFIRMED
        ValidationError: frozen items, negative amount, missing due date for
            PARTIAL/DEBT, paid above amount or below what is already recorded
    """
    authorize(actor, "set_item_quantities")
    items = _require_list(items, "items")
    if payment_type is not None:
        payment_type = require_choice(payment_type, "payment_type", payment_service.VALID_PAYMENT_TYPES)
    if discount_cents is not None:
        discount_cents = require_amount_cents(discount_cents, "discount_cents")
    if paid_amount_cents is not None:
        paid_amount_cents = require_amount_cents(paid_amount_cents, "paid_amount_cents")
    due_date = coerce_datetime(due_date, "due_date")
    terms = optional_text(terms, "terms", max_length=5000)

    def _mutate(deal: Deal) -> None:
        _require_owner(actor, deal)
        if deal.status != lifecycle.STOCK_CONFIRMED:
            raise InvalidTransitionError(
                deal.status,
                lifecycle.STOCK_CONFIRMED,
                message=f"Quantities can only be set while {lifecycle.STOCK_CONFIRMED}",
            )
        if deal.quantities_finalized:
            raise ValidationError(FROZEN_ITEMS_MESSAGE.format(status=deal.status))

        for entry in items:
            if not isinstance(entry, dict):
                raise ValidationError("Each item must be an object")
            item = _find_item(deal, entry.get("deal_item_id"))
            item.requested_qty = require_positive_int(entry.get("requested_qty"), "requested_qty")
            item.price_cents = require_amount_cents(entry.get("price_cents"), "price_cents")

        unpriced = [item.id for item in deal.items if item.requested_qty is None or item.price_cents is None]
        if unpriced:
            raise ValidationError("Every item needs a quantity and a price", details={"deal_item_ids": unpriced})

        discount = deal.discount_cents if discount_cents is None else discount_cents
        amount = sum(item.line_total_cents for item in deal.items) - discount
        if amount < 0:
            raise ValidationError("Discount exceeds the items total", details={"amount_cents": amount})

        new_payment_type = payment_type or deal.payment_type
        new_due_date = due_date or deal.due_date
        if new_payment_type != payment_service.PAYMENT_TYPE_FULL and new_due_date is None:
            raise ValidationError(f"due_date is required for {new_payment_type} payment")

        already_paid = payment_service.sum_payments(deal.id)
        if new_payment_type == payment_service.PAYMENT_TYPE_FULL:
            paid = amount
        elif paid_amount_cents is None:
            paid = already_paid
        else:
            paid = paid_amount_cents
        if paid > amount:
            raise ValidationError("paid_amount_cents cannot exceed the deal amount")
        if paid < already_paid:
            raise ValidationError(
                "paid_amount_cents is below the payments already recorded",
                details={"recorded_cents": already_paid},
            )

        deal.discount_cents = discount
        deal.amount_cents = amount
        deal.payment_type = new_payment_type
        deal.due_date = new_due_date
        if terms is not None:
            deal.terms = terms
        deal.quantities_finalized_at = utcnow()

        if paid > already_paid:
            payment_service.record_payment_locked(
                deal,
                paid - already_paid,
                note="Recorded with item quantities",
                user_id=actor.user_id,
            )
        payment_service.recompute(deal)

    return _run_deal_op(actor, deal_id, "deal.quantities_set", _mutate)


def approve_finance(actor: Actor, deal_id: int) -> Deal:
    authorize(actor, "approve_finance")

    def _mutate(deal: Deal) -> None:
        lifecycle.require_transition(deal, "approve_finance")
        if not deal.quantities_finalized:
            raise ValidationError("Quantities must be set before finance approval")
        lifecycle.apply_transition(deal, "approve_finance", changed_by_user_id=actor.user_id)

    return _run_deal_op(actor, deal_id, "deal.approve_finance", _mutate)


def reject_finance(actor: Actor, deal_id: int, reason: str) -> Deal:
    authorize(actor, "reject_finance")
    reason = require_text(reason, "reason", max_length=500)

    def _mutate(deal: Deal) -> None:
        lifecycle.apply_transition(deal, "reject_finance", changed_by_user_id=actor.user_id, reason=reason)
        deal.rejection_reason = reason

    return _run_deal_op(actor, deal_id, "deal.reject_finance", _mutate)


def reopen(actor: Actor, deal_id: int) -> Deal:
    """REJECTED -> IN_PROGRESS; the warehouse confirms and the manager prices again."""
    authorize(actor, "reopen")

    def _mutate(deal: Deal) -> None:
        _require_owner(actor, deal)
        lifecycle.apply_transition(deal, "reopen", changed_by_user_id=actor.user_id)
        deal.quantities_finalized_at = None
        deal.rejection_reason = None
        for item in deal.items:
            item.confirmed_at = None
            item.confirmed_by_user_id = None

    return _run_deal_op(actor, deal_id, "deal.reopen", _mutate)


def approve_admin(actor: Actor, deal_id: int) -> Deal:
    """FINANCE_APPROVED -> ADMIN_APPROVED -> READY_FOR_SHIPMENT in one transaction."""
    authorize(actor, "approve_admin")

    def _mutate(deal: Deal) -> None:
        lifecycle.apply_transition(deal, "approve_admin", changed_by_user_id=actor.user_id)
        lifecycle.apply_transition(deal, "mark_ready_for_shipment", changed_by_user_id=actor.user_id)

    return _run_deal_op(actor, deal_id, "deal.approve_admin", _mutate)


def submit_shipment(
    actor: Actor,
    deal_id: int,
    *,
    vehicle_type: str,
    vehicle_number: str,
    driver_name: str,
    departure_time,
    delivery_note_number: str,
    comment: str | None = None,
) -> Deal:
    """
    Ship the deal: Shipment row, one OUT movement per item, status SHIPPED.

    All or nothing: if any item lacks stock, InsufficientStockError rolls back
    the shipment, every movement already written and the status change.
    """
    authorize(actor, "submit_shipment")
    fields = {
        "vehicle_type": require_text(vehicle_type, "vehicle_type", max_length=64),
        "vehicle_number": require_text(vehicle_number, "vehicle_number", max_length=64),
        "driver_name": require_text(driver_name, "driver_name"),
        "delivery_note_number": require_text(delivery_note_number, "delivery_note_number", max_length=64),
        "comment": optional_text(comment, "comment"),
    }
    departure = coerce_datetime(departure_time, "departure_time")
    if departure is None:
        raise ValidationError("departure_time is required")

    def _mutate(deal: Deal) -> None:
        lifecycle.require_transition(deal, "submit_shipment")
        if deal.shipment is not None:
            raise ConflictError(f"Deal {deal.id} already has a shipment")

        deal.shipment = Shipment(departure_time=departure, shipped_by_user_id=actor.user_id, **fields)
        for item in deal.items:
            if not item.requested_qty:
                raise ValidationError(f"Item {item.id} has no quantity to ship")
            inventory_service.record_movement_locked(
                item.product_id,
                MOVEMENT_OUT,
                item.requested_qty,
                deal_id=deal.id,
                note=f"Shipment of deal {deal.id}",
                user_id=actor.user_id,
            )
        lifecycle.apply_transition(deal, "submit_shipment", changed_by_user_id=actor.user_id)

    deal = _run_deal_op(actor, deal_id, "deal.shipped", _mutate)
    current_app.logger.info("Deal %s shipped, delivery note %s", deal.id, fields["delivery_note_number"])
    return deal


def hold_shipment(actor: Actor, deal_id: int, reason: str) -> Deal:
    authorize(actor, "hold_shipment")
    reason = require_text(reason, "reason", max_length=500)

    def _mutate(deal: Deal) -> None:
        lifecycle.apply_transition(deal, "hold_shipment", changed_by_user_id=actor.user_id, reason=reason)
        deal.hold_reason = reason

    return _run_deal_op(actor, deal_id, "deal.hold_shipment", _mutate)


def release_shipment_hold(actor: Actor, deal_id: int) -> Deal:
    authorize(actor, "release_shipment_hold")

    def _mutate(deal: Deal) -> None:
        lifecycle.apply_transition(deal, "release_shipment_hold", changed_by_user_id=actor.user_id)
        deal.hold_reason = None

    return _run_deal_op(actor, deal_id, "deal.release_shipment_hold", _mutate)


def close(actor: Actor, deal_id: int) -> Deal:
    return _transition_op(actor, deal_id, "close")


def cancel(actor: Actor, deal_id: int, reason: str | None = None) -> Deal:
    return _transition_op(actor, deal_id, "cancel", reason=optional_text(reason, "reason"))


def archive(actor: Actor, deal_id: int) -> Deal:
    """Hide the deal from listings, queues and debts. Status is untouched."""
    authorize(actor, "archive")

    def _mutate(deal: Deal) -> None:
        deal.is_archived = True

    return _run_deal_op(actor, deal_id, "deal.archived", _mutate)


# =============================================================================
# QUERIES
# =============================================================================

def get_deal(actor: Actor, deal_id: int) -> Deal:
    authorize(actor, "view_deals")
    return require_deal(actor, deal_id, include_archived=True)


def list_deals(
    actor: Actor,
    *,
    status: str | None = None,
    client_id: int | None = None,
    include_closed: bool = False,
    include_archived: bool = False,
    limit: int = 200,
) -> list[Deal]:
    authorize(actor, "view_deals")
    query = scoped_deals_query(actor, include_archived=include_archived)
    if status is not None:
        lifecycle.validate_status(status)
        query = query.filter(Deal.status == status)
    elif not include_closed:
        query = query.filter(Deal.status != lifecycle.CLOSED)
    if client_id is not None:
        query = query.filter(Deal.client_id == client_id)
    return query.order_by(Deal.created_at.desc(), Deal.id.desc()).limit(limit).all()


def stock_confirmation_queue(actor: Actor) -> list[Deal]:
    authorize(actor, "submit_warehouse_response")
    return (
        scoped_deals_query(actor)
        .filter(Deal.status == lifecycle.WAITING_STOCK_CONFIRMATION)
        .order_by(Deal.created_at, Deal.id)
        .all()
    )


def finance_queue(actor: Actor) -> list[dict]:
    """Priced deals waiting for finance, each with its client's open debt."""
    authorize(actor, "approve_finance")
    deals = (
        scoped_deals_query(actor)
        .filter(
            Deal.status == lifecycle.STOCK_CONFIRMED,
            Deal.quantities_finalized_at.isnot(None),
        )
        .order_by(Deal.quantities_finalized_at, Deal.id)
        .all()
    )
    debts: dict[int, int] = {}
    rows = []
    for deal in deals:
        if deal.client_id not in debts:
            debts[deal.client_id] = payment_service.client_total_debt(deal.client_id)
        rows.append({**deal.to_dict(include_items=True), "client_debt_cents": debts[deal.client_id]})
    return rows


def shipment_queue(actor: Actor) -> list[Deal]:
    authorize(actor, "submit_shipment")
    return (
        scoped_deals_query(actor)
        .filter(Deal.status.in_([lifecycle.READY_FOR_SHIPMENT, lifecycle.SHIPMENT_ON_HOLD]))
        .order_by(Deal.updated_at, Deal.id)
        .all()
    )


def deal_history(actor: Actor, deal_id: int) -> list[dict]:
    """Status changes and stock movements of a deal, newest first."""
    deal = get_deal(actor, deal_id)
    changes = (
        db.session.query(DealStatusChange)
        .filter(DealStatusChange.deal_id == deal.id)
        .all()
    )
    events = [
        {"kind": "status_change", "at": change.occurred_at, "id": change.id, "data": change.to_dict()}
        for change in changes
    ]
    events.extend(
        {"kind": "movement", "at": movement.created_at, "id": movement.id, "data": movement.to_dict()}
        for movement in inventory_service.list_movements(deal_id=deal.id, limit=1000)
    )
    events.sort(key=lambda e: (e["at"], e["kind"] == "status_change", e["id"]), reverse=True)
    return [{"kind": e["kind"], **e["data"]} for e in events]


def get_shipment(actor: Actor, deal_id: int) -> Shipment:
    deal = get_deal(actor, deal_id)
    if deal.shipment is None:
        raise NotFoundError(f"Deal {deal.id} has no shipment", details={"deal_id": deal.id})
    return deal.shipment
