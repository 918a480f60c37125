# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

"""
Dealflow Inventory Invariants (authoritative)

Stock model:
- Every stock change is an InventoryMovement row (IN or OUT, quantity > 0).
- Movements are append-only. Corrections are new offsetting movements.
- Product.stock is a denormalized counter kept in the same transaction as
  the movement that changed it. Replay: stock == SUM(IN) - SUM(OUT).

Non-negative guard:
- OUT is ONE conditional statement:
      UPDATE products SET stock = stock - :q WHERE id = :id AND stock >= :q
- Zero rows updated means the stock was not there at that instant. The
  movement is NOT written and InsufficientStockError is raised.
- Never read stock, compare in Python, then write: two concurrent OUTs would
  both pass the check.

Time:
- All internal datetimes are UTC-naive; reports take an optional cutoff.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func, case, select, update

from ..extensions import db
from ..models import Product, InventoryMovement, MOVEMENT_IN, MOVEMENT_OUT
from ..errors import NotFoundError, ValidationError, ConflictError, InsufficientStockError
from ..permissions import Actor, authorize
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    require_positive_int,
    require_choice,
    optional_text,
)
from dealflow.time_utils import utcnow
from .concurrency import begin_write, run_with_retry
from . import audit_service


MOVEMENT_TYPES = {MOVEMENT_IN, MOVEMENT_OUT}

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "unit",
        "min_stock",
        "purchase_price_cents",
        "sale_price_cents",
        "is_active",
    },
    required_on_create={"sku", "name"},
)


def _get_product(product_id: int, *, require_active: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    if require_active and not product.is_active:
        raise ValidationError(f"Product {product_id} is inactive")
    return product


def require_active_product(product_id: int) -> Product:
    return _get_product(product_id, require_active=True)


def record_movement_locked(
    product_id: int,
    movement_type: str,
    quantity,
    *,
    deal_id: int | None = None,
    note: str | None = None,
    user_id: int | None = None,
) -> InventoryMovement:
    """
    Apply one movement inside the caller's transaction.

    Does NOT begin or commit; submit_shipment composes several of these into
    one unit of work.
    """
    movement_type = require_choice(movement_type, "type", MOVEMENT_TYPES)
    quantity = require_positive_int(quantity, "quantity")
    note = optional_text(note, "note", max_length=255)
    product = _get_product(product_id, require_active=True)

    if movement_type == MOVEMENT_IN:
        stmt = (
            update(Product)
            .where(Product.id == product.id)
            .values(stock=Product.stock + quantity)
        )
    else:
        stmt = (
            update(Product)
            .where(Product.id == product.id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
        )

    result = db.session.execute(stmt, execution_options={"synchronize_session": False})
    if result.rowcount == 0:
        available = db.session.query(Product.stock).filter(Product.id == product.id).scalar()
        raise InsufficientStockError(
            product.id,
            requested=quantity,
            available=int(available or 0),
            product_name=product.name,
        )

    movement = InventoryMovement(
        product_id=product.id,
        type=movement_type,
        quantity=quantity,
        deal_id=deal_id,
        note=note,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()

    # The counter was changed behind the ORM's back
    db.session.get(Product, product.id, populate_existing=True)
    return movement


def record_movement(
    actor: Actor,
    product_id: int,
    movement_type: str,
    quantity,
    *,
    deal_id: int | None = None,
    note: str | None = None,
) -> InventoryMovement:
    """
    Record a single stock movement as its own unit of work.

    Raises:
        InsufficientStockError: OUT for more than the current stock. Stock
            is unchanged and no movement row exists afterwards.
        NotFoundError: Unknown product.
        ValidationError: Inactive product, bad type or quantity.
    """
    authorize(actor, "record_movement")

    def _op():
        begin_write()
        movement = record_movement_locked(
            product_id,
            movement_type,
            quantity,
            deal_id=deal_id,
            note=note,
            user_id=actor.user_id,
        )
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    audit_service.record(
        actor.user_id,
        f"inventory.{movement.type.lower()}",
        "product",
        movement.product_id,
        after=movement.to_dict(),
    )
    return movement


def get_stock(product_id: int) -> int:
    return _get_product(product_id).stock


def replay_stock(product_id: int) -> int:
    """Stock rebuilt from the movement log alone."""
    signed = case(
        (InventoryMovement.type == MOVEMENT_IN, InventoryMovement.quantity),
        else_=-InventoryMovement.quantity,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(InventoryMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def verify_stock(product_id: int) -> dict:
    product = _get_product(product_id)
    replayed = replay_stock(product_id)
    return {
        "product_id": product.id,
        "sku": product.sku,
        "stock": product.stock,
        "replayed": replayed,
        "consistent": product.stock == replayed,
    }


def verify_all_stock() -> list[dict]:
    """Every product whose counter disagrees with its movements."""
    product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]
    results = [verify_stock(pid) for pid in product_ids]
    return [r for r in results if not r["consistent"]]


def list_movements(
    *,
    product_id: int | None = None,
    deal_id: int | None = None,
    limit: int = 200,
) -> list[InventoryMovement]:
    query = db.session.query(InventoryMovement)
    if product_id is not None:
        query = query.filter(InventoryMovement.product_id == product_id)
    if deal_id is not None:
        query = query.filter(InventoryMovement.deal_id == deal_id)
    return (
        query.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        .limit(limit)
        .all()
    )


# -- products --

def _ensure_sku_free(sku: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("SKU already exists.", details={"sku": sku})


def create_product(actor: Actor, payload: dict) -> Product:
    """
    Create a product from a caller payload.

    Stock is not writable here; it starts at 0 and moves through IN movements.
    """
    authorize(actor, "manage_products")
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    def _op():
        begin_write()
        _ensure_sku_free(patch["sku"])
        product = Product(**patch)
        db.session.add(product)
        db.session.commit()
        return product

    product = run_with_retry(_op)
    audit_service.record(actor.user_id, "product.created", "product", product.id, after=product.to_dict())
    return product


def update_product(actor: Actor, product_id: int, payload: dict) -> Product:
    authorize(actor, "manage_products")
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    before = {}

    def _op():
        begin_write()
        product = _get_product(product_id)
        before.update(product.to_dict())
        if "sku" in patch and patch["sku"] != product.sku:
            _ensure_sku_free(patch["sku"], exclude_id=product.id)
        for key, value in patch.items():
            setattr(product, key, value)
        db.session.commit()
        return product

    product = run_with_retry(_op)
    audit_service.record(
        actor.user_id, "product.updated", "product", product.id, before=before, after=product.to_dict()
    )
    return product


# -- derived reports (read-only) --

def below_min_stock() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock < Product.min_stock)
        .order_by(Product.name)
        .all()
    )


def dead_stock(days: int | None = None, *, now=None) -> list[Product]:
    """Active products with stock on hand and no OUT movement in the last `days`."""
    if days is None:
        days = current_app.config.get("DEAD_STOCK_DAYS", 90)
    cutoff = (now or utcnow()) - timedelta(days=days)

    recent_out = select(InventoryMovement.product_id).where(
        InventoryMovement.type == MOVEMENT_OUT,
        InventoryMovement.created_at >= cutoff,
    )
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.stock > 0,
            Product.id.notin_(recent_out),
        )
        .order_by(Product.name)
        .all()
    )


def top_selling(limit: int = 10, *, since=None) -> list[dict]:
    sold = func.sum(InventoryMovement.quantity).label("sold")
    query = (
        db.session.query(Product, sold)
        .join(InventoryMovement, InventoryMovement.product_id == Product.id)
        .filter(InventoryMovement.type == MOVEMENT_OUT)
    )
    if since is not None:
        query = query.filter(InventoryMovement.created_at >= since)
    rows = query.group_by(Product.id).order_by(sold.desc(), Product.id).limit(limit).all()
    return [{"product": p.to_dict(), "sold_qty": int(qty)} for p, qty in rows]
