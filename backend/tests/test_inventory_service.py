"""
Inventory ledger tests.

Verifies:
- IN/OUT movements keep stock == SUM(IN) - SUM(OUT)
- An OUT larger than stock changes nothing and writes no movement
- Product create/update rules (SKU uniqueness, stock not writable)
- Derived stock reports
"""

from datetime import timedelta

import pytest

from dealflow.errors import (
    AuthorizationError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from dealflow.extensions import db
from dealflow.models import InventoryMovement, MOVEMENT_IN, MOVEMENT_OUT
from dealflow.services import inventory_service
from dealflow.time_utils import utcnow


# =============================================================================
# MOVEMENTS
# =============================================================================


class TestRecordMovement:

    def test_in_then_out(self, admin, product_a):
        inventory_service.record_movement(admin, product_a.id, MOVEMENT_IN, 10)
        inventory_service.record_movement(admin, product_a.id, MOVEMENT_OUT, 4, note="sample")

        assert inventory_service.get_stock(product_a.id) == 6
        assert inventory_service.replay_stock(product_a.id) == 6
        assert inventory_service.verify_stock(product_a.id)["consistent"] is True

    def test_out_exact_stock_reaches_zero(self, admin, product_a, stock_in):
        stock_in(product_a, 3)
        inventory_service.record_movement(admin, product_a.id, MOVEMENT_OUT, 3)
        assert inventory_service.get_stock(product_a.id) == 0

    def test_out_beyond_stock_changes_nothing(self, admin, product_a, stock_in):
        stock_in(product_a, 5)

        with pytest.raises(InsufficientStockError) as exc:
            inventory_service.record_movement(admin, product_a.id, MOVEMENT_OUT, 6)

        assert exc.value.requested == 6
        assert exc.value.available == 5
        assert inventory_service.get_stock(product_a.id) == 5
        outs = db.session.query(InventoryMovement).filter_by(product_id=product_a.id, type=MOVEMENT_OUT).count()
        assert outs == 0

    def test_out_on_empty_product(self, admin, product_a):
        with pytest.raises(InsufficientStockError):
            inventory_service.record_movement(admin, product_a.id, MOVEMENT_OUT, 1)
        assert inventory_service.get_stock(product_a.id) == 0

    @pytest.mark.parametrize("quantity", [0, -1, "2.5", None])
    def test_quantity_must_be_positive_integer(self, admin, product_a, quantity):
        with pytest.raises(ValidationError):
            inventory_service.record_movement(admin, product_a.id, MOVEMENT_IN, quantity)
        assert db.session.query(InventoryMovement).count() == 0

    def test_unknown_type(self, admin, product_a):
        with pytest.raises(ValidationError):
            inventory_service.record_movement(admin, product_a.id, "ADJUST", 1)

    def test_unknown_product(self, admin, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.record_movement(admin, 999999, MOVEMENT_IN, 1)

    def test_inactive_product(self, admin, product_a):
        product_a.is_active = False
        db.session.commit()
        with pytest.raises(ValidationError):
            inventory_service.record_movement(admin, product_a.id, MOVEMENT_IN, 1)

    def test_accountant_cannot_move_stock(self, accountant, product_a):
        with pytest.raises(AuthorizationError):
            inventory_service.record_movement(accountant, product_a.id, MOVEMENT_IN, 1)

    def test_warehouse_can_receive(self, warehouse, product_a):
        movement = inventory_service.record_movement(warehouse, product_a.id, MOVEMENT_IN, 2)
        assert movement.created_by_user_id == warehouse.user_id

    def test_list_movements_newest_first(self, admin, product_a, stock_in):
        stock_in(product_a, 5)
        inventory_service.record_movement(admin, product_a.id, MOVEMENT_OUT, 2)
        movements = inventory_service.list_movements(product_id=product_a.id)
        assert [m.type for m in movements] == [MOVEMENT_OUT, MOVEMENT_IN]


class TestVerifyStock:

    def test_detects_tampered_counter(self, product_a, product_b, stock_in):
        stock_in(product_a, 5)
        stock_in(product_b, 2)
        product_a.stock = 7
        db.session.commit()

        mismatches = inventory_service.verify_all_stock()
        assert [m["product_id"] for m in mismatches] == [product_a.id]
        assert mismatches[0]["replayed"] == 5


# =============================================================================
# PRODUCTS
# =============================================================================


class TestProducts:

    def test_create_product(self, admin, db_session):
        product = inventory_service.create_product(
            admin, {"sku": "C-001", "name": "Cable", "sale_price_cents": 250, "min_stock": 3}
        )
        assert product.id is not None
        assert product.stock == 0
        assert product.is_active is True

    def test_duplicate_sku(self, admin, product_a):
        with pytest.raises(ConflictError):
            inventory_service.create_product(admin, {"sku": product_a.sku, "name": "Other"})

    def test_stock_not_writable(self, admin, db_session):
        with pytest.raises(ValidationError):
            inventory_service.create_product(admin, {"sku": "C-002", "name": "Cable", "stock": 100})

    def test_missing_required_fields(self, admin, db_session):
        with pytest.raises(ValidationError):
            inventory_service.create_product(admin, {"name": "No sku"})

    def test_negative_price(self, admin, db_session):
        with pytest.raises(ValidationError):
            inventory_service.create_product(admin, {"sku": "C-003", "name": "x", "purchase_price_cents": -1})

    def test_update_sku_conflict(self, admin, product_a, product_b):
        with pytest.raises(ConflictError):
            inventory_service.update_product(admin, product_b.id, {"sku": product_a.sku})

    def test_update_fields(self, admin, product_a):
        product = inventory_service.update_product(admin, product_a.id, {"name": "Anchor bolt M8", "min_stock": 10})
        assert product.name == "Anchor bolt M8"
        assert product.min_stock == 10

    def test_manager_cannot_manage_products(self, manager, db_session):
        with pytest.raises(AuthorizationError):
            inventory_service.create_product(manager, {"sku": "C-004", "name": "x"})


# =============================================================================
# REPORTS
# =============================================================================


class TestReports:

    def test_below_min_stock(self, admin, product_a, product_b, stock_in):
        inventory_service.update_product(admin, product_a.id, {"min_stock": 5})
        inventory_service.update_product(admin, product_b.id, {"min_stock": 1})
        stock_in(product_a, 2)
        stock_in(product_b, 2)

        assert [p.id for p in inventory_service.below_min_stock()] == [product_a.id]

    def test_dead_stock(self, admin, product_a, product_b, stock_in):
        stock_in(product_a, 5)
        stock_in(product_b, 5)
        inventory_service.record_movement(admin, product_b.id, MOVEMENT_OUT, 1)

        dead = inventory_service.dead_stock(days=30)
        assert [p.id for p in dead] == [product_a.id]

        # Looking from far in the future, the old OUT no longer counts
        later = utcnow() + timedelta(days=60)
        dead_later = inventory_service.dead_stock(days=30, now=later)
        assert {p.id for p in dead_later} == {product_a.id, product_b.id}

    def test_top_selling(self, admin, product_a, product_b, stock_in):
        stock_in(product_a, 10)
        stock_in(product_b, 10)
        inventory_service.record_movement(admin, product_a.id, MOVEMENT_OUT, 2)
        inventory_service.record_movement(admin, product_b.id, MOVEMENT_OUT, 7)

        rows = inventory_service.top_selling(limit=5)
        assert [(r["product"]["id"], r["sold_qty"]) for r in rows] == [(product_b.id, 7), (product_a.id, 2)]
