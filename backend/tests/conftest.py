"""
Pytest fixtures for dealflow backend tests.

Provides the test database, directory fixtures (users per role, a client,
products) and a Workflow helper that drives a deal to a given status.
"""

import pytest

from dealflow import create_app
from dealflow.extensions import db
from dealflow.models import Product, MOVEMENT_IN
from dealflow.permissions import Actor
from dealflow.services import deal_service, directory_service, inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _actor(username: str, role: str) -> Actor:
    user = directory_service.create_user(username=username, full_name=username.title(), role=role)
    return Actor.from_user(user)


@pytest.fixture(scope='function')
def admin(db_session):
    return _actor("admin", "ADMIN")


@pytest.fixture(scope='function')
def manager(db_session):
    return _actor("manager", "MANAGER")


@pytest.fixture(scope='function')
def other_manager(db_session):
    return _actor("manager2", "MANAGER")


@pytest.fixture(scope='function')
def accountant(db_session):
    return _actor("accountant", "ACCOUNTANT")


@pytest.fixture(scope='function')
def warehouse(db_session):
    return _actor("warehouse", "WAREHOUSE")


@pytest.fixture(scope='function')
def shipper(db_session):
    return _actor("shipper", "WAREHOUSE_MANAGER")


@pytest.fixture(scope='function')
def customer(db_session, manager):
    """Client record (named so it does not clash with a Flask test client)."""
    return directory_service.create_client(company_name="Acme Trading", manager_id=manager.user_id)


def _product(sku: str, name: str, **kw) -> Product:
    product = Product(sku=sku, name=name, **kw)
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture(scope='function')
def product_a(db_session):
    return _product("A-001", "Anchor bolt", sale_price_cents=100)


@pytest.fixture(scope='function')
def product_b(db_session):
    return _product("B-001", "Bracket", sale_price_cents=50)


@pytest.fixture(scope='function')
def stock_in(admin):
    """Receive stock through the ledger so movements and counter agree."""
    def _receive(product, quantity):
        return inventory_service.record_movement(admin, product.id, MOVEMENT_IN, quantity)
    return _receive


class Workflow:
    """Drives deals through the happy path with the right actor at each step."""

    def __init__(self, admin, manager, accountant, warehouse, shipper, customer, products):
        self.admin = admin
        self.manager = manager
        self.accountant = accountant
        self.warehouse = warehouse
        self.shipper = shipper
        self.customer = customer
        self.products = products

    def create(self, **kw):
        items = kw.pop("items", None) or [{"product_id": p.id} for p in self.products]
        return deal_service.create_deal(self.manager, client_id=self.customer.id, items=items, **kw)

    def stock_confirmed(self, **kw):
        deal = self.create(**kw)
        deal_service.start_work(self.manager, deal.id)
        deal_service.request_stock_confirmation(self.manager, deal.id)
        deal_service.submit_warehouse_response(
            self.warehouse,
            deal.id,
            [{"deal_item_id": item.id, "comment": "in stock"} for item in deal.items],
        )
        return deal

    def priced(self, quantities=(5, 3), prices=(100, 50), discount_cents=20,
               payment_type="DEBT", paid_amount_cents=0, **kw):
        deal = self.stock_confirmed(**kw)
        deal_service.set_item_quantities(
            self.manager,
            deal.id,
            items=[
                {"deal_item_id": item.id, "requested_qty": qty, "price_cents": price}
                for item, qty, price in zip(deal.items, quantities, prices)
            ],
            discount_cents=discount_cents,
            payment_type=payment_type,
            paid_amount_cents=paid_amount_cents,
            due_date="2026-12-31T00:00:00Z",
        )
        return deal

    def ready_for_shipment(self, **kw):
        deal = self.priced(**kw)
        deal_service.approve_finance(self.accountant, deal.id)
        deal_service.approve_admin(self.admin, deal.id)
        return deal

    def shipped(self, **kw):
        deal = self.ready_for_shipment(**kw)
        deal_service.submit_shipment(self.shipper, deal.id, **_shipment_fields())
        return deal

    def closed(self, **kw):
        deal = self.shipped(**kw)
        deal_service.close(self.admin, deal.id)
        return deal


def _shipment_fields(**overrides) -> dict:
    fields = {
        "vehicle_type": "truck",
        "vehicle_number": "AB 1234",
        "driver_name": "Ivan Driver",
        "departure_time": "2026-10-19T08:00:00Z",
        "delivery_note_number": "DN-0001",
        "comment": None,
    }
    fields.update(overrides)
    return fields


@pytest.fixture(scope='function')
def shipment_fields():
    return _shipment_fields


@pytest.fixture(scope='function')
def workflow(admin, manager, accountant, warehouse, shipper, customer, product_a, product_b):
    return Workflow(admin, manager, accountant, warehouse, shipper, customer, [product_a, product_b])
