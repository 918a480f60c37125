"""
Concurrency tests against a file-backed SQLite database.

Verifies:
- Two concurrent OUT movements can never drive stock below zero
- Two concurrent daily closings never count a deal twice
"""

import threading

import pytest

from dealflow import create_app
from dealflow.errors import InsufficientStockError
from dealflow.extensions import db
from dealflow.models import Client, DailyClosing, Deal, Product, MOVEMENT_IN, MOVEMENT_OUT
from dealflow.permissions import Actor
from dealflow.services import closing_service, directory_service, inventory_service


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'RETRY_BACKOFF_BASE': 0,
    })
    with app.app_context():
        db.create_all()
        user = directory_service.create_user(username="admin", full_name="Admin", role="ADMIN")
        app.config['TEST_ACTOR'] = Actor.from_user(user)

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_parallel(app, target, args_list):
    """Start one thread per args tuple at the same moment; collect results or errors."""
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(args_list))

    def worker(*args):
        with app.app_context():
            try:
                barrier.wait()
                value = target(*args)
                with lock:
                    results.append(("ok", value))
            except Exception as exc:
                with lock:
                    results.append(("error", exc))
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=args) for args in args_list]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class TestConcurrentStock:

    def test_parallel_out_never_oversells(self, file_app):
        actor = file_app.config['TEST_ACTOR']
        with file_app.app_context():
            product = Product(sku="CONCUR-1", name="Concurrent product")
            db.session.add(product)
            db.session.commit()
            product_id = product.id
            inventory_service.record_movement(actor, product_id, MOVEMENT_IN, 10)

        def take_six():
            movement = inventory_service.record_movement(actor, product_id, MOVEMENT_OUT, 6)
            return movement.id

        results = _run_parallel(file_app, take_six, [(), ()])

        outcomes = sorted(kind for kind, _ in results)
        assert outcomes == ["error", "ok"]
        errors = [value for kind, value in results if kind == "error"]
        assert isinstance(errors[0], InsufficientStockError)

        with file_app.app_context():
            assert inventory_service.get_stock(product_id) == 4
            assert inventory_service.verify_stock(product_id)["consistent"] is True


class TestConcurrentClosing:

    def test_parallel_close_day_counts_each_deal_once(self, file_app):
        actor = file_app.config['TEST_ACTOR']
        with file_app.app_context():
            client = Client(company_name="Parallel Ltd")
            db.session.add(client)
            db.session.flush()
            for n in range(5):
                db.session.add(Deal(
                    title=f"Closed {n}",
                    client_id=client.id,
                    manager_id=actor.user_id,
                    status="CLOSED",
                    amount_cents=100,
                ))
            db.session.commit()

        def run_closing():
            closing = closing_service.close_day(actor)
            return closing.id if closing else None

        results = _run_parallel(file_app, run_closing, [(), ()])

        assert [kind for kind, _ in results] == ["ok", "ok"]
        assert len({value for _, value in results}) == 1

        with file_app.app_context():
            closings = db.session.query(DailyClosing).all()
            assert len(closings) == 1
            assert closings[0].closed_deals_count == 5
            assert closings[0].total_amount_cents == 500
            assert db.session.query(Deal).filter(Deal.daily_closing_id.is_(None)).count() == 0
