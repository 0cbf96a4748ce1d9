# Overview: Threaded tests for stock, bargain and sequence safeguards against a file database.

"""
Concurrency tests.

These run against a file-backed SQLite database so every worker thread gets
its own connection and the write lock is actually contended.
"""

import os
import tempfile
import threading
from decimal import Decimal

import pytest

from localmart import create_app
from localmart.errors import InsufficientStock, InvalidState
from localmart.extensions import db
from localmart.models import Bargain, Order, Product, Store, User
from localmart.services import bargain_service, order_service
from localmart.services.auth_service import register_user

from conftest import NOW, PASSWORD


SHIPPING = {
    "name": "Asha Buyer",
    "phone": "9876543210",
    "street": "12 MG Road",
    "city": "Pune",
    "state": "Maharashtra",
    "pincode": "411001",
}


@pytest.fixture
def file_app():
    tmpdir = tempfile.TemporaryDirectory()
    db_path = os.path.join(tmpdir.name, "concurrency.db")
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "BCRYPT_ROUNDS": 4,
    })

    with app.app_context():
        db.drop_all()
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
    tmpdir.cleanup()


@pytest.fixture
def seeded(file_app):
    with file_app.app_context():
        buyer = register_user(name="Asha Buyer", email="buyer@example.com", password=PASSWORD, role="buyer")
        seller = register_user(name="Meena Seller", email="seller@example.com", password=PASSWORD, role="seller")

        store = Store(seller_id=seller.id, name="Meena Textiles", city="Pune", is_active=True)
        db.session.add(store)
        db.session.commit()

        product = Product(
            seller_id=seller.id,
            store_id=store.id,
            name="Handloom Saree",
            price=Decimal("1000"),
            min_price=Decimal("700"),
            stock=1,
            total_sold=0,
            is_bargainable=True,
            is_active=True,
        )
        db.session.add(product)
        db.session.commit()

        return {"buyer_id": buyer.id, "seller_id": seller.id, "product_id": product.id}


def _run_workers(app, targets):
    """Run each callable in its own thread and app context; collect results or exceptions."""
    results = []
    lock = threading.Lock()

    def worker(target):
        with app.app_context():
            try:
                outcome = target()
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=(t,)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_last_unit_cannot_be_sold_twice(file_app, seeded):
    def place():
        buyer = db.session.get(User, seeded["buyer_id"])
        order = order_service.create_order(
            buyer,
            items=[{"product_id": seeded["product_id"], "quantity": 1}],
            shipping_address=SHIPPING,
            payment_method="upi",
            now=NOW,
        )
        return order.order_number

    results = _run_workers(file_app, [place, place])

    placed = [r for r in results if isinstance(r, str)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(placed) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientStock)

    with file_app.app_context():
        product = db.session.get(Product, seeded["product_id"])
        assert product.stock == 0
        assert product.total_sold == 1
        assert db.session.query(Order).count() == 1


def test_accept_and_reject_race(file_app, seeded):
    with file_app.app_context():
        buyer = db.session.get(User, seeded["buyer_id"])
        bargain_id = bargain_service.propose(
            buyer, product_id=seeded["product_id"], proposed_price="800", now=NOW
        ).id

    def respond(action):
        def _respond():
            seller = db.session.get(User, seeded["seller_id"])
            return bargain_service.respond(seller, bargain_id, action=action, now=NOW).status
        return _respond

    results = _run_workers(file_app, [respond("accept"), respond("reject")])

    succeeded = [r for r in results if isinstance(r, str)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidState)

    with file_app.app_context():
        assert db.session.get(Bargain, bargain_id).status == succeeded[0]


def test_order_numbers_unique_under_load(file_app, seeded):
    with file_app.app_context():
        product = db.session.get(Product, seeded["product_id"])
        product.stock = 20
        db.session.commit()

    def place():
        buyer = db.session.get(User, seeded["buyer_id"])
        return order_service.create_order(
            buyer,
            items=[{"product_id": seeded["product_id"]}],
            shipping_address=SHIPPING,
            payment_method="cod",
            now=NOW,
        ).order_number

    results = _run_workers(file_app, [place] * 8)

    assert not [r for r in results if isinstance(r, Exception)]
    assert len(set(results)) == 8

    with file_app.app_context():
        assert db.session.get(Product, seeded["product_id"]).stock == 12
