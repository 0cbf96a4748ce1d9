"""
Pytest fixtures for LocalMart backend tests.

Provides an in-memory database, a test client, marketplace actors (buyers,
sellers, a store and products) and a fixed clock.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from localmart import create_app
from localmart.extensions import db
from localmart.models import Product, Store
from localmart.services.auth_service import register_user
from localmart.services.gateway import MockPayoutGateway


PASSWORD = "Password123"

# Fixed clock; every core operation takes an explicit `now`
NOW = datetime(2026, 3, 2, 10, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        db.session.remove()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        app.extensions["payout_gateway"] = MockPayoutGateway()
        app.extensions["notification_dispatchers"] = []

        yield db.session

        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def gateway(app, db_session):
    return app.extensions["payout_gateway"]


def _user(name, email, role):
    return register_user(name=name, email=email, password=PASSWORD, role=role)


@pytest.fixture(scope='function')
def buyer(db_session):
    return _user("Asha Buyer", "buyer@example.com", "buyer")


@pytest.fixture(scope='function')
def other_buyer(db_session):
    return _user("Ravi Buyer", "buyer2@example.com", "buyer")


@pytest.fixture(scope='function')
def seller(db_session):
    return _user("Meena Seller", "seller@example.com", "seller")


@pytest.fixture(scope='function')
def other_seller(db_session):
    return _user("Kiran Seller", "seller2@example.com", "seller")


def make_product(store, *, price="1000", min_price="700", stock=5, name="Handloom Saree", **fields):
    product = Product(
        seller_id=store.seller_id,
        store_id=store.id,
        name=name,
        price=Decimal(price),
        min_price=Decimal(min_price) if min_price is not None else None,
        stock=stock,
        total_sold=0,
        is_bargainable=fields.pop("is_bargainable", True),
        is_active=fields.pop("is_active", True),
        **fields,
    )
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture(scope='function')
def store(db_session, seller):
    store = Store(seller_id=seller.id, name="Meena Textiles", city="Pune", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session, other_seller):
    store = Store(seller_id=other_seller.id, name="Kiran Crafts", city="Pune", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def product(store):
    """price=1000, min_price=700, stock=5, bargainable."""
    return make_product(store)


@pytest.fixture(scope='function')
def shipping_address():
    return {
        "name": "Asha Buyer",
        "phone": "9876543210",
        "street": "12 MG Road",
        "city": "Pune",
        "state": "Maharashtra",
        "pincode": "411001",
    }


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def buyer_headers(client, buyer):
    return auth_headers(get_auth_token(client, buyer.email))


@pytest.fixture(scope='function')
def seller_headers(client, seller):
    return auth_headers(get_auth_token(client, seller.email))
