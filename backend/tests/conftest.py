"""
Pytest fixtures for the shoptab backend tests.

Provides an in-memory database, a recording notification sender, and a
small marketplace: one customer, two shop owners each with a shop, a few
products, and an admin.
"""

import pytest

from shoptab import create_app
from shoptab.extensions import db
from shoptab.models import Product, Shop, User
from shoptab.models.tenancy import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_SHOP_OWNER
from shoptab.services import cart_service, order_service, session_service
from shoptab.services.authorization import context_for_user


class RecordingSender:
    """Collects notifications instead of pushing them; can be told to fail."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, notification):
        if self.fail:
            raise RuntimeError("push gateway unavailable")
        self.sent.append(notification)

    def kinds(self):
        return [n.kind for n in self.sent]


_sender = RecordingSender()


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'RETRY_ATTEMPTS': 2,
        },
        notification_sender=_sender,
    )

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
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        _sender.sent.clear()
        _sender.fail = False

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifications(db_session):
    """The recording sender, emptied for this test."""
    return _sender


@pytest.fixture(scope='function')
def customer(db_session):
    user = User(name="Asha Customer", email="asha@example.com", phone="+15550001111", role=ROLE_CUSTOMER)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def other_customer(db_session):
    user = User(name="Ben Customer", email="ben@example.com", phone="+15550002222", role=ROLE_CUSTOMER)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session):
    user = User(name="Ravi Owner", email="ravi@example.com", phone="+15550009999", role=ROLE_SHOP_OWNER)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def other_owner(db_session):
    user = User(name="Mei Owner", email="mei@example.com", phone="+15550008888", role=ROLE_SHOP_OWNER)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session):
    user = User(name="Admin", email="admin@example.com", phone="+15550007777", role=ROLE_ADMIN)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def shop(db_session, owner):
    shop = Shop(owner_id=owner.id, name="Corner Store", delivery_fee_cents=300)
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def other_shop(db_session, other_owner):
    shop = Shop(owner_id=other_owner.id, name="Other Store", is_delivery_available=False)
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def rice(db_session, shop):
    """$10.00, no discount."""
    product = Product(shop_id=shop.id, name="Rice 1kg", sku="RICE-1", sale_price_cents=1000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def dal(db_session, shop):
    """$5.00, no discount."""
    product = Product(shop_id=shop.id, name="Dal 500g", sku="DAL-1", sale_price_cents=500)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def oil(db_session, shop):
    """$18.00 list, $16.00 discounted."""
    product = Product(shop_id=shop.id, name="Oil 1L", sku="OIL-1", sale_price_cents=1800, discount_price_cents=1600)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def foreign_product(db_session, other_shop):
    product = Product(shop_id=other_shop.id, name="Tea", sku="TEA-1", sale_price_cents=700)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def customer_ctx(customer):
    return context_for_user(customer)


@pytest.fixture(scope='function')
def other_customer_ctx(other_customer):
    return context_for_user(other_customer)


@pytest.fixture(scope='function')
def owner_ctx(owner):
    return context_for_user(owner)


@pytest.fixture(scope='function')
def other_owner_ctx(other_owner):
    return context_for_user(other_owner)


@pytest.fixture(scope='function')
def admin_ctx(admin):
    return context_for_user(admin)


@pytest.fixture(scope='function')
def filled_cart(customer_ctx, shop, rice, dal):
    """2 x rice ($10) + 1 x dal ($5) in the customer's cart."""
    cart_service.add_item(customer_ctx, shop_id=shop.id, product_id=rice.id, quantity=2)
    return cart_service.add_item(customer_ctx, shop_id=shop.id, product_id=dal.id, quantity=1)


@pytest.fixture(scope='function')
def placed_order(customer_ctx, filled_cart):
    """A $25.00 pickup order paid cash on pickup."""
    return order_service.create_order_from_cart(customer_ctx, filled_cart.id, order_type="SHOP_PICKUP")


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Issue a bearer session for a user and return the Authorization headers."""
    def _headers(user) -> dict:
        _, token = session_service.create_session(user.id)
        return {'Authorization': f'Bearer {token}'}
    return _headers
