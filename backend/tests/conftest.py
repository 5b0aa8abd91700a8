"""
Pytest fixtures for POS ledger backend tests.

Provides the application, a per-test clean database, users, and helpers
for building products, customers and stores through the service layer so
that every starting balance has its ledger entry.
"""

import pytest

from posledger import create_app
from posledger.extensions import db
from posledger.models.auth import ROLE_ADMIN, ROLE_CASHIER
from posledger.services import catalog_service
from posledger.services.auth_service import create_user
from posledger.services.balance_service import Actor

TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SQLITE_IMMEDIATE_TRANSACTIONS': False,
        'BCRYPT_ROUNDS': 4,
        'AUDIT_DELIVERY_MODE': 'best_effort',
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
    """Fresh database for each test, with the walk-in customer in place."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.config['AUDIT_DELIVERY_MODE'] = 'best_effort'

        catalog_service.ensure_walk_in_customer()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user("admin", "Admin User", TEST_PASSWORD, role_name=ROLE_ADMIN)


@pytest.fixture(scope='function')
def cashier_user(db_session):
    return create_user("cashier", "Cashier User", TEST_PASSWORD, role_name=ROLE_CASHIER)


@pytest.fixture(scope='function')
def actor(admin_user):
    return Actor(user_id=admin_user.id, name=admin_user.name, ip="127.0.0.1")


@pytest.fixture(scope='function')
def make_product(actor):
    """Factory: make_product(sku, price_cents=1000, stock=0)."""
    def _make(sku: str, price_cents: int = 1000, stock: int = 0):
        return catalog_service.create_product(
            patch={"sku": sku, "name": f"Product {sku}", "price_cents": price_cents},
            actor=actor,
            opening_stock=stock,
        )
    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    return catalog_service.create_customer(patch={"name": "Jane Doe", "phone": "555-0100"})


@pytest.fixture(scope='function')
def two_stores(db_session):
    main = catalog_service.create_store(patch={"code": "MAIN", "name": "Main Store"})
    annex = catalog_service.create_store(patch={"code": "ANNEX", "name": "Annex"})
    return main, annex


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str, idempotency_key: str | None = None) -> dict:
    """Helper to create Authorization headers."""
    headers = {'Authorization': f'Bearer {token}'}
    if idempotency_key:
        headers['Idempotency-Key'] = idempotency_key
    return headers
