"""
Pytest fixtures for back office tests.

Provides the application on an in-memory database, a clean schema per
test, staff users with bearer tokens, stocked products and a safe.
"""

import pytest

from backoffice import create_app
from backoffice.config import TestingConfig
from backoffice.extensions import db
from backoffice.models import BranchInventory, Product, Safe, Supplier
from backoffice.services import inventory_service, session_service
from backoffice.services.auth_service import create_user


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


# =============================================================================
# USERS
# =============================================================================


@pytest.fixture(scope='function')
def owner(db_session):
    return create_user(username="owner", password=PASSWORD, role="owner")


@pytest.fixture(scope='function')
def stock_manager(db_session):
    return create_user(username="stock", password=PASSWORD, role="stock_manager")


@pytest.fixture(scope='function')
def clerk(db_session):
    return create_user(username="clerk", password=PASSWORD, role="customer_service")


@pytest.fixture(scope='function')
def other_clerk(db_session):
    return create_user(username="clerk2", password=PASSWORD, role="customer_service")


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(user) -> dict:
    _, token = session_service.create_session(user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def owner_headers(owner):
    return headers_for(owner)


@pytest.fixture(scope='function')
def stock_headers(stock_manager):
    return headers_for(stock_manager)


@pytest.fixture(scope='function')
def clerk_headers(clerk):
    return headers_for(clerk)


@pytest.fixture(scope='function')
def other_clerk_headers(other_clerk):
    return headers_for(other_clerk)


# =============================================================================
# CATALOG / MONEY
# =============================================================================


@pytest.fixture(scope='function')
def brake_pad(db_session):
    """5000 cents; 10 in BranchA, 5 in BranchB."""
    product = Product(name="Brake Pad", sku="BP-001", category="brakes",
                      price_cents=5000, cost_price_cents=3000)
    db_session.add(product)
    db_session.flush()
    db_session.add(BranchInventory(product_id=product.id, branch="BranchA", quantity=10, low_stock_threshold=3))
    db_session.add(BranchInventory(product_id=product.id, branch="BranchB", quantity=5, low_stock_threshold=5))
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def oil_filter(db_session):
    """1500 cents; 20 in BranchA only."""
    product = Product(name="Oil Filter", sku="OF-001", category="filters",
                      price_cents=1500, cost_price_cents=900)
    db_session.add(product)
    db_session.flush()
    db_session.add(BranchInventory(product_id=product.id, branch="BranchA", quantity=20, low_stock_threshold=5))
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def safe(db_session):
    s = Safe(name="Main cash", code="MAIN")
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def supplier(db_session):
    s = Supplier(name="Parts Wholesale", code="PW", currency="LYD", balance_owed_cents=0)
    db_session.add(s)
    db_session.commit()
    return s


# =============================================================================
# HELPERS
# =============================================================================


def stock(product_id: int, branch: str) -> int:
    return inventory_service.get_quantity(product_id, branch)


def safe_balance(safe_id: int) -> tuple[int, int]:
    row = (
        db.session.query(Safe.balance_usd_cents, Safe.balance_lyd_cents)
        .filter_by(id=safe_id)
        .one()
    )
    return tuple(row)


@pytest.fixture(scope='function')
def make_invoice(client):
    """
    POST an invoice and return the response.

    make_invoice(headers, items=[(product, qty), ...], **payload_overrides)
    """
    def _make(headers, items, expected_status=201, extra_headers=None, **overrides):
        payload = {
            "customer_name": "Walk-in",
            "branch": "BranchA",
            "items": [
                {"product_id": product.id, "quantity": qty} for product, qty in items
            ],
        }
        payload.update(overrides)
        all_headers = dict(headers)
        all_headers.update(extra_headers or {})
        resp = client.post("/api/invoices", json=payload, headers=all_headers)
        assert resp.status_code == expected_status, resp.get_json()
        return resp

    return _make
