"""
Pytest fixtures for FreshLedger backend tests.

Provides test database setup, stock/menu factories, and test client.
"""

import itertools

import pytest

from freshledger import create_app
from freshledger.extensions import db
from freshledger.services import ledger_service, menu_service, stock_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'EXPIRY_SWEEP_ENABLED': False,
    'BUSINESS_TIMEZONE': 'UTC',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def today(db_session):
    return ledger_service.current_business_date()


@pytest.fixture(scope='function')
def make_stock_item(db_session):
    """Factory: stock item with optional opening (aggregate-only) quantity."""
    counter = itertools.count(1)

    def _make(name=None, *, category="Produce", unit="kg", quantity=0, cost=None,
              min_threshold=None, expiry_date=None):
        return stock_service.create_stock_item(
            name=name or f"Item {next(counter)}",
            category=category,
            unit=unit,
            quantity=quantity,
            cost=cost,
            min_threshold=min_threshold,
            expiry_date=expiry_date,
            actor="tester",
        )

    return _make


@pytest.fixture(scope='function')
def make_menu_item(db_session):
    """Factory: menu item from [(stock_item, per_unit_quantity), ...]."""
    counter = itertools.count(1)

    def _make(ingredients, *, name=None, price=10):
        return menu_service.create_menu_item(
            name=name or f"Dish {next(counter)}",
            price=price,
            ingredients=[
                {"stock_item_id": item.id, "quantity": qty, "unit": item.unit}
                for item, qty in ingredients
            ],
        )

    return _make


@pytest.fixture(scope='function')
def chef_headers():
    return {"X-Actor-Id": "chef-1", "X-Actor-Role": "chef"}


@pytest.fixture(scope='function')
def admin_headers():
    return {"X-Actor-Id": "admin-1", "X-Actor-Role": "admin"}
