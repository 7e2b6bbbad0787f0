"""
Pytest fixtures for OmniStock backend tests.

Provides test database setup plus store/product/variant fixtures.
"""

import pytest

from omnistock import create_app
from omnistock.extensions import db
from omnistock.services import catalog_service, inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BACKORDER_STOCK_PRECHECK': False,
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


@pytest.fixture(scope='function')
def store(db_session):
    """Ordering store."""
    return catalog_service.create_store("Main Street", code="MAIN")


@pytest.fixture(scope='function')
def other_store(db_session, store):
    """Second store, used as a transfer origin."""
    return catalog_service.create_store("Harbor Mall", code="HARB")


@pytest.fixture(scope='function')
def product(db_session):
    return catalog_service.create_product("Linen Shirt")


@pytest.fixture(scope='function')
def variant(db_session, product, store, other_store):
    """Variant with a zero-quantity ledger row in both stores."""
    return catalog_service.create_variant(product.id, "SHIRT-M", name="Medium", price=4500)


@pytest.fixture(scope='function')
def second_variant(db_session, product, store, other_store):
    return catalog_service.create_variant(product.id, "SHIRT-L", name="Large", price=4500)


@pytest.fixture(scope='function')
def stock(db_session):
    """Helper to seed on-hand quantity: stock(store_id, variant_id, quantity)."""
    def _stock(store_id: int, variant_id: int, quantity: int) -> int:
        return inventory_service.increment_stock(store_id, variant_id, quantity)
    return _stock
