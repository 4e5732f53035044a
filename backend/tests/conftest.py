"""
Pytest fixtures for retailops backend tests.

Provides the in-memory application, a clean database per test, two outlets
with stock, and request-context header helpers.
"""

import pytest

from retailops import create_app
from retailops.config import TestingConfig
from retailops.extensions import db
from retailops.services import catalog_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

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
def main_store(db_session):
    """Outlet that receives purchase batches."""
    store = catalog_service.create_store("Main Outlet", code="MAIN", location="Dhaka")
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def branch_store(db_session):
    """Second outlet, the usual dispatch destination."""
    store = catalog_service.create_store("Branch Outlet", code="BR1", location="Chattogram")
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def product(db_session):
    product = catalog_service.create_product("Cotton Panjabi", attributes={"Colour": "White", "Size": ["M", "L"]})
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def other_product(db_session):
    product = catalog_service.create_product("Silk Saree", attributes={"Colour": "Red"})
    db_session.commit()
    return product


def stock(store, product, quantity, *, cost_price=800, selling_price=1200, paid=True):
    """Admit a purchase batch of `quantity` units at `store`; returns the units."""
    _, units = catalog_service.create_batch(
        product_id=product.id,
        cost_price=cost_price,
        selling_price=selling_price,
        quantity=quantity,
        paid=paid,
        store_id=store.id,
    )
    db.session.commit()
    return units


@pytest.fixture(scope='function')
def main_units(db_session, main_store, product):
    """Five units of `product` available at the main outlet."""
    return stock(main_store, product, 5)


def context_headers(role: str = "admin", store_id: int | None = None, user: str = "alice") -> dict:
    """Helper to create request-context headers."""
    headers = {"X-User-Name": user, "X-User-Role": role}
    if store_id is not None:
        headers["X-Store-Id"] = str(store_id)
    return headers


@pytest.fixture(scope='function')
def admin_headers():
    return context_headers("admin")


@pytest.fixture(scope='function')
def manager_headers():
    return context_headers("manager", user="mina")


@pytest.fixture(scope='function')
def cashier_headers(main_store):
    return context_headers("cashier", store_id=main_store.id, user="cara")


@pytest.fixture(scope='function')
def outlet_headers(branch_store):
    return context_headers("outlet", store_id=branch_store.id, user="omar")
