"""Pytest fixtures for cashdesk tests."""

import tempfile
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from cashdesk import auth, catalog
from cashdesk.storage import JsonStore

ADMIN_EMAIL = "admin@test.com"
ADMIN_PASSWORD = "Admin123"
CASHIER_EMAIL = "cashier@test.com"
CASHIER_PASSWORD = "Cashier123"


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_dir):
    """Empty JSON store in a temporary data directory."""
    return JsonStore(temp_dir / "data")


@pytest.fixture
def admin(store):
    return auth.register_user(store, "Admin User", ADMIN_EMAIL, ADMIN_PASSWORD, role="admin")


@pytest.fixture
def cashier(store):
    return auth.register_user(store, "Casey Cashier", CASHIER_EMAIL, CASHIER_PASSWORD)


def make_product(store, admin, name="Widget", price="10.00", **fields):
    """Create a catalog product with sensible defaults."""
    fields.setdefault("stock", 10)
    return catalog.create_product(store, admin, name, Decimal(price), **fields)


@pytest.fixture
def widget(store, admin):
    """Active product priced 10.00 with 10 in stock."""
    return make_product(store, admin, "Widget", "10.00", stock=10, sku="WID-1")


@pytest.fixture
def gadget(store, admin):
    """Active product priced 2.50 with 4 in stock."""
    return make_product(store, admin, "Gadget", "2.50", stock=4, sku="GAD-1")


@pytest.fixture
def api_client(store):
    """Test client wired to the temporary store."""
    from cashdesk.api import app, get_store

    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def bearer(store, email, password) -> dict[str, str]:
    _, token = auth.authenticate(store, email, password)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(store, admin):
    return bearer(store, ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def cashier_headers(store, cashier):
    return bearer(store, CASHIER_EMAIL, CASHIER_PASSWORD)
