"""Pytest fixtures for storefront tests."""

import pytest
from fastapi.testclient import TestClient

import database
import identity
from database import MemoryStore, get_db, now_utc


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    """Retry backoff sleeps are irrelevant in tests."""
    monkeypatch.setattr(database, "_backoff", lambda attempt: None)


@pytest.fixture
def store():
    """An empty in-memory document store."""
    return MemoryStore()


@pytest.fixture
def client(store):
    """Test client whose routes all use the ``store`` fixture."""
    from main import app

    app.dependency_overrides[get_db] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def add_user(store, role="customer", email=None, **fields):
    """Insert an account and return it with bearer headers for it."""
    email = email or f"{role}-{database.new_id()}@example.com"
    doc = identity.new_account(email, fields.pop("first_name", "Test"), fields.pop("last_name", role.title()))
    doc["role"] = role
    doc.update(fields)
    user_id = store.insert("users", doc)
    token = identity.issue_token(user_id, email, role)
    return {"id": user_id, **doc, "headers": {"Authorization": f"Bearer {token}"}}


def add_product(store, name="Tarot Deck", slug=None, price=20.0, stock=10, **fields):
    doc = {
        "name": name,
        "slug": slug or slugify(name),
        "description": "",
        "price": price,
        "compareAtPrice": None,
        "stockQuantity": stock,
        "categoryId": None,
        "imageUrl": None,
        "images": [],
        "isFeatured": False,
        "isActive": True,
        "metadata": {},
        "variants": [],
        "createdAt": now_utc(),
        "updatedAt": now_utc(),
    }
    doc.update(fields)
    product_id = store.insert("products", doc)
    return {"id": product_id, **doc}


def slugify(name):
    return "-".join(name.lower().split())


def order_body(*items, **overrides):
    body = {
        "items": [dict(item) for item in items],
        "customerEmail": "buyer@example.com",
        "customerName": "Ada Buyer",
        "shippingAddress": {"address1": "1 Main St", "city": "Springfield", "zip": "12345", "country": "US"},
    }
    body.update(overrides)
    return body


@pytest.fixture
def customer(store):
    return add_user(store, "customer")


@pytest.fixture
def contributor(store):
    return add_user(store, "contributor")


@pytest.fixture
def admin(store):
    return add_user(store, "admin")
