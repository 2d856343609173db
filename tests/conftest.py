import uuid

import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import ratelimit
from database import ensure_indexes, get_db
from main import app
from schemas import Category, Product, User
from security import hash_password

PASSWORD = "correct-horse-battery"


@pytest.fixture
def db(monkeypatch):
    # mongomock has no sessions; checkout falls back to restoring stock itself
    monkeypatch.setattr(config, "DATABASE_TRANSACTIONS", False)
    mock_db = mongomock.MongoClient(tz_aware=True)[f"storefront_test_{uuid.uuid4().hex}"]
    ensure_indexes(mock_db)
    app.dependency_overrides[get_db] = lambda: mock_db
    ratelimit.general_limiter.reset()
    ratelimit.auth_limiter.reset()
    yield mock_db
    app.dependency_overrides.clear()


@pytest.fixture
def client(db):
    return TestClient(app)


def register(email="jane@example.com", first_name="Jane", last_name="Doe"):
    test_client = TestClient(app)
    res = test_client.post(
        "/api/auth/register",
        json={"email": email, "password": PASSWORD, "first_name": first_name, "last_name": last_name},
    )
    assert res.status_code == 201, res.text
    return test_client, res.json()["user"]


@pytest.fixture
def customer(db):
    """(client logged in as a fresh customer, user dict)"""
    return register()


@pytest.fixture
def other_customer(db):
    return register(email="john@example.com", first_name="John", last_name="Roe")


@pytest.fixture
def admin_client(db):
    admin = User(
        email="admin@example.com",
        password_hash=hash_password(PASSWORD),
        first_name="Ada",
        last_name="Admin",
        role="admin",
    )
    db["user"].insert_one(admin.model_dump())
    test_client = TestClient(app)
    res = test_client.post("/api/auth/login", json={"email": "admin@example.com", "password": PASSWORD})
    assert res.status_code == 200, res.text
    return test_client


@pytest.fixture
def make_category(db):
    def _make(name="Pedals", slug=None, parent_id=None):
        category = Category(name=name, slug=slug or name.lower().replace(" ", "-"), parent_id=parent_id)
        return db["category"].insert_one(category.model_dump()).inserted_id

    return _make


@pytest.fixture
def make_product(db, make_category):
    default_category = {}

    def _make(name="Test Pedal", price=10.0, stock_count=10, category_id=None, **overrides):
        if category_id is None:
            if "id" not in default_category:
                default_category["id"] = make_category("General", "general")
            category_id = default_category["id"]
        fields = dict(
            name=name,
            slug=overrides.pop("slug", name.lower().replace(" ", "-")),
            description=overrides.pop("description", f"{name} description"),
            price=price,
            brand=overrides.pop("brand", "ToneForge"),
            category_id=category_id,
            stock_count=stock_count,
            in_stock=overrides.pop("in_stock", stock_count > 0),
        )
        fields.update(overrides)
        product = Product(**fields)
        return db["product"].insert_one(product.model_dump()).inserted_id

    return _make


ADDRESS = {
    "line1": "1 Main St",
    "city": "Springfield",
    "state": "IL",
    "postal_code": "62701",
    "country": "US",
}
