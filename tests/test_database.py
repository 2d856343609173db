import pytest
from bson import ObjectId

import admin
import config
import orders
from conftest import ADDRESS
from database import page_params, run_in_transaction, serialize_doc
from schemas import ShippingAddress


class FakeSession:
    """Stands in for a pymongo ClientSession: runs the callback once, in-line."""

    def __init__(self):
        self.transactions = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def with_transaction(self, callback):
        self.transactions += 1
        return callback(self)


class FakeClient:
    def __init__(self):
        self.session = FakeSession()

    def start_session(self):
        return self.session


class RecordingCollection:
    """Forwards to a mongomock collection, recording the session each call was given."""

    def __init__(self, collection, calls):
        self._collection = collection
        self._calls = calls

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            if "session" in kwargs:
                self._calls.append((self._collection.name, name, kwargs.pop("session")))
            return attr(*args, **kwargs)

        return call


class RecordingDatabase:
    def __init__(self, db):
        self._db = db
        self.name = db.name
        self.client = FakeClient()
        self.calls = []

    def __getitem__(self, name):
        return RecordingCollection(self._db[name], self.calls)


@pytest.fixture
def transactional_db(db, monkeypatch):
    monkeypatch.setattr(config, "DATABASE_TRANSACTIONS", True)
    return RecordingDatabase(db)


def test_run_in_transaction_passes_session_and_result(transactional_db):
    result = run_in_transaction(transactional_db, lambda session: session)
    assert result is transactional_db.client.session
    assert transactional_db.client.session.transactions == 1


def test_run_in_transaction_without_transactions_passes_none(db):
    assert run_in_transaction(db, lambda session: session) is None


def test_checkout_writes_all_use_the_transaction_session(transactional_db, db, customer, make_product):
    client, user = customer
    product_id = make_product(price=20, stock_count=3)
    client.post("/api/cart/items", json={"product_id": str(product_id), "quantity": 2})
    user_doc = db["user"].find_one({"_id": ObjectId(user["id"])})

    order = orders.create_order(transactional_db, user_doc, ShippingAddress(**ADDRESS))

    session = transactional_db.client.session
    assert session.transactions == 1
    written = {(collection, method) for collection, method, _ in transactional_db.calls}
    assert {("product", "update_one"), ("order", "insert_one"), ("cart", "update_one")} <= written
    assert all(s is session for _, _, s in transactional_db.calls)
    assert order["total"] == 49.19
    assert db["product"].find_one({"_id": product_id})["stock_count"] == 1


def test_product_purge_writes_use_the_transaction_session(transactional_db, db, admin_client, make_product):
    product_id = make_product()
    admin_user = db["user"].find_one({"email": "admin@example.com"})

    admin.delete_product(str(product_id), admin=admin_user, db=transactional_db)

    session = transactional_db.client.session
    assert session.transactions == 1
    assert {collection for collection, _, _ in transactional_db.calls} == {"cart", "wishlist_item", "review", "product"}
    assert all(s is session for _, _, s in transactional_db.calls)
    assert db["product"].find_one({"_id": product_id}) is None


def test_serialize_doc_nested_ids():
    line_id, product_id = ObjectId(), ObjectId()
    doc = {"_id": ObjectId(), "items": [{"_id": line_id, "product_id": product_id}], "meta": {"ref": product_id}}

    out = serialize_doc(doc)

    assert out["items"] == [{"id": str(line_id), "product_id": str(product_id)}]
    assert out["meta"] == {"ref": str(product_id)}
    assert "_id" not in out
    assert serialize_doc(None) is None


@pytest.mark.parametrize("page,limit,expected", [
    (None, None, (1, 12)),
    (0, 500, (1, 100)),
    (-3, 0, (1, 12)),
    (4, 30, (4, 30)),
])
def test_page_params_clamps(page, limit, expected):
    assert page_params(page, limit, 12, 100) == expected
