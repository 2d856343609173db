from datetime import datetime, timezone

import pytest
from bson import ObjectId

from admin import months_ago, slugify
from conftest import ADDRESS


def _place_order(client, product_id, quantity=1):
    client.post("/api/cart/items", json={"product_id": str(product_id), "quantity": quantity})
    res = client.post("/api/orders", json={"shipping_address": ADDRESS})
    assert res.status_code == 201, res.text
    return res.json()


def test_admin_routes_require_admin_role(client, customer):
    customer_client, _ = customer
    assert client.get("/api/admin/analytics").status_code == 401
    res = customer_client.get("/api/admin/analytics")
    assert res.status_code == 403
    assert res.json() == {"error": "Insufficient permissions"}
    assert customer_client.post("/api/admin/products", json={}).status_code == 403


@pytest.mark.parametrize("text,expected", [
    ("Fuzz Box", "fuzz-box"),
    ("  Parts & Hardware ", "parts-hardware"),
    ("Nickel .010-.046", "nickel-010-046"),
    ("under_score  name", "under-score-name"),
])
def test_slugify(text, expected):
    assert slugify(text) == expected


def test_months_ago_crosses_year_boundary():
    now = datetime(2024, 2, 17, 13, 5, tzinfo=timezone.utc)
    assert months_ago(now, 0) == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert months_ago(now, 11) == datetime(2023, 3, 1, tzinfo=timezone.utc)
    assert months_ago(now, 14) == datetime(2022, 12, 1, tzinfo=timezone.utc)


def test_create_product_generates_unique_slugs(admin_client, make_category):
    category_id = str(make_category("Fuzz", "fuzz"))
    payload = {"name": "Fuzz Box", "description": "Loud", "price": 99.5, "category_id": category_id, "brand": "EchoWave", "stock_count": 4}

    first = admin_client.post("/api/admin/products", json=payload)
    second = admin_client.post("/api/admin/products", json=payload)

    assert first.status_code == second.status_code == 201
    assert first.json()["slug"] == "fuzz-box"
    assert first.json()["category"]["slug"] == "fuzz"
    assert second.json()["slug"].startswith("fuzz-box-")
    assert second.json()["slug"] != "fuzz-box"


def test_create_product_validation(admin_client):
    bad_category = admin_client.post(
        "/api/admin/products",
        json={"name": "X", "description": "Y", "price": 1, "category_id": str(ObjectId()), "brand": "Z"},
    )
    assert bad_category.json() == {"error": "Category not found"}
    negative = admin_client.post(
        "/api/admin/products",
        json={"name": "X", "description": "Y", "price": -1, "category_id": str(ObjectId()), "brand": "Z"},
    )
    assert negative.status_code == 400


def test_update_product(admin_client, make_product, make_category):
    product_id = make_product("Old Name", price=10)
    other_category = str(make_category("Boost", "boost"))

    res = admin_client.put(f"/api/admin/products/{product_id}", json={"name": "New Name", "price": 12.5, "category_id": other_category})

    assert res.status_code == 200, res.text
    body = res.json()
    assert (body["name"], body["slug"], body["price"]) == ("New Name", "new-name", 12.5)
    assert body["category"]["slug"] == "boost"
    assert admin_client.put(f"/api/admin/products/{ObjectId()}", json={"price": 1}).status_code == 404


def test_delete_product_purges_references(admin_client, customer, db, make_product):
    client, _ = customer
    doomed = make_product("Doomed")
    kept = make_product("Kept")
    client.post("/api/cart/items", json={"product_id": str(doomed)})
    client.post("/api/cart/items", json={"product_id": str(kept)})
    client.post("/api/wishlist", json={"product_id": str(doomed)})
    client.post("/api/reviews", json={"product_id": str(doomed), "rating": 5})

    res = admin_client.delete(f"/api/admin/products/{doomed}")

    assert res.json() == {"message": "Product deleted successfully"}
    assert db["product"].find_one({"_id": doomed}) is None
    assert db["wishlist_item"].count_documents({}) == 0
    assert db["review"].count_documents({}) == 0
    assert [i["product_id"] for i in client.get("/api/cart").json()["items"]] == [str(kept)]
    assert admin_client.delete(f"/api/admin/products/{doomed}").status_code == 404


def test_order_status_can_be_overwritten(admin_client, customer, make_product):
    client, _ = customer
    order = _place_order(client, make_product())
    url = f"/api/admin/orders/{order['id']}/status"

    shipped = admin_client.patch(url, json={"status": "shipped"})
    assert shipped.status_code == 200
    assert shipped.json()["status"] == "shipped"
    assert shipped.json()["user"]["email"] == "jane@example.com"
    assert admin_client.patch(url, json={"status": "pending"}).json()["status"] == "pending"

    invalid = admin_client.patch(url, json={"status": "lost"})
    assert invalid.status_code == 400
    assert invalid.json()["error"].startswith("Invalid status")
    assert admin_client.patch(url, json={}).status_code == 400
    assert admin_client.patch(f"/api/admin/orders/{ObjectId()}/status", json={"status": "shipped"}).status_code == 404
    assert client.get(f"/api/orders/{order['id']}").json()["status"] == "pending"


def test_admin_order_list_filters(admin_client, customer, other_customer, make_product):
    jane, _ = customer
    john, _ = other_customer
    product = make_product(stock_count=10)
    jane_order = _place_order(jane, product)
    _place_order(john, product)
    admin_client.patch(f"/api/admin/orders/{jane_order['id']}/status", json={"status": "delivered"})

    assert admin_client.get("/api/admin/orders").json()["total"] == 2
    assert admin_client.get("/api/admin/orders", params={"status": "all"}).json()["total"] == 2
    delivered = admin_client.get("/api/admin/orders", params={"status": "delivered"}).json()
    assert [o["id"] for o in delivered["data"]] == [jane_order["id"]]
    by_email = admin_client.get("/api/admin/orders", params={"search": "john@"}).json()
    assert [o["user"]["first_name"] for o in by_email["data"]] == ["John"]
    by_id = admin_client.get("/api/admin/orders", params={"search": jane_order["id"]}).json()
    assert [o["id"] for o in by_id["data"]] == [jane_order["id"]]


def test_analytics(admin_client, customer, other_customer, make_product):
    jane, _ = customer
    john, _ = other_customer
    pedal = make_product("Overdrive", price=30, stock_count=10)
    cable = make_product("Cable", price=10, stock_count=10)
    _place_order(jane, pedal, 2)
    cancelled = _place_order(john, cable, 1)
    admin_client.patch(f"/api/admin/orders/{cancelled['id']}/status", json={"status": "cancelled"})

    stats = admin_client.get("/api/admin/analytics").json()

    assert stats["total_revenue"] == 64.8
    assert stats["total_orders"] == 2
    assert stats["total_customers"] == 2
    assert stats["total_products"] == 2
    assert stats["status_distribution"] == {"pending": 1, "cancelled": 1}
    assert len(stats["recent_orders"]) == 2
    assert stats["top_products"][0]["name"] == "Overdrive"
    assert stats["top_products"][0]["total_sold"] == 2
    month = datetime.now(timezone.utc).strftime("%Y-%m")
    assert stats["monthly_sales"] == [{"month": month, "revenue": 64.8, "orders": 1}]


def test_analytics_on_empty_store(admin_client):
    stats = admin_client.get("/api/admin/analytics").json()
    assert stats["total_revenue"] == 0
    assert stats["top_products"] == []
    assert stats["monthly_sales"] == []


def test_customers_with_totals(admin_client, customer, other_customer, make_product):
    jane, jane_user = customer
    product = make_product(price=30, stock_count=10)
    _place_order(jane, product, 2)
    jane.post("/api/reviews", json={"product_id": str(product), "rating": 5})

    page = admin_client.get("/api/admin/customers").json()

    assert page["total"] == 2
    rows = {c["email"]: c for c in page["data"]}
    assert "admin@example.com" not in rows
    assert rows["jane@example.com"]["order_count"] == 1
    assert rows["jane@example.com"]["review_count"] == 1
    assert rows["jane@example.com"]["total_spent"] == 64.8
    assert rows["john@example.com"]["total_spent"] == 0
    assert "password_hash" not in rows["jane@example.com"]
    searched = admin_client.get("/api/admin/customers", params={"search": "roe"}).json()
    assert [c["email"] for c in searched["data"]] == ["john@example.com"]


def test_admin_products_listing(admin_client, make_product, make_category):
    pedals = make_category("Pedals", "pedals")
    make_product("Tremolo", category_id=pedals)
    make_product("Strap", brand="StrapCo")

    assert admin_client.get("/api/admin/products").json()["total"] == 2
    assert [p["name"] for p in admin_client.get("/api/admin/products", params={"category": "pedals"}).json()["data"]] == ["Tremolo"]
    assert [p["name"] for p in admin_client.get("/api/admin/products", params={"search": "strapco"}).json()["data"]] == ["Strap"]
