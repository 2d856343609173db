from bson import ObjectId


def test_add_list_check_and_remove(customer, make_product):
    client, _ = customer
    product_id = str(make_product("Chorus"))

    added = client.post("/api/wishlist", json={"product_id": product_id})
    assert added.status_code == 201, added.text
    assert added.json()["product"]["name"] == "Chorus"

    items = client.get("/api/wishlist").json()
    assert [i["product_id"] for i in items] == [product_id]
    assert items[0]["product"]["category"]["slug"] == "general"
    assert client.get(f"/api/wishlist/check/{product_id}").json() == {"in_wishlist": True}

    assert client.delete(f"/api/wishlist/{product_id}").json() == {"message": "Removed from wishlist"}
    assert client.get(f"/api/wishlist/check/{product_id}").json() == {"in_wishlist": False}
    assert client.get("/api/wishlist").json() == []


def test_duplicate_and_unknown_products(customer, make_product):
    client, _ = customer
    product_id = str(make_product())
    client.post("/api/wishlist", json={"product_id": product_id})

    duplicate = client.post("/api/wishlist", json={"product_id": product_id})
    assert duplicate.status_code == 409
    assert duplicate.json() == {"error": "Product is already in your wishlist"}
    assert client.post("/api/wishlist", json={"product_id": str(ObjectId())}).status_code == 404


def test_remove_missing_entry_is_not_found(customer):
    client, _ = customer
    res = client.delete(f"/api/wishlist/{ObjectId()}")
    assert res.status_code == 404
    assert res.json() == {"error": "Item not found in wishlist"}
    assert client.get("/api/wishlist/check/garbage").json() == {"in_wishlist": False}


def test_wishlists_are_per_user(customer, other_customer, make_product):
    client, _ = customer
    other, _ = other_customer
    product_id = str(make_product())
    client.post("/api/wishlist", json={"product_id": product_id})

    assert other.get("/api/wishlist").json() == []
    assert other.get(f"/api/wishlist/check/{product_id}").json() == {"in_wishlist": False}
    assert other.delete(f"/api/wishlist/{product_id}").status_code == 404
    assert other.post("/api/wishlist", json={"product_id": product_id}).status_code == 201


def test_wishlist_requires_authentication(client):
    assert client.get("/api/wishlist").status_code == 401
