from conftest import login_headers, order_body, signup


def test_one_store_per_seller(client, seller):
    res = client.post("/stores", json={"name": "Again", "address": "x", "phoneNumber": "1"},
                      headers=seller["headers"])
    assert res.status_code == 409


def test_buyers_cannot_open_stores(client, buyer):
    res = client.post("/stores", json={"name": "Mine", "address": "x", "phoneNumber": "1"},
                      headers=buyer["headers"])
    assert res.status_code == 403


def test_store_detail_and_update(client, seller, product):
    store_id = seller["store"]["id"]

    detail = client.get(f"/stores/{store_id}").json()
    assert detail["productCount"] == 1
    assert client.get("/stores/my-store", headers=seller["headers"]).json()["id"] == store_id

    res = client.put(f"/stores/{store_id}", json={"name": "Renamed"}, headers=seller["headers"])
    assert res.json()["name"] == "Renamed"


def test_only_owner_updates_store(client, seller):
    signup(client, "rival", "rival@example.com", type_="SELLER")
    headers = login_headers(client, "rival@example.com")

    res = client.put(f"/stores/{seller['store']['id']}", json={"name": "Mine now"}, headers=headers)

    assert res.status_code == 403


def test_favorite_store(client, buyer, seller):
    store_id = seller["store"]["id"]

    assert client.post(f"/stores/{store_id}/favorite", headers=buyer["headers"]).status_code == 201
    assert client.post(f"/stores/{store_id}/favorite", headers=buyer["headers"]).status_code == 409
    assert client.get(f"/stores/{store_id}").json()["favoriteCount"] == 1
    favorites = client.get("/stores/favorites", headers=buyer["headers"]).json()
    assert [f["storeId"] for f in favorites] == [store_id]

    assert client.delete(f"/stores/{store_id}/favorite", headers=buyer["headers"]).status_code == 200
    assert client.delete(f"/stores/{store_id}/favorite", headers=buyer["headers"]).status_code == 404


def test_product_detail(client, product):
    detail = client.get(f"/products/{product['id']}").json()

    assert detail["name"] == "Tee"
    assert detail["category"]["name"] == "top"
    assert detail["stocks"][0]["size"] == "M"
    assert detail["stocks"][0]["quantity"] == 5
    assert detail["discountPrice"] is None
    assert detail["isSoldOut"] is False
    assert client.get("/products/999").status_code == 404


def test_duplicate_product_name_in_store(client, seller, product):
    res = client.post("/products", json={"name": "Tee", "price": 1, "categoryName": "top"},
                      headers=seller["headers"])
    assert res.status_code == 409


def test_discount_window_must_be_ordered(client, seller):
    res = client.post("/products", json={
        "name": "Odd", "price": 1000, "categoryName": "top", "discountRate": 10,
        "discountStartTime": "2030-01-02T00:00:00", "discountEndTime": "2030-01-01T00:00:00",
    }, headers=seller["headers"])
    assert res.status_code == 400


def test_discount_window_accepts_mixed_offsets(client, seller):
    ok = client.post("/products", json={
        "name": "Zoned", "price": 1000, "categoryName": "top", "discountRate": 10,
        "discountStartTime": "2030-01-01T09:00:00+09:00", "discountEndTime": "2030-02-01T00:00:00",
    }, headers=seller["headers"])
    assert ok.status_code == 201, ok.text
    assert ok.json()["discountStartTime"] == "2030-01-01T00:00:00"

    backwards = client.post("/products", json={
        "name": "Zoned again", "price": 1000, "categoryName": "top", "discountRate": 10,
        "discountStartTime": "2030-02-01T00:00:00Z", "discountEndTime": "2030-01-01T00:00:00",
    }, headers=seller["headers"])
    assert backwards.status_code == 400
    assert backwards.json()["statusCode"] == 400


def test_update_keeps_discount_window_ordered(client, seller, make_product):
    product = make_product(name="Windowed", discountRate=10,
                           discountStartTime="2030-01-01T00:00:00", discountEndTime="2030-01-31T00:00:00")
    url = f"/products/{product['id']}"

    both = client.patch(url, json={"discountStartTime": "2030-03-01T00:00:00",
                                   "discountEndTime": "2030-02-01T00:00:00"}, headers=seller["headers"])
    assert both.status_code == 400

    start_only = client.patch(url, json={"discountStartTime": "2030-02-15T00:00:00"}, headers=seller["headers"])
    assert start_only.status_code == 400
    assert client.get(url).json()["discountStartTime"] == "2030-01-01T00:00:00"

    moved = client.patch(url, json={"discountEndTime": "2030-03-01T00:00:00Z"}, headers=seller["headers"])
    assert moved.status_code == 200
    assert moved.json()["discountEndTime"] == "2030-03-01T00:00:00"


def test_update_product_merges_stocks(client, seller, product):
    res = client.patch(f"/products/{product['id']}", json={
        "price": 12000,
        "stocks": [{"size": "M", "quantity": 2}, {"size": "L", "quantity": 4}],
    }, headers=seller["headers"])

    body = res.json()
    assert body["price"] == 12000
    assert {s["size"]: s["quantity"] for s in body["stocks"]} == {"M": 2, "L": 4}


def test_only_owner_changes_product(client, buyer, product):
    res = client.patch(f"/products/{product['id']}", json={"price": 1}, headers=buyer["headers"])
    assert res.status_code == 403


def test_delete_product(client, seller, buyer, make_product):
    spare = make_product(name="Spare")
    sold = make_product(name="Sold")
    client.post("/api/cart", json={"productId": spare["id"], "size": "M"}, headers=buyer["headers"])
    client.post("/api/purchase", json=order_body(sold["id"]), headers=buyer["headers"])

    assert client.delete(f"/products/{spare['id']}", headers=seller["headers"]).status_code == 204
    assert client.get(f"/products/{spare['id']}").status_code == 404
    assert client.delete(f"/products/{sold['id']}", headers=seller["headers"]).status_code == 409


def test_list_products_filters_and_sorts(client, seller, make_product):
    make_product(name="Cheap shirt", price=5000)
    make_product(name="Mid shirt", price=20000, stocks=[{"size": "L", "quantity": 1}])
    make_product(name="Pricey coat", price=90000)

    by_price = client.get("/products", params={"sort": "priceAsc"}).json()
    assert [p["price"] for p in by_price["list"]] == [5000, 20000, 90000]
    assert by_price["totalCount"] == 3

    shirts = client.get("/products", params={"search": "shirt", "priceMax": 10000}).json()
    assert [p["name"] for p in shirts["list"]] == ["Cheap shirt"]

    large = client.get("/products", params={"size": "L"}).json()
    assert [p["name"] for p in large["list"]] == ["Mid shirt"]

    store_products = client.get(f"/stores/{seller['store']['id']}/products", params={"pageSize": 2}).json()
    assert store_products["totalCount"] == 3
    assert len(store_products["list"]) == 2

    mine = client.get("/stores/my-store/products", headers=seller["headers"]).json()
    assert mine["totalCount"] == 3


def test_sales_ranking_follows_orders(client, buyer, make_product):
    make_product(name="Slow")
    hit = make_product(name="Hit")
    client.post("/api/purchase", json=order_body(hit["id"], quantity=3), headers=buyer["headers"])

    ranking = client.get("/products", params={"sort": "salesRanking"}).json()["list"]

    assert ranking[0]["name"] == "Hit"
    assert ranking[0]["sales"] == 3


def test_cart_flow(client, buyer, product):
    first = client.post("/api/cart", json={"productId": product["id"], "size": "M", "quantity": 2},
                        headers=buyer["headers"])
    assert first.status_code == 201
    again = client.post("/api/cart", json={"productId": product["id"], "size": "M"}, headers=buyer["headers"])
    assert again.json()["id"] == first.json()["id"]
    assert again.json()["quantity"] == 3

    cart = client.get("/api/cart", headers=buyer["headers"]).json()
    assert cart["totalQuantity"] == 3
    assert cart["totalPrice"] == 30000

    item_id = first.json()["id"]
    assert client.patch(f"/api/cart/{item_id}", json={"quantity": 1}, headers=buyer["headers"]).json()["quantity"] == 1
    assert client.delete(f"/api/cart/{item_id}", headers=buyer["headers"]).status_code == 200
    assert client.get("/api/cart", headers=buyer["headers"]).json()["items"] == []


def test_cart_rejects_unknown_product_and_size(client, buyer, product):
    assert client.post("/api/cart", json={"productId": 999, "size": "M"}, headers=buyer["headers"]).status_code == 404
    assert client.post("/api/cart", json={"productId": product["id"], "size": "XL"},
                       headers=buyer["headers"]).status_code == 400
    assert client.post("/api/cart", json={"productId": product["id"], "size": "M", "quantity": 0},
                       headers=buyer["headers"]).status_code == 400


def test_cart_items_are_private(client, buyer, other_buyer, product):
    item = client.post("/api/cart", json={"productId": product["id"], "size": "M"}, headers=buyer["headers"]).json()

    assert client.delete(f"/api/cart/{item['id']}", headers=other_buyer["headers"]).status_code == 404
