from bson import ObjectId


def make_order(client, register_payload):
    user_id = client.post("/users/register", json=register_payload).json()["user"]["id"]
    product_id = client.post("/products", json={"name": "Will", "price": 10}).json()["product"]["id"]
    payload = {
        "user": user_id,
        "products": [{"product": product_id, "quantity": 2, "variant": "pdf"}],
        "total": 20,
        "billingInfo": {"name": "A B", "address": "1 Street"},
        "paymentAddresses": {"bitcoin": "bc1"},
    }
    return client.post("/orders", json=payload), user_id, product_id


def test_create_order(client, register_payload):
    res, user_id, product_id = make_order(client, register_payload)
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "Order placed"
    order = body["order"]
    assert order["status"] == "placed"
    assert order["user"] == user_id
    assert order["products"][0]["product"] == product_id
    assert order["products"][0]["variant"] == "pdf"
    assert order["billingInfo"] == {"name": "A B", "address": "1 Street"}


def test_status_from_body_is_ignored(client):
    res = client.post("/orders", json={"status": "cancelled"})
    assert res.status_code == 200
    assert res.json()["order"]["status"] == "placed"


def test_list_orders_populates_references(client, register_payload):
    make_order(client, register_payload)
    orders = client.get("/orders").json()
    assert len(orders) == 1
    order = orders[0]
    assert order["user"]["email"] == "a@b.com"
    assert "password" not in order["user"]
    assert order["products"][0]["product"]["name"] == "Will"
    assert order["products"][0]["quantity"] == 2


def test_list_orders_with_dangling_reference(client):
    client.post("/orders", json={"user": str(ObjectId()), "products": [{"product": str(ObjectId())}]})
    order = client.get("/orders").json()[0]
    assert order["user"] is None
    assert order["products"][0]["product"] is None


def test_cancel_order(client, register_payload):
    res, _, _ = make_order(client, register_payload)
    order_id = res.json()["order"]["id"]
    cancelled = client.patch(f"/orders/{order_id}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["message"] == "Order cancelled"
    assert cancelled.json()["order"]["status"] == "cancelled"


def test_cancel_twice_stays_cancelled(client):
    order_id = client.post("/orders", json={}).json()["order"]["id"]
    assert client.patch(f"/orders/{order_id}/cancel").json()["order"]["status"] == "cancelled"
    again = client.patch(f"/orders/{order_id}/cancel")
    assert again.status_code == 200
    assert again.json()["order"]["status"] == "cancelled"


def test_cancel_unknown_order(client):
    res = client.patch(f"/orders/{ObjectId()}/cancel")
    assert res.status_code == 404
    assert res.json() == {"error": "Order not found"}


def test_cancel_malformed_id(client):
    res = client.patch("/orders/not-an-id/cancel")
    assert res.status_code == 404
    assert res.json() == {"error": "Order not found"}


def test_any_status_from_body_is_ignored(client):
    res = client.post("/orders", json={"status": "shipped"})
    assert res.status_code == 200
    assert res.json()["order"]["status"] == "placed"


def test_nested_order_fields_are_echoed(client):
    billing = {"name": "A B", "password": "card-pin-note"}
    res = client.post("/orders", json={"billingInfo": billing})
    assert res.json()["order"]["billingInfo"] == billing
    assert client.get("/orders").json()[0]["billingInfo"] == billing
