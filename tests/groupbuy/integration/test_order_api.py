"""Integration tests for the /orders endpoints via TestClient."""

ADDRESS = {
    "street": "1 Market St",
    "city": "San Francisco",
    "state": "CA",
    "postal_code": "94105",
    "country": "US",
}


def _checkout(client, product_id, quantity, buyer_id="buyer-001", **extra):
    response = client.post(
        "/orders",
        json={
            "buyer_id": buyer_id,
            "items": [{"product_id": product_id, "quantity": quantity}],
            "shipping_address": ADDRESS,
            **extra,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()["orders"]


class TestCreateOrder:
    def test_pooled_checkout(self, client, product_id):
        [order] = _checkout(client, product_id, 40)
        assert order["status"] == "POOLING"
        assert order["subtotal"] == 100.0
        assert order["tax_amount"] == 7.25
        assert order["total"] == 107.25
        assert order["pooled_order_id"] is not None

    def test_direct_checkout(self, client, product_id):
        [order] = _checkout(client, product_id, 150)
        assert order["status"] == "PENDING"
        assert order["pooled_order_id"] is None

    def test_empty_items_is_400(self, client):
        response = client.post("/orders", json={"buyer_id": "buyer-001", "items": []})
        assert response.status_code == 400

    def test_unknown_product_is_404(self, client):
        response = client.post(
            "/orders", json={"buyer_id": "buyer-001", "items": [{"product_id": "missing", "quantity": 1}]}
        )
        assert response.status_code == 404
        assert "product" in response.json()["error"]

    def test_insufficient_inventory_is_409(self, client, product_id):
        response = client.post(
            "/orders", json={"buyer_id": "buyer-001", "items": [{"product_id": product_id, "quantity": 501}]}
        )
        assert response.status_code == 409


class TestReadOrders:
    def test_get_and_list(self, client, product_id):
        [order] = _checkout(client, product_id, 150)

        response = client.get(f"/orders/{order['id']}")
        assert response.status_code == 200
        assert response.json()["items"][0]["quantity"] == 150

        listed = client.get("/orders", params={"buyer_id": "buyer-001", "status": "PENDING"}).json()["orders"]
        assert [o["id"] for o in listed] == [order["id"]]

    def test_missing_order_is_404(self, client):
        assert client.get("/orders/missing").status_code == 404

    def test_history(self, client, product_id):
        [order] = _checkout(client, product_id, 150)
        history = client.get(f"/orders/{order['id']}/history").json()
        assert [(h["from_status"], h["to_status"]) for h in history] == [(None, "DRAFT"), ("DRAFT", "PENDING")]


class TestStatusEndpoint:
    def test_seller_processes_order(self, client, product_id):
        [order] = _checkout(client, product_id, 150)
        response = client.put(
            f"/orders/{order['id']}/status",
            json={"status": "PROCESSING", "actor_id": "seller-001", "actor_role": "SELLER"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "PROCESSING"

        product = client.get(f"/products/{product_id}").json()
        assert (product["current_stock"], product["reserved_stock"]) == (350, 150)

    def test_forbidden_transition_is_400(self, client, product_id):
        [order] = _checkout(client, product_id, 150)
        response = client.put(
            f"/orders/{order['id']}/status",
            json={"status": "COMPLETED", "actor_id": "buyer-001", "actor_role": "BUYER"},
        )
        assert response.status_code == 400

    def test_stock_shortfall_is_409(self, client, product_id):
        [order] = _checkout(client, product_id, 150)
        client.post(f"/products/{product_id}/stock", json={"delta": -400, "reason_code": "ADJUSTMENT"})
        response = client.put(
            f"/orders/{order['id']}/status",
            json={"status": "PROCESSING", "actor_id": "seller-001", "actor_role": "SELLER"},
        )
        assert response.status_code == 409
        assert client.get(f"/orders/{order['id']}").json()["status"] == "PENDING"


class TestDrafts:
    def test_draft_update_submit(self, client, product_id):
        [draft] = _checkout(client, product_id, 10, draft=True)
        assert draft["status"] == "DRAFT"

        response = client.put(f"/orders/{draft['id']}", json={"items": [{"product_id": product_id, "quantity": 120}]})
        assert response.status_code == 200
        assert response.json()["subtotal"] == 300.0

        response = client.post(f"/orders/{draft['id']}/submit", json={})
        assert response.json()["status"] == "PENDING"

    def test_delete_draft(self, client, product_id):
        [draft] = _checkout(client, product_id, 10, draft=True)
        assert client.delete(f"/orders/{draft['id']}").status_code == 204
        assert client.get(f"/orders/{draft['id']}").status_code == 404

    def test_delete_placed_order_is_400(self, client, product_id):
        [order] = _checkout(client, product_id, 150)
        assert client.delete(f"/orders/{order['id']}").status_code == 400


def test_health(client):
    response = client.get("/health")
    assert response.json() == {"status": "ok", "domain": "groupbuy"}
