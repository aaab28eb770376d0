import pytest
from fastapi.testclient import TestClient
from groupbuy.api.app import create_app


@pytest.fixture()
def client(service):
    return TestClient(create_app(service))


@pytest.fixture()
def product_id(client):
    response = client.post(
        "/products",
        json={
            "seller_id": "seller-001",
            "name": "Bulk Jasmine Rice",
            "unit_price": 2.5,
            "min_order_quantity": 100,
            "current_stock": 500,
        },
    )
    assert response.status_code == 201
    return response.json()["id"]
