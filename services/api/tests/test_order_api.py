from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    db_path = tmp_path / "saveup_orders.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("SAVEUP_DB_AUTO_CREATE", "true")
    monkeypatch.setenv("SAVEUP_PAYMENT_GATEWAY", "mock")

    from services.api.app.main import app

    with TestClient(app) as c:
        yield c


def _create_product(client: TestClient, *, price: str, stock: int = 10) -> int:
    resp = client.post(
        "/v1/products",
        json={
            "name": f"Item {price}",
            "category": "Bakery",
            "original_price": "99.00",
            "discount_price": price,
            "quantity": stock,
            "expiration_date": (date.today() + timedelta(days=2)).isoformat(),
        },
    )
    assert resp.status_code == 200
    return resp.json()["id"]


def test_checkout_snapshots_prices_and_totals(client: TestClient) -> None:
    bread = _create_product(client, price="7.00")
    cake = _create_product(client, price="12.50")

    resp = client.post(
        "/v1/orders",
        json={
            "customer_name": "Ana",
            "customer_email": "ana@example.com",
            "fulfillment_method": "delivery",
            "delivery_fee": "4.00",
            "payment_method": "pix",
            "items": [
                {"product_id": bread, "quantity": 2},
                {"product_id": cake, "quantity": 1},
            ],
        },
    )
    assert resp.status_code == 200

    data = resp.json()
    assert data["status"] == "awaiting_payment"
    assert Decimal(data["total_amount"]) == Decimal("30.50")
    assert [Decimal(i["price_at_time"]) for i in data["items"]] == [Decimal("7.00"), Decimal("12.50")]
    assert [Decimal(i["line_total"]) for i in data["items"]] == [Decimal("14.00"), Decimal("12.50")]
    assert all(i["confirmation_status"] is None for i in data["items"])

    assert client.get(f"/v1/products/{bread}").json()["quantity"] == 8


def test_checkout_without_payment_method_is_pending(client: TestClient) -> None:
    product = _create_product(client, price="3.00")
    resp = client.post(
        "/v1/orders",
        json={"customer_name": "Bia", "items": [{"product_id": product, "quantity": 1}]},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "pending"


def test_checkout_rejects_insufficient_stock(client: TestClient) -> None:
    product = _create_product(client, price="3.00", stock=1)
    resp = client.post(
        "/v1/orders",
        json={"customer_name": "Caio", "items": [{"product_id": product, "quantity": 2}]},
    )
    assert resp.status_code == 409
    assert "Insufficient stock" in resp.json()["detail"]
    assert client.get(f"/v1/products/{product}").json()["quantity"] == 1


def test_checkout_rejects_unknown_product(client: TestClient) -> None:
    resp = client.post(
        "/v1/orders",
        json={"customer_name": "Caio", "items": [{"product_id": 404, "quantity": 1}]},
    )
    assert resp.status_code == 404


def test_checkout_validates_items(client: TestClient) -> None:
    resp = client.post("/v1/orders", json={"customer_name": "Caio", "items": []})
    assert resp.status_code == 422


def test_pickup_orders_cannot_carry_delivery_fee(client: TestClient) -> None:
    product = _create_product(client, price="3.00")
    resp = client.post(
        "/v1/orders",
        json={
            "customer_name": "Caio",
            "fulfillment_method": "pickup",
            "delivery_fee": "5.00",
            "items": [{"product_id": product, "quantity": 1}],
        },
    )
    assert resp.status_code == 422


def test_capture_payment_moves_order_to_payment_confirmed(client: TestClient) -> None:
    product = _create_product(client, price="3.00")
    order = client.post(
        "/v1/orders",
        json={
            "customer_name": "Duda",
            "payment_method": "card",
            "items": [{"product_id": product, "quantity": 1}],
        },
    ).json()

    paid = client.post(f"/v1/orders/{order['id']}/payment", json={"payment_reference": "pi_123"})
    assert paid.status_code == 200
    assert paid.json()["status"] == "payment_confirmed"
    assert paid.json()["payment_reference"] == "pi_123"
    assert paid.json()["payment_method"] == "card"

    again = client.post(f"/v1/orders/{order['id']}/payment", json={"payment_reference": "pi_456"})
    assert again.status_code == 409


def test_get_unknown_order_is_404(client: TestClient) -> None:
    assert client.get("/v1/orders/999").status_code == 404
    assert client.post("/v1/orders/999/payment", json={"payment_reference": "x"}).status_code == 404
