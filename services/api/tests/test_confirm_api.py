from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from services.api.app.services.payment_base import PaymentGatewayError, RefundReceipt
from services.api.app.services.payment_factory import get_refund_gateway


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    db_path = tmp_path / "saveup_confirm.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("SAVEUP_DB_AUTO_CREATE", "true")
    monkeypatch.setenv("SAVEUP_PAYMENT_GATEWAY", "mock")

    from services.api.app.main import app

    with TestClient(app) as c:
        yield c


class _RaisingGateway:
    provider = "FAKE"

    def refund(
        self,
        payment_reference: str,
        amount: Decimal,
        *,
        idempotency_key: str,
        reason: str | None = None,
    ) -> RefundReceipt:
        del payment_reference, amount, idempotency_key, reason
        raise PaymentGatewayError("provider timeout")


def _create_product(client: TestClient, *, price: str, category: str = "Dairy") -> int:
    resp = client.post(
        "/v1/products",
        json={
            "name": f"{category} {price}",
            "category": category,
            "original_price": "50.00",
            "discount_price": price,
            "quantity": 20,
            # Far enough out to always land in the standard tier.
            "expiration_date": (date.today() + timedelta(days=60)).isoformat(),
        },
    )
    assert resp.status_code == 200
    return resp.json()["id"]


def _paid_order(client: TestClient, *, payment_reference: str = "pix123") -> dict:
    a = _create_product(client, price="10.00")
    b = _create_product(client, price="5.00")

    order = client.post(
        "/v1/orders",
        json={
            "customer_name": "Ana",
            "customer_email": "ana@example.com",
            "payment_method": "pix",
            "items": [
                {"product_id": a, "quantity": 2},
                {"product_id": b, "quantity": 1},
            ],
        },
    ).json()

    paid = client.post(
        f"/v1/orders/{order['id']}/payment", json={"payment_reference": payment_reference}
    )
    assert paid.status_code == 200
    return paid.json()


def _decisions(order: dict, *flags: bool) -> dict:
    return {
        "decisions": [
            {"order_item_id": item["id"], "confirmed": flag}
            for item, flag in zip(order["items"], flags)
        ]
    }


def test_partial_confirmation_refunds_denied_items(client: TestClient) -> None:
    order = _paid_order(client)

    resp = client.post(f"/v1/staff/orders/{order['id']}/confirm", json=_decisions(order, True, False))
    assert resp.status_code == 200

    data = resp.json()
    assert data["status"] == "partially_confirmed"
    assert Decimal(data["confirmed_total"]) == Decimal("20.00")
    assert Decimal(data["refund_amount"]) == Decimal("5.00")
    assert data["refund_required"] is True
    assert Decimal(data["refund"]["amount"]) == Decimal("5.00")
    assert data["confirmed_item_ids"] == [order["items"][0]["id"]]
    assert data["denied_item_ids"] == [order["items"][1]["id"]]

    stored = client.get(f"/v1/orders/{order['id']}").json()
    assert stored["status"] == "partially_confirmed"
    assert [i["confirmation_status"] for i in stored["items"]] == ["confirmed", "denied"]
    assert Decimal(stored["refund_amount"]) == Decimal("5.00")
    assert stored["refund_id"] == data["refund"]["refund_id"]
    assert stored["refund_status"] == "approved"


def test_full_confirmation_awards_eco_points(client: TestClient) -> None:
    order = _paid_order(client)

    resp = client.post(f"/v1/staff/orders/{order['id']}/confirm", json=_decisions(order, True, True))
    assert resp.status_code == 200

    data = resp.json()
    assert data["status"] == "confirmed"
    assert data["refund_required"] is False
    assert data["refund"] is None
    # Three dairy units in the standard tier: round(10 * 1.2) = 12 each.
    assert data["eco_points_awarded"] == 36

    balance = client.get("/v1/customers/ana@example.com/eco-points").json()
    assert balance["total_points"] == 36
    assert balance["actions"][0]["order_id"] == order["id"]
    assert balance["actions"][0]["action_type"] == "purchase_near_expiry"


def test_denied_items_earn_no_eco_points(client: TestClient) -> None:
    order = _paid_order(client)

    data = client.post(
        f"/v1/staff/orders/{order['id']}/confirm", json=_decisions(order, False, True)
    ).json()
    assert data["eco_points_awarded"] == 12


def test_denying_everything_cancels_and_refunds_total(client: TestClient) -> None:
    order = _paid_order(client)

    data = client.post(
        f"/v1/staff/orders/{order['id']}/confirm", json=_decisions(order, False, False)
    ).json()

    assert data["status"] == "cancelled"
    assert Decimal(data["confirmed_total"]) == Decimal("0.00")
    assert Decimal(data["refund_amount"]) == Decimal(order["total_amount"])
    assert data["eco_points_awarded"] == 0

    balance = client.get("/v1/customers/ana@example.com/eco-points").json()
    assert balance["total_points"] == 0
    assert balance["actions"] == []


def test_missing_decision_is_422_and_changes_nothing(client: TestClient) -> None:
    order = _paid_order(client)
    payload = _decisions(order, True)

    resp = client.post(f"/v1/staff/orders/{order['id']}/confirm", json=payload)
    assert resp.status_code == 422
    assert "Missing decisions" in resp.json()["detail"]

    stored = client.get(f"/v1/orders/{order['id']}").json()
    assert stored["status"] == "payment_confirmed"
    assert all(i["confirmation_status"] is None for i in stored["items"])


def test_second_confirmation_is_rejected(client: TestClient) -> None:
    order = _paid_order(client)
    url = f"/v1/staff/orders/{order['id']}/confirm"

    assert client.post(url, json=_decisions(order, True, False)).status_code == 200

    again = client.post(url, json=_decisions(order, True, True))
    assert again.status_code == 422
    assert client.get(f"/v1/orders/{order['id']}").json()["status"] == "partially_confirmed"


def test_refund_failure_leaves_order_untouched(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    import services.api.app.routers.order as order_router

    order = _paid_order(client)
    monkeypatch.setattr(order_router, "get_refund_gateway", lambda: _RaisingGateway())

    resp = client.post(f"/v1/staff/orders/{order['id']}/confirm", json=_decisions(order, True, False))
    assert resp.status_code == 502
    assert "provider timeout" in resp.json()["detail"]

    stored = client.get(f"/v1/orders/{order['id']}").json()
    assert stored["status"] == "payment_confirmed"
    assert all(i["confirmation_status"] is None for i in stored["items"])
    assert stored["refund_amount"] is None

    balance = client.get("/v1/customers/ana@example.com/eco-points").json()
    assert balance["total_points"] == 0

    events = client.get(f"/v1/orders/{order['id']}/events").json()
    assert events[-1]["event_type"] == "CONFIRMATION_FAILED"

    # The same submission goes through once the provider recovers.
    monkeypatch.setattr(order_router, "get_refund_gateway", get_refund_gateway)
    retry = client.post(
        f"/v1/staff/orders/{order['id']}/confirm", json=_decisions(order, True, False)
    )
    assert retry.status_code == 200


def test_mock_gateway_rejection_is_502(client: TestClient) -> None:
    order = _paid_order(client, payment_reference="fail_pix")

    resp = client.post(f"/v1/staff/orders/{order['id']}/confirm", json=_decisions(order, True, False))
    assert resp.status_code == 502
    assert client.get(f"/v1/orders/{order['id']}").json()["status"] == "payment_confirmed"


def test_unknown_order_is_404(client: TestClient) -> None:
    resp = client.post("/v1/staff/orders/999/confirm", json={"decisions": []})
    assert resp.status_code == 404


def test_unknown_gateway_configuration_is_500(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    order = _paid_order(client)
    monkeypatch.setenv("SAVEUP_PAYMENT_GATEWAY", "nope")

    resp = client.post(f"/v1/staff/orders/{order['id']}/confirm", json=_decisions(order, True, True))
    assert resp.status_code == 500


def test_unconfigured_mercadopago_is_503(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    order = _paid_order(client)
    monkeypatch.setenv("SAVEUP_PAYMENT_GATEWAY", "mercadopago")
    monkeypatch.delenv("MERCADOPAGO_ACCESS_TOKEN", raising=False)

    resp = client.post(f"/v1/staff/orders/{order['id']}/confirm", json=_decisions(order, True, True))
    assert resp.status_code == 503


def test_denied_free_item_reports_refund_without_moving_money(client: TestClient) -> None:
    paid = _create_product(client, price="10.00")
    free = _create_product(client, price="0.00")
    order = client.post(
        "/v1/orders",
        json={
            "customer_name": "Ana",
            "payment_method": "pix",
            "items": [
                {"product_id": paid, "quantity": 1},
                {"product_id": free, "quantity": 1},
            ],
        },
    ).json()
    order = client.post(
        f"/v1/orders/{order['id']}/payment", json={"payment_reference": "pix123"}
    ).json()

    data = client.post(
        f"/v1/staff/orders/{order['id']}/confirm", json=_decisions(order, True, False)
    ).json()

    assert data["status"] == "partially_confirmed"
    assert data["refund_required"] is True
    assert Decimal(data["refund_amount"]) == Decimal("0.00")
    assert data["refund"] is None
    assert client.get(f"/v1/orders/{order['id']}").json()["refund_id"] is None


def test_refund_is_recorded_when_order_update_fails(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    import services.api.app.routers.order as order_router

    order = _paid_order(client)

    def _broken_award(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(order_router, "_award_eco_points", _broken_award)

    with pytest.raises(RuntimeError, match="database went away"):
        client.post(f"/v1/staff/orders/{order['id']}/confirm", json=_decisions(order, True, False))

    stored = client.get(f"/v1/orders/{order['id']}").json()
    assert stored["status"] == "payment_confirmed"
    assert stored["refund_id"] is None

    events = client.get(f"/v1/orders/{order['id']}/events").json()
    assert events[-1]["event_type"] == "REFUND_ISSUED"
    assert events[-1]["payload"]["order_updated"] is False
    assert events[-1]["payload"]["refund_id"].startswith("rf_")
    assert Decimal(events[-1]["payload"]["amount"]) == Decimal("5.00")
