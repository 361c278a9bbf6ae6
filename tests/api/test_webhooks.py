"""Tests for the payment webhook endpoint.

Tests:
- Signature verification
- Settlement of orders created before payment
- Pay-first orders built from cart metadata
- Acknowledgement of rejected events
"""

import json

import pytest
from fastapi.testclient import TestClient

from quikpik.application.webhook_service import PaymentSignatureVerifier
from quikpik.domain.entities import Product
from quikpik.domain.value_objects import Money
from quikpik.infrastructure.config import settings

WHOLESALER_ID = "wholesaler-1"


def sign(body: str) -> str:
    return PaymentSignatureVerifier(secret=settings.webhook_secret).sign(body)


def payment_event(metadata: dict, amount: int = 1000, event_id: str = "evt_1", reference: str = "pi_1") -> str:
    return json.dumps(
        {
            "id": event_id,
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": reference,
                    "amount_received": amount,
                    "currency": "gbp",
                    "metadata": metadata,
                }
            },
        }
    )


def post_event(client: TestClient, body: str, signature: str | None = None):
    return client.post(
        "/webhooks/payments",
        content=body,
        headers={"Content-Type": "application/json", "Payment-Signature": signature or sign(body)},
    )


@pytest.fixture
def products(seed_products) -> None:
    seed_products(
        Product(
            id="1",
            wholesaler_id=WHOLESALER_ID,
            name="Crisps",
            price=Money(amount_cents=200),
            moq=5,
            stock=10,
        )
    )


@pytest.fixture
def order_id(auth_client: TestClient, products) -> str:
    response = auth_client.post(
        "/orders",
        json={
            "wholesaler_id": WHOLESALER_ID,
            "retailer_id": "retailer-1",
            "items": [{"product_id": "1", "quantity": 5}],
        },
    )
    return response.json()["id"]


class TestSignature:
    """Tests for webhook signature checks."""

    def test_missing_signature(self, client: TestClient) -> None:
        """Unsigned deliveries are rejected."""
        response = client.post("/webhooks/payments", content=payment_event({}))
        assert response.status_code == 401

    def test_bad_signature(self, client: TestClient) -> None:
        """Tampered deliveries are rejected."""
        body = payment_event({"order_id": "o1"})
        signature = sign(body.replace("o1", "o2"))
        response = post_event(client, body, signature)
        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_SIGNATURE"

    def test_non_object_body(self, client: TestClient) -> None:
        """Signed bodies must be JSON objects."""
        response = post_event(client, "[1, 2, 3]")
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_PAYLOAD"


class TestSettlement:
    """Tests for settling orders through the webhook."""

    def test_settles_order(self, client: TestClient, auth_client: TestClient, order_id: str) -> None:
        """A confirmed payment moves the order to paid."""
        response = post_event(client, payment_event({"order_id": order_id}))

        assert response.status_code == 200
        assert response.json() == {"received": True, "event_id": "evt_1"}
        order = auth_client.get(f"/orders/{order_id}").json()
        assert order["status"] == "paid"
        assert order["payment_reference"] == "pi_1"
        assert order["items"][0]["stock_deducted"] is True

        movements = auth_client.get("/inventory/1/movements").json()["movements"]
        assert [m["delta"] for m in movements] == [-5]

    def test_replay_acknowledged_once(self, client: TestClient, auth_client: TestClient, order_id: str) -> None:
        """Replayed deliveries are acknowledged without a second deduction."""
        body = payment_event({"order_id": order_id})
        post_event(client, body)

        response = post_event(client, body)

        assert response.status_code == 200
        movements = auth_client.get("/inventory/1/movements").json()["movements"]
        assert len(movements) == 1

    def test_amount_mismatch_acknowledged(self, client: TestClient, auth_client: TestClient, order_id: str) -> None:
        """Rejected payments are acknowledged and recorded, the order is untouched."""
        response = post_event(client, payment_event({"order_id": order_id}, amount=999))

        assert response.status_code == 200
        assert auth_client.get(f"/orders/{order_id}").json()["status"] == "pending"
        event = auth_client.get("/webhooks/events/evt_1").json()
        assert event["status"] == "failed"
        assert event["error_code"] == "AMOUNT_MISMATCH"

    def test_pay_first_cart(self, client: TestClient, auth_client: TestClient, products) -> None:
        """A paid cart builds and settles its order."""
        metadata = {
            "wholesaler_id": WHOLESALER_ID,
            "cart": json.dumps([{"productId": 1, "quantity": 5}]),
            "customer": json.dumps({"name": "Corner Shop", "email": "shop@example.com"}),
        }

        response = post_event(client, payment_event(metadata))

        assert response.status_code == 200
        event = auth_client.get("/webhooks/events/evt_1").json()
        assert event["status"] == "processed"
        order = auth_client.get(f"/orders/{event['order_id']}").json()
        assert order["status"] == "paid"
        assert order["retailer_id"] == "guest:shop@example.com"

    def test_unresolvable_metadata_acknowledged(self, client: TestClient, auth_client: TestClient) -> None:
        """Events that match no order are acknowledged and logged."""
        response = post_event(client, payment_event({"campaign": "spring"}))

        assert response.status_code == 200
        assert auth_client.get("/webhooks/events/evt_1").json()["error_code"] == "UNRESOLVABLE_EVENT"

    def test_unknown_event(self, auth_client: TestClient) -> None:
        """Unknown event ids return 404."""
        response = auth_client.get("/webhooks/events/evt_missing")
        assert response.status_code == 404
