"""Tests for the pricing quote endpoint."""

from fastapi.testclient import TestClient


class TestQuote:
    """Tests for POST /pricing/quote."""

    def test_wholesaler_funded_quote(self, auth_client: TestClient) -> None:
        """5 x 2.00 at 5% quotes 10.00 / 0.50 / 9.50."""
        response = auth_client.post(
            "/pricing/quote",
            json={
                "lines": [{"unit_price": "2.00", "quantity": 5, "moq": 5}],
                "fee_model": "wholesaler_funded",
                "commission_rate": "0.05",
            },
        )

        assert response.status_code == 200
        totals = response.json()["totals"]
        assert totals["subtotal"]["amount"] == 1000
        assert totals["platform_fee"]["amount"] == 50
        assert totals["wholesaler_net"]["amount"] == 950
        assert totals["total"]["amount"] == 1000

    def test_customer_funded_quote(self, auth_client: TestClient) -> None:
        """Surcharges are added on top for the retailer."""
        response = auth_client.post(
            "/pricing/quote",
            json={
                "lines": [{"unit_price": "2.00", "quantity": 5}],
                "fee_model": "customer_funded",
                "commission_rate": "0.05",
                "surcharge_rate": "0.055",
                "fixed_surcharge": "0.50",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["fee_model"] == "customer_funded"
        assert data["totals"]["customer_fee"]["amount"] == 105
        assert data["totals"]["total"]["amount"] == 1105

    def test_below_moq(self, auth_client: TestClient) -> None:
        """Lines below MOQ cannot be quoted."""
        response = auth_client.post(
            "/pricing/quote",
            json={"lines": [{"unit_price": "2.00", "quantity": 4, "moq": 5, "product_id": "1"}]},
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "INVALID_LINE_ITEM"

    def test_bad_price(self, auth_client: TestClient) -> None:
        """Non-positive prices cannot be quoted."""
        response = auth_client.post("/pricing/quote", json={"lines": [{"unit_price": "0", "quantity": 1}]})
        assert response.status_code == 422
