"""Tests for API key authentication."""

from fastapi.testclient import TestClient


class TestApiKeyMiddleware:
    """Tests for ApiKeyMiddleware."""

    def test_missing_header(self, client: TestClient) -> None:
        """Protected endpoints need an Authorization header."""
        response = client.get("/orders/some-order")
        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_wrong_scheme(self, client: TestClient) -> None:
        """Only Bearer credentials are accepted."""
        response = client.get("/orders/some-order", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_invalid_key(self, client: TestClient) -> None:
        """Unknown keys are rejected."""
        response = client.get("/orders/some-order", headers={"Authorization": "Bearer wrong-key"})
        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_API_KEY"

    def test_valid_key(self, auth_client: TestClient) -> None:
        """Valid keys reach the endpoint."""
        response = auth_client.get("/orders/some-order")
        assert response.status_code == 404

    def test_webhooks_are_public(self, client: TestClient) -> None:
        """Payment webhooks authenticate by signature instead."""
        response = client.post("/webhooks/payments", content="{}")
        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_SIGNATURE"
