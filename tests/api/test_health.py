"""Tests for health check endpoints."""

from fastapi.testclient import TestClient

from quikpik.application.notifications import HttpNotifier, set_notifier
from quikpik.main import app


def test_health_check(client: TestClient) -> None:
    """Test health endpoint returns healthy status."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "quikpik-settlement"
    assert "version" in data


def test_readiness_check(client: TestClient) -> None:
    """Test readiness endpoint returns ready status."""
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"


def test_request_id_echoed(client: TestClient) -> None:
    """Request IDs are echoed back on the response."""
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_shutdown_closes_notifier() -> None:
    """Application shutdown closes the HTTP notifier's client."""

    class RecordingNotifier(HttpNotifier):
        closed = False

        async def close(self) -> None:
            self.closed = True

    notifier = RecordingNotifier(None, None)
    set_notifier(notifier)

    with TestClient(app):
        pass

    assert notifier.closed
