"""Shared fixtures for API tests."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from quikpik.application.notifications import LoggingNotifier, set_notifier
from quikpik.application.order_service import reset_order_service
from quikpik.application.settlement_service import reset_settlement_reconciler
from quikpik.application.webhook_service import reset_webhook_service
from quikpik.infrastructure.config import settings
from quikpik.infrastructure.storage import InMemoryStorage, set_storage
from quikpik.main import app


@pytest.fixture(autouse=True)
def api_storage() -> InMemoryStorage:
    """Fresh in-memory storage and services for each test."""
    storage = InMemoryStorage()
    set_storage(storage)
    set_notifier(LoggingNotifier())
    reset_order_service()
    reset_settlement_reconciler()
    reset_webhook_service()
    yield storage
    set_storage(None)
    set_notifier(None)
    reset_order_service()
    reset_settlement_reconciler()
    reset_webhook_service()


@pytest.fixture
def seed_products(api_storage):
    """Save products into the API's storage."""

    def seed(*products) -> None:
        for product in products:
            asyncio.run(api_storage.save_product(product))

    return seed


@pytest.fixture
def client() -> TestClient:
    """Create test client without authentication."""
    return TestClient(app)


@pytest.fixture
def auth_client() -> TestClient:
    """Create test client with valid API key authentication."""
    return TestClient(
        app,
        headers={"Authorization": f"Bearer {settings.api_key}"},
    )
