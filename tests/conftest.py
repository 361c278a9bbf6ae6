"""Shared fixtures for settlement tests."""

from decimal import Decimal

import pytest

from quikpik.domain.entities import Product
from quikpik.domain.value_objects import FeeSchedule, Money
from quikpik.infrastructure.storage import InMemoryStorage

WHOLESALER_ID = "wholesaler-1"


def make_product(
    product_id: str = "1",
    price: str = "2.00",
    moq: int = 1,
    stock: int = 100,
    wholesaler_id: str = WHOLESALER_ID,
    name: str | None = None,
) -> Product:
    """Build a product priced in GBP."""
    return Product(
        id=product_id,
        wholesaler_id=wholesaler_id,
        name=name or f"Product {product_id}",
        price=Money.parse(price),
        moq=moq,
        stock=stock,
    )


@pytest.fixture
def storage() -> InMemoryStorage:
    """Fresh in-memory storage."""
    return InMemoryStorage()


@pytest.fixture
def fee_schedule() -> FeeSchedule:
    """5% wholesaler-funded commission."""
    return FeeSchedule.wholesaler_funded(Decimal("0.05"))


@pytest.fixture
def wholesaler_id() -> str:
    return WHOLESALER_ID


@pytest.fixture
def product_factory():
    """Factory building GBP products for the default wholesaler."""
    return make_product
