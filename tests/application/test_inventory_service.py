"""Tests for the inventory adjuster."""

import pytest

from quikpik.application.inventory_service import InventoryAdjuster, StockContention
from quikpik.domain import InsufficientStock, MovementReason, ProductNotFound


class ContendedStorage:
    """Storage wrapper whose stock writes always lose the race."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.attempts = 0

    async def get_product(self, product_id):
        return await self.inner.get_product(product_id)

    async def update_product_stock(self, product_id, new_stock, expected_stock):
        self.attempts += 1
        return False


@pytest.fixture
def adjuster(storage) -> InventoryAdjuster:
    return InventoryAdjuster(storage)


class TestInventoryAdjuster:
    """Tests for InventoryAdjuster."""

    @pytest.mark.asyncio
    async def test_deduct_then_restore(self, storage, adjuster, product_factory) -> None:
        """Deducting then restoring returns stock to its starting level."""
        await storage.save_product(product_factory("1", stock=10))

        await adjuster.deduct("1", 4, order_id="order-1")
        assert (await storage.get_product("1")).stock == 6

        await adjuster.restore("1", 4, MovementReason.ORDER_CANCELLED, order_id="order-1")
        assert (await storage.get_product("1")).stock == 10

    @pytest.mark.asyncio
    async def test_movements_recorded(self, storage, adjuster, product_factory) -> None:
        """Each change writes an audit movement."""
        await storage.save_product(product_factory("1", stock=10))
        await adjuster.deduct("1", 4, order_id="order-1")
        await adjuster.restore("1", 4, MovementReason.ORDER_REFUNDED, order_id="order-1")

        movements = await adjuster.movements("1")

        assert [(m.delta, m.stock_before, m.stock_after) for m in movements] == [(-4, 10, 6), (4, 6, 10)]
        assert movements[0].reason == MovementReason.ORDER_CONFIRMED
        assert movements[1].reason == MovementReason.ORDER_REFUNDED
        assert movements[0].order_id == "order-1"

    @pytest.mark.asyncio
    async def test_deduct_never_goes_negative(self, storage, adjuster, product_factory) -> None:
        """Deducting more than stock fails and leaves stock unchanged."""
        await storage.save_product(product_factory("1", stock=3))

        with pytest.raises(InsufficientStock) as exc_info:
            await adjuster.deduct("1", 4)

        assert exc_info.value.available == 3
        assert (await storage.get_product("1")).stock == 3
        assert await storage.list_stock_movements("1") == []

    @pytest.mark.asyncio
    async def test_manual_adjustment(self, storage, adjuster, product_factory) -> None:
        """Manual corrections are recorded with their note."""
        await storage.save_product(product_factory("1", stock=3))
        movement = await adjuster.adjust("1", 7, note="Recount")
        assert movement.reason == MovementReason.MANUAL_ADJUSTMENT
        assert movement.note == "Recount"
        assert (await storage.get_product("1")).stock == 10

    @pytest.mark.asyncio
    async def test_zero_adjustment_rejected(self, adjuster) -> None:
        """A zero delta is not a correction."""
        with pytest.raises(ValueError):
            await adjuster.adjust("1", 0)

    @pytest.mark.asyncio
    async def test_unknown_product(self, adjuster) -> None:
        """Adjusting a missing product fails."""
        with pytest.raises(ProductNotFound):
            await adjuster.deduct("missing", 1)
        with pytest.raises(ProductNotFound):
            await adjuster.movements("missing")

    @pytest.mark.asyncio
    async def test_contention_gives_up(self, storage, product_factory) -> None:
        """Lost compare-and-swaps are retried a bounded number of times."""
        await storage.save_product(product_factory("1", stock=10))
        contended = ContendedStorage(storage)
        adjuster = InventoryAdjuster(contended, max_attempts=3)

        with pytest.raises(StockContention) as exc_info:
            await adjuster.deduct("1", 1)

        assert exc_info.value.error_code == "STOCK_CONTENTION"
        assert contended.attempts == 3
        assert (await storage.get_product("1")).stock == 10
