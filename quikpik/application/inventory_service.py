"""Inventory adjustment service.

Every stock change is a compare-and-swap against storage: read the
product, compute the new level, and write it only if the stored level is
still the one that was read. Contention is retried a bounded number of
times. Each successful change writes a StockMovement.
"""

import structlog

from quikpik.domain.entities import MovementReason, StockMovement
from quikpik.domain.exceptions import InsufficientStock, ProductNotFound, StockContention
from quikpik.infrastructure.storage import Storage, get_storage

logger = structlog.get_logger()

MAX_CAS_ATTEMPTS = 5


class InventoryAdjuster:
    """Applies stock changes with an audit trail."""

    def __init__(self, storage: Storage | None = None, max_attempts: int = MAX_CAS_ATTEMPTS) -> None:
        """Initialize inventory adjuster.

        Args:
            storage: Storage backend. Defaults to the configured backend.
            max_attempts: Compare-and-swap attempts before giving up.
        """
        self.storage = storage or get_storage()
        self.max_attempts = max_attempts

    async def deduct(
        self,
        product_id: str,
        quantity: int,
        reason: MovementReason = MovementReason.ORDER_CONFIRMED,
        order_id: str | None = None,
    ) -> StockMovement:
        """Remove ``quantity`` units from stock.

        Raises:
            ProductNotFound: If the product does not exist.
            InsufficientStock: If stock is below ``quantity`` at deduction time.
            StockContention: If the compare-and-swap keeps losing.
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        return await self._apply(product_id, -quantity, reason, order_id=order_id)

    async def restore(
        self,
        product_id: str,
        quantity: int,
        reason: MovementReason,
        order_id: str | None = None,
    ) -> StockMovement:
        """Return ``quantity`` units to stock.

        Raises:
            ProductNotFound: If the product does not exist.
            StockContention: If the compare-and-swap keeps losing.
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        return await self._apply(product_id, quantity, reason, order_id=order_id)

    async def adjust(self, product_id: str, delta: int, note: str | None = None) -> StockMovement:
        """Manual stock correction by a wholesaler.

        Raises:
            ProductNotFound: If the product does not exist.
            InsufficientStock: If the correction would take stock below zero.
        """
        if delta == 0:
            raise ValueError("delta must be non-zero")
        return await self._apply(product_id, delta, MovementReason.MANUAL_ADJUSTMENT, note=note)

    async def movements(self, product_id: str) -> list[StockMovement]:
        """List the stock movements recorded for a product.

        Raises:
            ProductNotFound: If the product does not exist.
        """
        if await self.storage.get_product(product_id) is None:
            raise ProductNotFound(product_id)
        return await self.storage.list_stock_movements(product_id)

    async def _apply(
        self,
        product_id: str,
        delta: int,
        reason: MovementReason,
        order_id: str | None = None,
        note: str | None = None,
    ) -> StockMovement:
        for attempt in range(self.max_attempts):
            product = await self.storage.get_product(product_id)
            if product is None:
                raise ProductNotFound(product_id)

            before = product.stock
            after = before + delta
            if after < 0:
                raise InsufficientStock(product_id, -delta, before, product_name=product.name)

            if await self.storage.update_product_stock(product_id, after, expected_stock=before):
                movement = StockMovement.record(product, delta, before, reason, order_id=order_id, note=note)
                await self.storage.create_stock_movement(movement)
                logger.info(
                    "Stock adjusted",
                    product_id=product_id,
                    delta=delta,
                    stock_after=after,
                    reason=reason.value,
                    order_id=order_id,
                )
                return movement

            logger.debug("Stock changed concurrently, retrying", product_id=product_id, attempt=attempt + 1)

        logger.error("Stock update contention", product_id=product_id, attempts=self.max_attempts)
        raise StockContention(product_id, self.max_attempts)
