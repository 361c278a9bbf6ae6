"""Storage contract and in-memory implementation.

The core reaches persistence only through :class:`Storage`. Writes that
race with other requests are conditional: stock updates compare against
the stock level the caller read, and order writes compare against the
order version the caller read (status writes also against the status).
A ``False`` return means another writer got there first and the caller
must re-read. A winning order write stores ``expected_version + 1`` and
sets it on the order.
"""

import asyncio
import copy
from datetime import datetime
from typing import Protocol

import structlog

from quikpik.domain.entities import Order, Product, StockMovement
from quikpik.domain.exceptions import DuplicatePaymentReference
from quikpik.domain.state_machines import OrderStatus
from quikpik.infrastructure.config import settings

logger = structlog.get_logger()


class Storage(Protocol):
    """Persistence operations needed by the settlement core."""

    async def get_product(self, product_id: str) -> Product | None: ...

    async def save_product(self, product: Product) -> None: ...

    async def update_product_stock(self, product_id: str, new_stock: int, expected_stock: int) -> bool:
        """Set stock to ``new_stock`` only if it is still ``expected_stock``."""
        ...

    async def create_order(self, order: Order) -> None:
        """Persist an order and its items atomically.

        Raises:
            DuplicatePaymentReference: If another order holds the same payment reference.
        """
        ...

    async def get_order(self, order_id: str) -> Order | None: ...

    async def get_order_by_payment_reference(self, payment_reference: str) -> Order | None: ...

    async def update_order_status(self, order: Order, expected_status: OrderStatus, expected_version: int) -> bool:
        """Persist ``order`` only if the stored status and version are still the expected ones."""
        ...

    async def update_order(self, order: Order, expected_version: int) -> bool:
        """Persist non-status fields (payment reference, refunds, stock flags) if the version still matches."""
        ...

    async def list_orders_due_for_archive(self, now: datetime) -> list[Order]: ...

    async def create_stock_movement(self, movement: StockMovement) -> None: ...

    async def list_stock_movements(self, product_id: str) -> list[StockMovement]: ...


class InMemoryStorage:
    """In-memory storage.

    Stores deep copies so callers can only change persisted state
    through the storage methods. A single lock serialises writes, which
    makes every conditional update atomic.
    """

    def __init__(self) -> None:
        self._products: dict[str, Product] = {}
        self._orders: dict[str, Order] = {}
        self._by_payment_reference: dict[str, str] = {}
        self._movements: list[StockMovement] = []
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    async def get_product(self, product_id: str) -> Product | None:
        product = self._products.get(product_id)
        return copy.deepcopy(product) if product else None

    async def save_product(self, product: Product) -> None:
        async with self._lock:
            self._products[product.id] = copy.deepcopy(product)

    async def update_product_stock(self, product_id: str, new_stock: int, expected_stock: int) -> bool:
        async with self._lock:
            product = self._products.get(product_id)
            if product is None or product.stock != expected_stock:
                return False
            product.stock = new_stock
            return True

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def create_order(self, order: Order) -> None:
        async with self._lock:
            ref = order.payment_reference
            if ref and ref in self._by_payment_reference:
                raise DuplicatePaymentReference(ref)
            self._orders[order.id] = copy.deepcopy(order)
            if ref:
                self._by_payment_reference[ref] = order.id

    async def get_order(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def get_order_by_payment_reference(self, payment_reference: str) -> Order | None:
        order_id = self._by_payment_reference.get(payment_reference)
        if order_id is None:
            return None
        return await self.get_order(order_id)

    async def update_order_status(self, order: Order, expected_status: OrderStatus, expected_version: int) -> bool:
        async with self._lock:
            stored = self._orders.get(order.id)
            if stored is None or stored.status != expected_status or stored.version != expected_version:
                return False
            self._put(order, expected_version + 1)
            order.version = expected_version + 1
            return True

    async def update_order(self, order: Order, expected_version: int) -> bool:
        async with self._lock:
            stored = self._orders.get(order.id)
            if stored is None or stored.version != expected_version:
                return False
            # Status only moves through update_order_status
            self._put(order, expected_version + 1, status=stored.status)
            order.version = expected_version + 1
            return True

    async def list_orders_due_for_archive(self, now: datetime) -> list[Order]:
        return [copy.deepcopy(o) for o in self._orders.values() if o.is_archive_due(now)]

    def _put(self, order: Order, version: int, status: OrderStatus | None = None) -> None:
        if order.payment_reference:
            owner = self._by_payment_reference.get(order.payment_reference)
            if owner is not None and owner != order.id:
                raise DuplicatePaymentReference(order.payment_reference)
            self._by_payment_reference[order.payment_reference] = order.id
        stored = copy.deepcopy(order)
        stored.version = version
        if status is not None:
            stored.status = status
        self._orders[order.id] = stored

    # -------------------------------------------------------------------------
    # Stock movements
    # -------------------------------------------------------------------------

    async def create_stock_movement(self, movement: StockMovement) -> None:
        async with self._lock:
            self._movements.append(copy.deepcopy(movement))

    async def list_stock_movements(self, product_id: str) -> list[StockMovement]:
        return [copy.deepcopy(m) for m in self._movements if m.product_id == product_id]


# Global storage instance
_storage: Storage | None = None


def get_storage() -> Storage:
    """Get or create the configured storage backend."""
    global _storage
    if _storage is None:
        if settings.storage_backend == "sql":
            from quikpik.infrastructure.database import get_session_factory
            from quikpik.infrastructure.sql_storage import SqlStorage

            _storage = SqlStorage(get_session_factory())
        else:
            _storage = InMemoryStorage()
        logger.info("Storage initialised", backend=settings.storage_backend)
    return _storage


def set_storage(storage: Storage | None) -> None:
    """Replace the storage backend (for testing)."""
    global _storage
    _storage = storage
