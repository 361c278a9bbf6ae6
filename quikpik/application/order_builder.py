"""Order aggregate builder.

Turns a submitted cart into a persisted ``pending`` Order: every
product is looked up, checked against its MOQ and stock, and priced at
its effective unit price at build time. Stock is not deducted here.
"""

from collections.abc import Iterable
from datetime import datetime

import structlog

from quikpik.domain.base import utcnow
from quikpik.domain.entities import Order, OrderItem, Product
from quikpik.domain.exceptions import (
    BelowMinimumOrderQuantity,
    InsufficientStock,
    InvalidLineItem,
    ProductNotFound,
)
from quikpik.domain.pricing import PricedLine, compute_order_totals
from quikpik.domain.value_objects import CustomerContact, DeliveryInfo, FeeSchedule, LineItem
from quikpik.infrastructure.storage import Storage, get_storage

logger = structlog.get_logger()


def merge_line_items(line_items: Iterable[LineItem]) -> list[LineItem]:
    """Merge repeated products, summing quantities in first-seen order."""
    merged: dict[str, int] = {}
    for item in line_items:
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
    return [LineItem(product_id=pid, quantity=qty) for pid, qty in merged.items()]


class OrderBuilder:
    """Builds and persists orders from carts."""

    def __init__(self, storage: Storage | None = None) -> None:
        self.storage = storage or get_storage()

    async def _resolve_product(self, item: LineItem, wholesaler_id: str) -> Product:
        product = await self.storage.get_product(item.product_id)
        if product is None or product.wholesaler_id != wholesaler_id:
            raise ProductNotFound(item.product_id)
        return product

    async def build_order(
        self,
        line_items: Iterable[LineItem],
        wholesaler_id: str,
        retailer_id: str,
        delivery: DeliveryInfo | None,
        fee_schedule: FeeSchedule,
        customer: CustomerContact | None = None,
        payment_reference: str | None = None,
        enforce_stock: bool = True,
        now: datetime | None = None,
    ) -> Order:
        """Build a pending order from a cart and persist it.

        Args:
            line_items: Requested products and quantities.
            wholesaler_id: Wholesaler every product must belong to.
            retailer_id: Buying retailer.
            delivery: Fulfillment details; pickup when omitted.
            fee_schedule: Fee schedule frozen onto the order.
            customer: Retailer contact for notifications.
            payment_reference: Processor payment id, when payment came first.
            enforce_stock: When False, a stock shortfall is only logged.
            now: Pricing time for promotional windows.

        Returns:
            The persisted order in ``pending`` status.

        Raises:
            InvalidLineItem: If the cart is empty or a quantity is invalid.
            ProductNotFound: If a product is missing or owned by another wholesaler.
            BelowMinimumOrderQuantity: If a quantity is below the product MOQ.
            InsufficientStock: If ``enforce_stock`` and stock is short.
            DuplicatePaymentReference: If an order already holds ``payment_reference``.
        """
        items = merge_line_items(line_items)
        if not items:
            raise InvalidLineItem("an order needs at least one line item")

        now = now or utcnow()
        delivery = delivery or DeliveryInfo.pickup()
        order_items: list[OrderItem] = []
        priced: list[PricedLine] = []

        for item in items:
            if not isinstance(item.quantity, int) or isinstance(item.quantity, bool) or item.quantity < 1:
                raise InvalidLineItem("quantity must be at least 1", product_id=item.product_id, quantity=item.quantity)

            product = await self._resolve_product(item, wholesaler_id)
            if item.quantity < product.moq:
                raise BelowMinimumOrderQuantity(product.id, item.quantity, product.moq, product_name=product.name)
            if item.quantity > product.stock:
                if enforce_stock:
                    raise InsufficientStock(product.id, item.quantity, product.stock, product_name=product.name)
                logger.warning(
                    "Building order despite stock shortfall",
                    product_id=product.id,
                    requested=item.quantity,
                    available=product.stock,
                    payment_reference=payment_reference,
                )

            unit_price = product.effective_price(now)
            order_items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=item.quantity,
                    unit_price=unit_price,
                )
            )
            priced.append(PricedLine(unit_price=unit_price, quantity=item.quantity, moq=product.moq, product_id=product.id))

        totals = compute_order_totals(priced, fee_schedule, delivery_cost=delivery.delivery_cost)
        order = Order.create(
            wholesaler_id=wholesaler_id,
            retailer_id=retailer_id,
            items=order_items,
            totals=totals,
            fee_schedule=fee_schedule,
            customer=customer,
            delivery=delivery,
            payment_reference=payment_reference,
        )
        await self.storage.create_order(order)

        logger.info(
            "Order built",
            order_id=order.id,
            wholesaler_id=wholesaler_id,
            retailer_id=retailer_id,
            item_count=order.item_count,
            total_cents=order.total.amount_cents,
            payment_reference=payment_reference,
        )
        return order
