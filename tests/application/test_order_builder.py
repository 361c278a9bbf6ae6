"""Tests for the order builder."""

from datetime import datetime, timedelta, timezone

import pytest

from quikpik.application.order_builder import OrderBuilder, merge_line_items
from quikpik.domain import (
    BelowMinimumOrderQuantity,
    DeliveryInfo,
    DuplicatePaymentReference,
    FulfillmentType,
    InsufficientStock,
    InvalidLineItem,
    LineItem,
    Money,
    OrderStatus,
    ProductNotFound,
)


@pytest.fixture
def builder(storage) -> OrderBuilder:
    return OrderBuilder(storage)


class TestMergeLineItems:
    """Tests for merge_line_items."""

    def test_repeated_products_merged_in_order(self) -> None:
        """Quantities for the same product are summed, first-seen order kept."""
        merged = merge_line_items(
            [LineItem("1", 2), LineItem("2", 1), LineItem("1", 3)]
        )
        assert merged == [LineItem("1", 5), LineItem("2", 1)]


class TestBuildOrder:
    """Tests for OrderBuilder.build_order."""

    @pytest.mark.asyncio
    async def test_builds_pending_order(self, storage, builder, product_factory, wholesaler_id, fee_schedule) -> None:
        """A valid cart becomes a persisted pending order."""
        await storage.save_product(product_factory("1", price="2.00", moq=5, stock=10))

        order = await builder.build_order(
            [LineItem("1", 5)],
            wholesaler_id=wholesaler_id,
            retailer_id="retailer-1",
            delivery=None,
            fee_schedule=fee_schedule,
        )

        assert order.status == OrderStatus.PENDING
        assert order.subtotal == Money(amount_cents=1000)
        assert order.platform_fee == Money(amount_cents=50)
        assert order.wholesaler_net == Money(amount_cents=950)
        assert await storage.get_order(order.id) is not None

    @pytest.mark.asyncio
    async def test_stock_not_deducted_on_build(self, storage, builder, product_factory, wholesaler_id, fee_schedule) -> None:
        """Building an order leaves stock untouched."""
        await storage.save_product(product_factory("1", stock=10))
        order = await builder.build_order(
            [LineItem("1", 4)], wholesaler_id, "retailer-1", None, fee_schedule
        )
        assert (await storage.get_product("1")).stock == 10
        assert not order.items[0].stock_deducted

    @pytest.mark.asyncio
    async def test_below_moq_names_product(self, storage, builder, product_factory, wholesaler_id, fee_schedule) -> None:
        """Quantity 4 against MOQ 5 fails naming product 1 and its MOQ."""
        await storage.save_product(product_factory("1", moq=5))

        with pytest.raises(BelowMinimumOrderQuantity) as exc_info:
            await builder.build_order([LineItem("1", 4)], wholesaler_id, "retailer-1", None, fee_schedule)

        assert exc_info.value.details["product_id"] == "1"
        assert exc_info.value.details["minimum_order_quantity"] == 5
        assert exc_info.value.details["requested_quantity"] == 4

    @pytest.mark.asyncio
    async def test_insufficient_stock(self, storage, builder, product_factory, wholesaler_id, fee_schedule) -> None:
        """Requests above stock are rejected when stock is enforced."""
        await storage.save_product(product_factory("1", stock=3))

        with pytest.raises(InsufficientStock) as exc_info:
            await builder.build_order([LineItem("1", 4)], wholesaler_id, "retailer-1", None, fee_schedule)

        assert exc_info.value.details["available_stock"] == 3

    @pytest.mark.asyncio
    async def test_stock_advisory_when_not_enforced(self, storage, builder, product_factory, wholesaler_id, fee_schedule) -> None:
        """A paid cart is built even when stock is short."""
        await storage.save_product(product_factory("1", stock=3))
        order = await builder.build_order(
            [LineItem("1", 4)], wholesaler_id, "retailer-1", None, fee_schedule, enforce_stock=False
        )
        assert order.items[0].quantity == 4

    @pytest.mark.asyncio
    async def test_unknown_product(self, builder, wholesaler_id, fee_schedule) -> None:
        """Missing products are rejected."""
        with pytest.raises(ProductNotFound):
            await builder.build_order([LineItem("missing", 1)], wholesaler_id, "retailer-1", None, fee_schedule)

    @pytest.mark.asyncio
    async def test_other_wholesalers_product(self, storage, builder, product_factory, fee_schedule) -> None:
        """Products of another wholesaler are treated as missing."""
        await storage.save_product(product_factory("1", wholesaler_id="wholesaler-2"))
        with pytest.raises(ProductNotFound):
            await builder.build_order([LineItem("1", 1)], "wholesaler-1", "retailer-1", None, fee_schedule)

    @pytest.mark.asyncio
    async def test_empty_cart(self, builder, wholesaler_id, fee_schedule) -> None:
        """An empty cart is rejected."""
        with pytest.raises(InvalidLineItem):
            await builder.build_order([], wholesaler_id, "retailer-1", None, fee_schedule)

    @pytest.mark.asyncio
    async def test_zero_quantity(self, storage, builder, product_factory, wholesaler_id, fee_schedule) -> None:
        """Quantities below one are rejected."""
        await storage.save_product(product_factory("1"))
        with pytest.raises(InvalidLineItem):
            await builder.build_order([LineItem("1", 0)], wholesaler_id, "retailer-1", None, fee_schedule)

    @pytest.mark.asyncio
    async def test_promo_price_snapshot(self, storage, builder, product_factory, wholesaler_id, fee_schedule) -> None:
        """Active promotions set the unit price at build time."""
        now = datetime(2026, 3, 2, tzinfo=timezone.utc)
        product = product_factory("1", price="2.00")
        product.promo_price = Money(amount_cents=150)
        product.promo_active = True
        product.promo_ends_at = now + timedelta(days=1)
        await storage.save_product(product)

        order = await builder.build_order(
            [LineItem("1", 2)], wholesaler_id, "retailer-1", None, fee_schedule, now=now
        )

        assert order.items[0].unit_price == Money(amount_cents=150)
        assert order.subtotal == Money(amount_cents=300)

    @pytest.mark.asyncio
    async def test_delivery_cost_added(self, storage, builder, product_factory, wholesaler_id, fee_schedule) -> None:
        """Delivery cost is added to the total."""
        await storage.save_product(product_factory("1", price="2.00"))
        delivery = DeliveryInfo(fulfillment_type=FulfillmentType.DELIVERY, delivery_cost=Money(amount_cents=450))
        order = await builder.build_order([LineItem("1", 5)], wholesaler_id, "retailer-1", delivery, fee_schedule)
        assert order.total == Money(amount_cents=1450)
        assert order.wholesaler_net == Money(amount_cents=950)

    @pytest.mark.asyncio
    async def test_duplicate_payment_reference(self, storage, builder, product_factory, wholesaler_id, fee_schedule) -> None:
        """Only one order may hold a payment reference."""
        await storage.save_product(product_factory("1"))
        await builder.build_order(
            [LineItem("1", 1)], wholesaler_id, "retailer-1", None, fee_schedule, payment_reference="pi_1"
        )
        with pytest.raises(DuplicatePaymentReference):
            await builder.build_order(
                [LineItem("1", 1)], wholesaler_id, "retailer-1", None, fee_schedule, payment_reference="pi_1"
            )
