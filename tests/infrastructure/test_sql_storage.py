"""Tests for the SQL storage backend, run against SQLite."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from quikpik.application.inventory_service import InventoryAdjuster
from quikpik.application.notifications import LoggingNotifier, NotificationDispatcher
from quikpik.application.order_builder import OrderBuilder
from quikpik.application.order_service import OrderService
from quikpik.application.settlement_service import (
    PaymentConfirmationEvent,
    PaymentEventType,
    ReconciliationStatus,
    SettlementReconciler,
)
from quikpik.domain import (
    CustomerContact,
    DeliveryInfo,
    DuplicatePaymentReference,
    FulfillmentType,
    InvalidRefundAmount,
    LineItem,
    Money,
    MovementReason,
    OrderStatus,
)
from quikpik.infrastructure import models  # noqa: F401
from quikpik.infrastructure.database import Base
from quikpik.infrastructure.sql_storage import SqlStorage

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def sql_storage(tmp_path):
    """SqlStorage over a fresh SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'quikpik.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SqlStorage(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


@pytest_asyncio.fixture
async def order(sql_storage, product_factory, wholesaler_id, fee_schedule):
    """Pending delivery order for 5 x 2.00."""
    await sql_storage.save_product(product_factory("1", price="2.00", moq=5, stock=10))
    return await OrderBuilder(sql_storage).build_order(
        [LineItem("1", 5)],
        wholesaler_id,
        "retailer-1",
        DeliveryInfo(
            fulfillment_type=FulfillmentType.DELIVERY,
            delivery_cost=Money(amount_cents=450),
            carrier="Parcelforce",
            address="1 High Street, Leeds",
        ),
        fee_schedule,
        customer=CustomerContact(name="Corner Shop", email="shop@example.com"),
    )


class TestProducts:
    """Tests for product persistence."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, sql_storage, product_factory) -> None:
        """Products round-trip through the database."""
        await sql_storage.save_product(product_factory("1", price="2.49", moq=6, stock=12))

        product = await sql_storage.get_product("1")

        assert product.price == Money(amount_cents=249)
        assert (product.moq, product.stock) == (6, 12)

    @pytest.mark.asyncio
    async def test_missing_product(self, sql_storage) -> None:
        """Unknown products return None."""
        assert await sql_storage.get_product("missing") is None

    @pytest.mark.asyncio
    async def test_stock_compare_and_swap(self, sql_storage, product_factory) -> None:
        """Stock only changes when it still has the expected value."""
        await sql_storage.save_product(product_factory("1", stock=10))

        assert await sql_storage.update_product_stock("1", 6, expected_stock=10)
        assert not await sql_storage.update_product_stock("1", 2, expected_stock=10)
        assert (await sql_storage.get_product("1")).stock == 6


class TestOrders:
    """Tests for order persistence."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, sql_storage, order) -> None:
        """Orders round-trip with totals, contact and delivery."""
        stored = await sql_storage.get_order(order.id)

        assert stored.status == OrderStatus.PENDING
        assert stored.subtotal == Money(amount_cents=1000)
        assert stored.delivery_cost == Money(amount_cents=450)
        assert stored.total == Money(amount_cents=1450)
        assert stored.wholesaler_net == Money(amount_cents=950)
        assert stored.fee_schedule.commission_rate == order.fee_schedule.commission_rate
        assert stored.customer.email == "shop@example.com"
        assert stored.delivery.carrier == "Parcelforce"
        assert [item.product_id for item in stored.items] == ["1"]
        assert len(stored.status_history) == 1

    @pytest.mark.asyncio
    async def test_conditional_status_update(self, sql_storage, order) -> None:
        """Status writes only win when the stored status and version are as read."""
        version = order.version
        order.transition_to(OrderStatus.CONFIRMED, actor="wholesaler")
        assert await sql_storage.update_order_status(
            order, expected_status=OrderStatus.PENDING, expected_version=version
        )
        assert order.version == version + 1

        stale = await sql_storage.get_order(order.id)
        stale.status = OrderStatus.PENDING
        stale.transition_to(OrderStatus.CANCELLED, reason="Too late")
        assert not await sql_storage.update_order_status(
            stale, expected_status=OrderStatus.PENDING, expected_version=version + 1
        )

        stored = await sql_storage.get_order(order.id)
        assert stored.status == OrderStatus.CONFIRMED
        assert stored.version == version + 1
        assert [e.to_status for e in stored.status_history] == [OrderStatus.PENDING, OrderStatus.CONFIRMED]

    @pytest.mark.asyncio
    async def test_update_order_keeps_status(self, sql_storage, order) -> None:
        """Non-status updates persist flags and refunds but never the status."""
        version = order.version
        order.items[0].stock_deducted = True
        order.attach_payment_reference("pi_1")
        order.status = OrderStatus.PAID
        assert await sql_storage.update_order(order, expected_version=version)

        stored = await sql_storage.get_order(order.id)

        assert stored.status == OrderStatus.PENDING
        assert stored.items[0].stock_deducted
        assert (await sql_storage.get_order_by_payment_reference("pi_1")).id == order.id

    @pytest.mark.asyncio
    async def test_stale_version_loses(self, sql_storage, order) -> None:
        """A write based on an outdated read changes nothing."""
        first = await sql_storage.get_order(order.id)
        second = await sql_storage.get_order(order.id)

        first.record_refund(Money(amount_cents=400))
        assert await sql_storage.update_order(first, expected_version=order.version)
        second.record_refund(Money(amount_cents=300))
        assert not await sql_storage.update_order(second, expected_version=order.version)

        stored = await sql_storage.get_order(order.id)
        assert stored.refunded_amount == Money(amount_cents=400)
        assert stored.version == order.version + 1

    @pytest.mark.asyncio
    async def test_duplicate_payment_reference(self, sql_storage, product_factory, wholesaler_id, fee_schedule) -> None:
        """Payment references are unique across orders."""
        await sql_storage.save_product(product_factory("1", stock=10))
        builder = OrderBuilder(sql_storage)
        await builder.build_order([LineItem("1", 1)], wholesaler_id, "r1", None, fee_schedule, payment_reference="pi_1")
        second = await builder.build_order([LineItem("1", 1)], wholesaler_id, "r2", None, fee_schedule)

        with pytest.raises(DuplicatePaymentReference):
            await builder.build_order(
                [LineItem("1", 1)], wholesaler_id, "r3", None, fee_schedule, payment_reference="pi_1"
            )

        version = second.version
        second.attach_payment_reference("pi_1")
        with pytest.raises(DuplicatePaymentReference):
            await sql_storage.update_order(second, expected_version=version)

    @pytest.mark.asyncio
    async def test_orders_due_for_archive(self, sql_storage, order) -> None:
        """Only fulfilled orders past their archive time are listed."""
        for status in (OrderStatus.CONFIRMED, OrderStatus.PAID):
            previous, version = order.status, order.version
            order.transition_to(status, now=NOW)
            await sql_storage.update_order_status(order, expected_status=previous, expected_version=version)
        version = order.version
        order.transition_to(OrderStatus.FULFILLED, now=NOW, archive_after=timedelta(hours=24))
        await sql_storage.update_order_status(order, expected_status=OrderStatus.PAID, expected_version=version)

        assert await sql_storage.list_orders_due_for_archive(NOW + timedelta(hours=23)) == []
        due = await sql_storage.list_orders_due_for_archive(NOW + timedelta(hours=25))
        assert [o.id for o in due] == [order.id]
        assert due[0].archive_due_at == NOW + timedelta(hours=24)


class TestStockMovements:
    """Tests for stock movement persistence."""

    @pytest.mark.asyncio
    async def test_movements_listed_in_order(self, sql_storage, product_factory) -> None:
        """Movements come back oldest first."""
        await sql_storage.save_product(product_factory("1", stock=10))
        adjuster = InventoryAdjuster(sql_storage)
        await adjuster.deduct("1", 4, order_id="order-1")
        await adjuster.restore("1", 4, MovementReason.ORDER_CANCELLED, order_id="order-1")

        movements = await sql_storage.list_stock_movements("1")

        assert [m.delta for m in movements] == [-4, 4]
        assert movements[1].reason == MovementReason.ORDER_CANCELLED
        assert (await sql_storage.get_product("1")).stock == 10


class TestSettlementOnSql:
    """Settlement against the SQL backend."""

    @pytest.mark.asyncio
    async def test_settle_and_replay(self, sql_storage, order, fee_schedule) -> None:
        """Settling twice deducts stock once."""
        reconciler = SettlementReconciler(
            storage=sql_storage,
            notifications=NotificationDispatcher(LoggingNotifier()),
            fee_schedule=fee_schedule,
        )
        event = PaymentConfirmationEvent(
            event_id="evt_1",
            event_type=PaymentEventType.PAYMENT_INTENT_SUCCEEDED,
            payment_reference="pi_1",
            amount=Money(amount_cents=1450),
            metadata={"order_id": order.id},
        )

        first = await reconciler.reconcile(event)
        second = await reconciler.reconcile(event)

        assert first.status == ReconciliationStatus.SETTLED
        assert second.status == ReconciliationStatus.ALREADY_PROCESSED
        stored = await sql_storage.get_order(order.id)
        assert stored.status == OrderStatus.PAID
        assert stored.items[0].stock_deducted
        assert (await sql_storage.get_product("1")).stock == 5


class TestRefundsOnSql:
    """Refund bookkeeping against the SQL backend."""

    @pytest.mark.asyncio
    async def test_concurrent_partial_refunds_accumulate(self, sql_storage, order, fee_schedule) -> None:
        """Two partial refunds racing on one order are both counted."""
        reconciler = SettlementReconciler(
            storage=sql_storage,
            notifications=NotificationDispatcher(LoggingNotifier()),
            fee_schedule=fee_schedule,
        )
        await reconciler.reconcile(
            PaymentConfirmationEvent(
                event_id="evt_1",
                event_type=PaymentEventType.PAYMENT_INTENT_SUCCEEDED,
                payment_reference="pi_1",
                amount=Money(amount_cents=1450),
                metadata={"order_id": order.id},
            )
        )
        service = OrderService(storage=sql_storage, fee_schedule=fee_schedule)

        results = await asyncio.gather(
            service.refund_order(order.id, amount=Money(amount_cents=400), reason="Short delivery"),
            service.refund_order(order.id, amount=Money(amount_cents=400), reason="Damaged bag"),
        )

        assert not any(r.fully_refunded for r in results)
        stored = await sql_storage.get_order(order.id)
        assert stored.status == OrderStatus.PAID
        assert stored.refunded_amount == Money(amount_cents=800)
        assert len(stored.refund_notes) == 2

    @pytest.mark.asyncio
    async def test_concurrent_refunds_cannot_exceed_total(self, sql_storage, order, fee_schedule) -> None:
        """Racing refunds never refund more than the order total."""
        reconciler = SettlementReconciler(
            storage=sql_storage,
            notifications=NotificationDispatcher(LoggingNotifier()),
            fee_schedule=fee_schedule,
        )
        await reconciler.reconcile(
            PaymentConfirmationEvent(
                event_id="evt_1",
                event_type=PaymentEventType.PAYMENT_INTENT_SUCCEEDED,
                payment_reference="pi_1",
                amount=Money(amount_cents=1450),
                metadata={"order_id": order.id},
            )
        )
        service = OrderService(storage=sql_storage, fee_schedule=fee_schedule)

        results = await asyncio.gather(
            service.refund_order(order.id, amount=Money(amount_cents=1000)),
            service.refund_order(order.id, amount=Money(amount_cents=1000)),
            return_exceptions=True,
        )

        assert sum(isinstance(r, InvalidRefundAmount) for r in results) == 1
        stored = await sql_storage.get_order(order.id)
        assert stored.refunded_amount == Money(amount_cents=1000)
