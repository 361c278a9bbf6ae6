"""SQL implementation of the storage contract.

Conditional writes are single ``UPDATE ... WHERE`` statements: stock is
only changed when it still equals the level the caller read, and an
order row is only rewritten when its version (and, for status changes,
its status) is still the one the caller read. ``rowcount`` tells the
caller whether it won.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from quikpik.domain.entities import (
    MovementReason,
    Order,
    OrderItem,
    Product,
    StatusHistoryEntry,
    StockMovement,
)
from quikpik.domain.exceptions import DuplicatePaymentReference
from quikpik.domain.state_machines import OrderStatus
from quikpik.domain.value_objects import (
    CustomerContact,
    DeliveryInfo,
    FeeModel,
    FeeSchedule,
    FulfillmentType,
    Money,
)
from quikpik.infrastructure.models import (
    OrderItemModel,
    OrderModel,
    OrderStatusHistoryModel,
    ProductModel,
    StockMovementModel,
)

logger = structlog.get_logger()


def _aware(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes returned by backends without tz support."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@contextmanager
def _unique_payment_reference(order: Order) -> Iterator[None]:
    """Translate a unique-constraint violation on the payment reference."""
    try:
        yield
    except IntegrityError as e:
        if not order.payment_reference:
            raise
        logger.warning(
            "Order write rejected for duplicate payment reference",
            order_id=order.id,
            payment_reference=order.payment_reference,
        )
        raise DuplicatePaymentReference(order.payment_reference) from e


# ============================================================================
# Row <-> Domain Converters
# ============================================================================


def product_from_row(row: ProductModel) -> Product:
    return Product(
        id=row.id,
        wholesaler_id=row.wholesaler_id,
        name=row.name,
        price=Money(row.price_cents, row.currency),
        moq=row.moq,
        stock=row.stock,
        promo_price=Money(row.promo_price_cents, row.currency) if row.promo_price_cents is not None else None,
        promo_active=row.promo_active,
        promo_starts_at=_aware(row.promo_starts_at),
        promo_ends_at=_aware(row.promo_ends_at),
    )


def order_from_row(row: OrderModel) -> Order:
    currency = row.currency
    customer = None
    if row.customer_email or row.customer_phone:
        customer = CustomerContact(name=row.customer_name, email=row.customer_email, phone=row.customer_phone)

    return Order(
        id=row.id,
        wholesaler_id=row.wholesaler_id,
        retailer_id=row.retailer_id,
        items=[
            OrderItem(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=Money(item.unit_price_cents, currency),
                stock_deducted=item.stock_deducted,
            )
            for item in row.items
        ],
        fee_schedule=FeeSchedule(
            model=FeeModel(row.fee_model),
            commission_rate=Decimal(row.commission_rate),
            surcharge_rate=Decimal(row.surcharge_rate),
            fixed_surcharge=Money(row.fixed_surcharge_cents, currency),
        ),
        subtotal=Money(row.subtotal_cents, currency),
        platform_fee=Money(row.platform_fee_cents, currency),
        customer_fee=Money(row.customer_fee_cents, currency),
        delivery_cost=Money(row.delivery_cost_cents, currency),
        total=Money(row.total_cents, currency),
        wholesaler_net=Money(row.wholesaler_net_cents, currency),
        customer=customer,
        delivery=DeliveryInfo(
            fulfillment_type=FulfillmentType(row.fulfillment_type),
            delivery_cost=Money(row.delivery_cost_cents, currency),
            carrier=row.delivery_carrier,
            address=row.delivery_address,
        ),
        status=OrderStatus(row.status),
        payment_reference=row.payment_reference,
        refunded_amount=(
            Money(row.refunded_amount_cents, currency) if row.refunded_amount_cents is not None else None
        ),
        refund_notes=list(row.refund_notes or []),
        cancelled_reason=row.cancelled_reason,
        paid_at=_aware(row.paid_at),
        fulfilled_at=_aware(row.fulfilled_at),
        archive_due_at=_aware(row.archive_due_at),
        archived_at=_aware(row.archived_at),
        cancelled_at=_aware(row.cancelled_at),
        refunded_at=_aware(row.refunded_at),
        status_history=[
            StatusHistoryEntry(
                from_status=OrderStatus(entry.from_status) if entry.from_status else None,
                to_status=OrderStatus(entry.to_status),
                actor=entry.actor,
                reason=entry.reason,
                metadata=entry.metadata_,
                created_at=_aware(entry.created_at),
            )
            for entry in row.status_history
        ],
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _mutable_columns(order: Order) -> dict[str, Any]:
    """Order columns that may change after creation."""
    return {
        "payment_reference": order.payment_reference,
        "cancelled_reason": order.cancelled_reason,
        "refunded_amount_cents": order.refunded_amount.amount_cents if order.refunded_amount else None,
        "refund_notes": list(order.refund_notes),
        "updated_at": order.updated_at,
        "paid_at": order.paid_at,
        "fulfilled_at": order.fulfilled_at,
        "archive_due_at": order.archive_due_at,
        "archived_at": order.archived_at,
        "cancelled_at": order.cancelled_at,
        "refunded_at": order.refunded_at,
    }


def _history_row(order_id: str, entry: StatusHistoryEntry) -> OrderStatusHistoryModel:
    return OrderStatusHistoryModel(
        order_id=order_id,
        from_status=entry.from_status.value if entry.from_status else None,
        to_status=entry.to_status.value,
        actor=entry.actor,
        reason=entry.reason,
        metadata_=entry.metadata,
        created_at=entry.created_at,
    )


def order_to_row(order: Order) -> OrderModel:
    customer = order.customer
    return OrderModel(
        id=order.id,
        wholesaler_id=order.wholesaler_id,
        retailer_id=order.retailer_id,
        status=order.status.value,
        customer_name=customer.name if customer else None,
        customer_email=customer.email if customer else None,
        customer_phone=customer.phone if customer else None,
        fulfillment_type=order.delivery.fulfillment_type.value,
        delivery_carrier=order.delivery.carrier,
        delivery_address=order.delivery.address,
        currency=order.currency,
        subtotal_cents=order.subtotal.amount_cents,
        platform_fee_cents=order.platform_fee.amount_cents,
        customer_fee_cents=order.customer_fee.amount_cents,
        delivery_cost_cents=order.delivery_cost.amount_cents,
        total_cents=order.total.amount_cents,
        wholesaler_net_cents=order.wholesaler_net.amount_cents,
        fee_model=order.fee_schedule.model.value,
        commission_rate=order.fee_schedule.commission_rate,
        surcharge_rate=order.fee_schedule.surcharge_rate,
        fixed_surcharge_cents=order.fee_schedule.fixed_surcharge.amount_cents,
        version=order.version,
        created_at=order.created_at,
        items=[
            OrderItemModel(
                position=position,
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price_cents=item.unit_price.amount_cents,
                line_total_cents=item.line_total.amount_cents,
                stock_deducted=item.stock_deducted,
            )
            for position, item in enumerate(order.items)
        ],
        status_history=[_history_row(order.id, entry) for entry in order.status_history],
        **_mutable_columns(order),
    )


# ============================================================================
# SQL Storage
# ============================================================================


class SqlStorage:
    """Storage backed by an async SQLAlchemy session factory.

    Every method runs in its own transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    async def get_product(self, product_id: str) -> Product | None:
        async with self._session_factory() as session:
            row = await session.get(ProductModel, product_id)
            return product_from_row(row) if row else None

    async def save_product(self, product: Product) -> None:
        async with self._session_factory() as session, session.begin():
            await session.merge(
                ProductModel(
                    id=product.id,
                    wholesaler_id=product.wholesaler_id,
                    name=product.name,
                    price_cents=product.price.amount_cents,
                    currency=product.price.currency,
                    moq=product.moq,
                    stock=product.stock,
                    promo_price_cents=product.promo_price.amount_cents if product.promo_price else None,
                    promo_active=product.promo_active,
                    promo_starts_at=product.promo_starts_at,
                    promo_ends_at=product.promo_ends_at,
                )
            )

    async def update_product_stock(self, product_id: str, new_stock: int, expected_stock: int) -> bool:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(ProductModel)
                .where(ProductModel.id == product_id, ProductModel.stock == expected_stock)
                .values(stock=new_stock)
            )
            return result.rowcount == 1

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def create_order(self, order: Order) -> None:
        with _unique_payment_reference(order):
            async with self._session_factory() as session, session.begin():
                session.add(order_to_row(order))

    async def _load_order(self, session: AsyncSession, *conditions: Any) -> Order | None:
        result = await session.execute(
            select(OrderModel)
            .where(*conditions)
            .options(selectinload(OrderModel.items), selectinload(OrderModel.status_history))
        )
        row = result.scalar_one_or_none()
        return order_from_row(row) if row else None

    async def get_order(self, order_id: str) -> Order | None:
        async with self._session_factory() as session:
            return await self._load_order(session, OrderModel.id == order_id)

    async def get_order_by_payment_reference(self, payment_reference: str) -> Order | None:
        async with self._session_factory() as session:
            return await self._load_order(session, OrderModel.payment_reference == payment_reference)

    async def update_order_status(self, order: Order, expected_status: OrderStatus, expected_version: int) -> bool:
        return await self._write_order(
            order,
            expected_version,
            OrderModel.status == expected_status.value,
            status=order.status.value,
        )

    async def update_order(self, order: Order, expected_version: int) -> bool:
        return await self._write_order(order, expected_version)

    async def _write_order(self, order: Order, expected_version: int, *conditions: Any, **values: Any) -> bool:
        with _unique_payment_reference(order):
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    update(OrderModel)
                    .where(OrderModel.id == order.id, OrderModel.version == expected_version, *conditions)
                    .values(version=expected_version + 1, **_mutable_columns(order), **values)
                )
                if result.rowcount != 1:
                    return False
                await self._sync_children(session, order)
        order.version = expected_version + 1
        return True

    async def _sync_children(self, session: AsyncSession, order: Order) -> None:
        for position, item in enumerate(order.items):
            await session.execute(
                update(OrderItemModel)
                .where(OrderItemModel.order_id == order.id, OrderItemModel.position == position)
                .values(stock_deducted=item.stock_deducted)
            )

        stored = await session.scalar(
            select(func.count()).select_from(OrderStatusHistoryModel).where(
                OrderStatusHistoryModel.order_id == order.id
            )
        )
        for entry in order.status_history[stored or 0 :]:
            session.add(_history_row(order.id, entry))

    async def list_orders_due_for_archive(self, now: datetime) -> list[Order]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrderModel)
                .where(
                    OrderModel.status == OrderStatus.FULFILLED.value,
                    OrderModel.archive_due_at.is_not(None),
                    OrderModel.archive_due_at <= now,
                )
                .options(selectinload(OrderModel.items), selectinload(OrderModel.status_history))
            )
            return [order_from_row(row) for row in result.scalars().all()]

    # -------------------------------------------------------------------------
    # Stock movements
    # -------------------------------------------------------------------------

    async def create_stock_movement(self, movement: StockMovement) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(
                StockMovementModel(
                    id=movement.id,
                    product_id=movement.product_id,
                    wholesaler_id=movement.wholesaler_id,
                    delta=movement.delta,
                    stock_before=movement.stock_before,
                    stock_after=movement.stock_after,
                    reason=movement.reason.value,
                    order_id=movement.order_id,
                    note=movement.note,
                    created_at=movement.created_at,
                )
            )

    async def list_stock_movements(self, product_id: str) -> list[StockMovement]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StockMovementModel)
                .where(StockMovementModel.product_id == product_id)
                .order_by(StockMovementModel.created_at)
            )
            return [
                StockMovement(
                    id=row.id,
                    product_id=row.product_id,
                    wholesaler_id=row.wholesaler_id,
                    delta=row.delta,
                    stock_before=row.stock_before,
                    stock_after=row.stock_after,
                    reason=MovementReason(row.reason),
                    order_id=row.order_id,
                    note=row.note,
                    created_at=_aware(row.created_at),
                )
                for row in result.scalars().all()
            ]
