"""Money/fee calculator.

Pure functions computing subtotal, platform commission, customer
surcharge and wholesaler payout for a set of priced lines.

Rounding rule: each line total is rounded to 2dp, line totals are summed
without re-rounding, and every fee is computed from that rounded
subtotal and rounded half-up to 2dp.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from quikpik.domain.exceptions import InvalidLineItem
from quikpik.domain.value_objects import FeeModel, FeeSchedule, Money


@dataclass(frozen=True)
class PricedLine:
    """A line ready for pricing: unit price snapshot and quantity."""

    unit_price: Money
    quantity: int
    moq: int = 1
    product_id: str | None = None

    @property
    def line_total(self) -> Money:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class OrderTotals:
    """Computed money breakdown for an order.

    Attributes:
        subtotal: Sum of line totals.
        platform_fee: Commission taken from the wholesaler's proceeds.
        customer_fee: Surcharge added for the retailer (customer-funded only).
        delivery_cost: Delivery charge passed through to the retailer.
        total: Amount the retailer pays.
        wholesaler_net: Amount paid out to the wholesaler.
    """

    subtotal: Money
    platform_fee: Money
    customer_fee: Money
    delivery_cost: Money
    total: Money
    wholesaler_net: Money

    @property
    def currency(self) -> str:
        return self.total.currency

    @property
    def platform_take(self) -> Money:
        """Everything the platform keeps from the payment."""
        return self.platform_fee + self.customer_fee + self.delivery_cost


def parse_unit_price(value: object, currency: str = "GBP", product_id: str | None = None) -> Money:
    """Parse a raw unit price into Money.

    Raises:
        InvalidLineItem: If the price is not a positive finite decimal.
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidLineItem("unit price is not a decimal", product_id=product_id, unit_price=str(value)) from e
    if not amount.is_finite() or amount <= 0:
        raise InvalidLineItem(
            "unit price must be a positive finite amount",
            product_id=product_id,
            unit_price=str(value),
        )
    price = Money.from_decimal(amount, currency)
    if price.is_zero():
        raise InvalidLineItem("unit price rounds to zero", product_id=product_id, unit_price=str(value))
    return price


def validate_line(line: PricedLine) -> None:
    """Validate quantity and unit price of a single line.

    Raises:
        InvalidLineItem: If quantity < 1, quantity < MOQ, or price is not positive.
    """
    if not isinstance(line.quantity, int) or isinstance(line.quantity, bool) or line.quantity < 1:
        raise InvalidLineItem("quantity must be at least 1", product_id=line.product_id, quantity=line.quantity)
    if line.quantity < line.moq:
        raise InvalidLineItem(
            f"quantity {line.quantity} is below the minimum order quantity {line.moq}",
            product_id=line.product_id,
            quantity=line.quantity,
            moq=line.moq,
        )
    if line.unit_price.is_zero():
        raise InvalidLineItem("unit price must be positive", product_id=line.product_id)


def compute_order_totals(
    lines: Sequence[PricedLine],
    fee_schedule: FeeSchedule,
    delivery_cost: Money | None = None,
) -> OrderTotals:
    """Compute the money breakdown for an order.

    Args:
        lines: Priced lines, all in the same currency.
        fee_schedule: Fee schedule to apply.
        delivery_cost: Optional delivery charge added to the customer total.
            Never subject to commission or surcharge.

    Returns:
        OrderTotals with every amount at 2dp.

    Raises:
        InvalidLineItem: If there are no lines or any line is invalid.
        CurrencyMismatchError: If lines mix currencies.
    """
    if not lines:
        raise InvalidLineItem("an order needs at least one line item")

    currency = lines[0].unit_price.currency
    subtotal = Money.zero(currency)
    for line in lines:
        validate_line(line)
        subtotal = subtotal + line.line_total

    platform_fee = subtotal.apply_rate(fee_schedule.commission_rate)
    if fee_schedule.model == FeeModel.CUSTOMER_FUNDED:
        customer_fee = Money.from_decimal(
            subtotal.to_decimal() * fee_schedule.surcharge_rate + fee_schedule.fixed_surcharge.to_decimal(),
            currency,
        )
    else:
        customer_fee = Money.zero(currency)

    delivery = delivery_cost or Money.zero(currency)
    return OrderTotals(
        subtotal=subtotal,
        platform_fee=platform_fee,
        customer_fee=customer_fee,
        delivery_cost=delivery,
        total=subtotal + customer_fee + delivery,
        wholesaler_net=subtotal - platform_fee,
    )
