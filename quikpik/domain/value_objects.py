"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Self

from quikpik.domain.base import ValueObject
from quikpik.domain.exceptions import CurrencyMismatchError, NegativeMoneyError

CENT = Decimal("0.01")


def round_money(amount: Decimal) -> Decimal:
    """Round a decimal amount half-up to 2 fractional digits."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# ============================================================================
# Money Value Object
# ============================================================================


@dataclass(frozen=True)
class Money(ValueObject):
    """Represents monetary value with currency.

    Money is stored in the smallest currency unit (pence/cents), which
    is a fixed-point decimal with exactly two fractional digits.

    Attributes:
        amount_cents: Amount in smallest currency unit.
        currency: ISO 4217 currency code (e.g., 'GBP').
    """

    amount_cents: int
    currency: str = "GBP"

    def __post_init__(self) -> None:
        if self.amount_cents < 0:
            raise NegativeMoneyError(self.amount_cents)
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str = "GBP") -> Self:
        """Create zero amount money."""
        return cls(amount_cents=0, currency=currency)

    @classmethod
    def from_decimal(cls, amount: Decimal, currency: str = "GBP") -> Self:
        """Create money from a decimal amount in major units.

        Amounts with more than two fractional digits are rounded
        half-up to the nearest cent.

        Args:
            amount: Decimal amount in major units (e.g., pounds).
            currency: Currency code.

        Returns:
            Money instance.
        """
        cents = int(round_money(amount) * 100)
        return cls(amount_cents=cents, currency=currency)

    @classmethod
    def parse(cls, value: str | int | float | Decimal, currency: str = "GBP") -> Self:
        """Create money from a string-decimal amount.

        Floats go through ``str`` first so that ``2.1`` means 2.10 rather
        than its binary approximation.

        Raises:
            ValueError: If the value is not a finite decimal.
        """
        try:
            amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
        except InvalidOperation as e:
            raise ValueError(f"Not a decimal amount: {value!r}") from e
        if not amount.is_finite():
            raise ValueError(f"Not a finite amount: {value!r}")
        return cls.from_decimal(amount, currency)

    def to_decimal(self) -> Decimal:
        """Convert to decimal amount in major units, always 2dp."""
        return (Decimal(self.amount_cents) / 100).quantize(CENT)

    def _check_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(amount_cents=self.amount_cents + other.amount_cents, currency=self.currency)

    def __sub__(self, other: "Money") -> "Money":
        """Subtract money amounts.

        Raises:
            CurrencyMismatchError: If currencies don't match.
            NegativeMoneyError: If result would be negative.
        """
        self._check_currency(other)
        return Money(amount_cents=self.amount_cents - other.amount_cents, currency=self.currency)

    def __mul__(self, quantity: int) -> "Money":
        return Money(amount_cents=self.amount_cents * quantity, currency=self.currency)

    def __rmul__(self, quantity: int) -> "Money":
        return self.__mul__(quantity)

    def __lt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount_cents < other.amount_cents

    def __le__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount_cents <= other.amount_cents

    def apply_rate(self, rate: Decimal) -> "Money":
        """Multiply by a rate and round half-up to the cent."""
        return Money.from_decimal(self.to_decimal() * rate, self.currency)

    def __str__(self) -> str:
        symbol = {"GBP": "£", "USD": "$", "EUR": "€"}.get(self.currency, "")
        return f"{symbol}{self.to_decimal():.2f} {self.currency}"

    def is_zero(self) -> bool:
        return self.amount_cents == 0


# ============================================================================
# Fee Schedule
# ============================================================================


class FeeModel(str, Enum):
    """Who funds the platform's charges.

    WHOLESALER_FUNDED: commission is taken from the wholesaler's proceeds
        and the retailer pays exactly the subtotal.
    CUSTOMER_FUNDED: a percentage-plus-fixed surcharge is added on top of
        the subtotal for the retailer, and a (smaller) commission is still
        taken from the wholesaler.
    """

    WHOLESALER_FUNDED = "wholesaler_funded"
    CUSTOMER_FUNDED = "customer_funded"


@dataclass(frozen=True)
class FeeSchedule(ValueObject):
    """Platform fee configuration, frozen onto every order at build time.

    Attributes:
        model: Fee model in effect.
        commission_rate: Fraction of the subtotal kept by the platform
            from the wholesaler's side (e.g. ``Decimal("0.05")``).
        surcharge_rate: Fraction of the subtotal charged to the retailer
            in the customer-funded model.
        fixed_surcharge: Fixed amount added to the retailer's surcharge
            in the customer-funded model.
    """

    model: FeeModel
    commission_rate: Decimal
    surcharge_rate: Decimal = Decimal("0")
    fixed_surcharge: Money = Money.zero()

    def __post_init__(self) -> None:
        for name in ("commission_rate", "surcharge_rate"):
            rate = getattr(self, name)
            if not isinstance(rate, Decimal):
                rate = Decimal(str(rate))
                object.__setattr__(self, name, rate)
            if not rate.is_finite() or rate < 0 or rate >= 1:
                raise ValueError(f"{name} must be in [0, 1), got {rate}")

    @classmethod
    def wholesaler_funded(cls, commission_rate: Decimal | str) -> Self:
        return cls(model=FeeModel.WHOLESALER_FUNDED, commission_rate=Decimal(str(commission_rate)))

    @classmethod
    def customer_funded(
        cls,
        commission_rate: Decimal | str,
        surcharge_rate: Decimal | str,
        fixed_surcharge: Money,
    ) -> Self:
        return cls(
            model=FeeModel.CUSTOMER_FUNDED,
            commission_rate=Decimal(str(commission_rate)),
            surcharge_rate=Decimal(str(surcharge_rate)),
            fixed_surcharge=fixed_surcharge,
        )


# ============================================================================
# Cart Input
# ============================================================================


@dataclass(frozen=True)
class LineItem(ValueObject):
    """A requested product and quantity, as submitted in a cart."""

    product_id: str
    quantity: int

    def __post_init__(self) -> None:
        if not self.product_id or not str(self.product_id).strip():
            raise ValueError("Product ID cannot be empty")
        object.__setattr__(self, "product_id", str(self.product_id))


# ============================================================================
# Delivery / Customer Information
# ============================================================================


class FulfillmentType(str, Enum):
    """How the retailer receives the goods."""

    PICKUP = "pickup"
    DELIVERY = "delivery"


@dataclass(frozen=True)
class DeliveryInfo(ValueObject):
    """Fulfillment metadata for an order.

    Attributes:
        fulfillment_type: Pickup or delivery.
        delivery_cost: Carrier charge passed through to the retailer.
        carrier: Selected carrier/service name.
        address: Single-line delivery address.
    """

    fulfillment_type: FulfillmentType = FulfillmentType.PICKUP
    delivery_cost: Money | None = None
    carrier: str | None = None
    address: str | None = None

    def __post_init__(self) -> None:
        if self.fulfillment_type == FulfillmentType.PICKUP and self.delivery_cost and not self.delivery_cost.is_zero():
            raise ValueError("Pickup orders cannot carry a delivery cost")

    @classmethod
    def pickup(cls) -> Self:
        return cls(fulfillment_type=FulfillmentType.PICKUP)


@dataclass(frozen=True)
class CustomerContact(ValueObject):
    """Retailer contact details used for notifications.

    Attributes:
        name: Customer full name.
        email: Email address (optional if phone given).
        phone: Phone number (optional if email given).
    """

    name: str | None = None
    email: str | None = None
    phone: str | None = None

    def __post_init__(self) -> None:
        if not self.email and not self.phone:
            raise ValueError("Customer contact needs an email or a phone number")
        if self.email and "@" not in self.email:
            raise ValueError("Invalid email address")

    @property
    def handle(self) -> str:
        """Stable identifier for a guest retailer."""
        return (self.email or self.phone or "").lower()
