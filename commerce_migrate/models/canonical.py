"""Canonical commerce schema shared by every source and target."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

# ISO 4217 currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG",
    "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})


class EntityKind(str, Enum):
    """Unit of extraction, normalization and apply phasing."""
    PRODUCTS = "products"
    DISCOUNTS = "discounts"
    CUSTOMERS = "customers"
    SUBSCRIPTIONS = "subscriptions"


# Fixed dependency order: products must exist before subscriptions attach to them
ENTITY_ORDER = [
    EntityKind.PRODUCTS,
    EntityKind.DISCOUNTS,
    EntityKind.CUSTOMERS,
    EntityKind.SUBSCRIPTIONS,
]


class ProductKind(str, Enum):
    ONE_TIME = "one_time"
    SUBSCRIPTION = "subscription"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class IntervalUnit(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


# Longest total subscription term the target accepts: 20 years in each unit
MAX_TERM_PERIODS = {
    IntervalUnit.DAY: 20 * 365,
    IntervalUnit.WEEK: 20 * 52,
    IntervalUnit.MONTH: 20 * 12,
    IntervalUnit.YEAR: 20,
}


def minor_unit_exponent(currency: str) -> int:
    """Number of decimal places of the currency's minor unit."""
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


@dataclass(frozen=True)
class MoneyAmount:
    """Integer minor-unit amount with an ISO currency code."""
    amount: int
    currency: str

    def __post_init__(self):
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError(f"Money amount must be an integer, got {self.amount!r}")
        if self.amount < 0:
            raise ValueError(f"Money amount must be >= 0, got {self.amount}")
        if not CURRENCY_PATTERN.match(self.currency or ""):
            raise ValueError(f"Currency must be a 3-letter uppercase code, got {self.currency!r}")

    @property
    def major(self) -> Decimal:
        """Amount in major units (e.g. dollars)."""
        exponent = minor_unit_exponent(self.currency)
        return Decimal(self.amount).scaleb(-exponent)

    def format(self) -> str:
        exponent = minor_unit_exponent(self.currency)
        return f"{self.currency} {self.major:.{exponent}f}"

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": self.amount, "currency": self.currency}


@dataclass(frozen=True)
class OriginKey:
    """
    Stable identifier of the source record a canonical entity came from.

    For products the variant is the source price id, so one source product
    expanded into several prices yields several keys.
    """
    kind: EntityKind
    source_id: str
    variant: str = ""

    def __str__(self) -> str:
        if self.variant:
            return f"{self.kind.value}:{self.source_id}:{self.variant}"
        return f"{self.kind.value}:{self.source_id}"


@dataclass(frozen=True)
class Address:
    """Postal address. Every part is optional; partial addresses are kept as-is."""
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not any([
            self.line1, self.line2, self.city,
            self.region, self.postal_code, self.country,
        ])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line1": self.line1,
            "line2": self.line2,
            "city": self.city,
            "region": self.region,
            "postal_code": self.postal_code,
            "country": self.country,
        }


# Used for subscriptions whose source carries no billing address
SENTINEL_ADDRESS = Address(
    line1="Not provided",
    city="Not provided",
    region="Not provided",
    postal_code="00000",
    country="US",
)


@dataclass(frozen=True)
class CanonicalProduct:
    """A single sellable price of a catalog item."""
    origin: OriginKey
    name: str
    kind: ProductKind
    price: MoneyAmount
    brand_id: str
    description: Optional[str] = None
    tax_category: str = "saas"
    billing_period: Optional[BillingPeriod] = None
    interval_unit: Optional[IntervalUnit] = None
    interval_count: int = 1
    term_count: Optional[int] = None

    def __post_init__(self):
        if self.kind == ProductKind.SUBSCRIPTION:
            if self.billing_period is None or self.interval_unit is None:
                raise ValueError("Subscription products need a billing period and interval unit")
            if self.interval_count < 1:
                raise ValueError(f"Interval count must be >= 1, got {self.interval_count}")
            if self.term_count is not None:
                limit = MAX_TERM_PERIODS[self.interval_unit]
                if not 1 <= self.term_count <= limit:
                    raise ValueError(f"Term count must be between 1 and {limit}, got {self.term_count}")

    @property
    def is_subscription(self) -> bool:
        return self.kind == ProductKind.SUBSCRIPTION

    @property
    def cadence(self) -> Optional[str]:
        """Human readable billing cadence, e.g. 'monthly, every 3 months'."""
        if not self.is_subscription:
            return None
        unit = self.interval_unit.value
        if self.interval_count == 1:
            return f"{self.billing_period.value}, every {unit}"
        return f"{self.billing_period.value}, every {self.interval_count} {unit}s"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "origin": str(self.origin),
            "name": self.name,
            "description": self.description,
            "kind": self.kind.value,
            "price": self.price.to_dict(),
            "brand_id": self.brand_id,
            "tax_category": self.tax_category,
            "billing_period": self.billing_period.value if self.billing_period else None,
            "interval_unit": self.interval_unit.value if self.interval_unit else None,
            "interval_count": self.interval_count,
            "term_count": self.term_count,
        }


@dataclass(frozen=True)
class CanonicalDiscount:
    """A discount code. Exactly one of percent_off or amount_off is set."""
    origin: OriginKey
    code: str
    name: str
    type: DiscountType
    brand_id: str
    percent_off: Optional[Decimal] = None
    amount_off: Optional[MoneyAmount] = None
    usage_limit: Optional[int] = None
    expires_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.code:
            raise ValueError("Discount code is required")
        if (self.percent_off is None) == (self.amount_off is None):
            raise ValueError("Exactly one of percent_off or amount_off must be set")
        if self.type == DiscountType.PERCENTAGE:
            if self.percent_off is None or not 0 < self.percent_off <= 100:
                raise ValueError(f"Percentage must be in (0, 100], got {self.percent_off}")
        elif self.amount_off is None or self.amount_off.amount <= 0:
            raise ValueError("Fixed amount discounts need a positive amount_off")
        if self.usage_limit is not None and self.usage_limit < 1:
            raise ValueError(f"Usage limit must be positive, got {self.usage_limit}")
        if self.expires_at is not None and self.expires_at.tzinfo is None:
            raise ValueError("Expiry must be timezone-aware")

    @property
    def value_label(self) -> str:
        if self.type == DiscountType.PERCENTAGE:
            return f"{self.percent_off.normalize():f}% off"
        return f"{self.amount_off.format()} off"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "origin": str(self.origin),
            "code": self.code,
            "name": self.name,
            "type": self.type.value,
            "brand_id": self.brand_id,
            "percent_off": str(self.percent_off) if self.percent_off is not None else None,
            "amount_off": self.amount_off.to_dict() if self.amount_off else None,
            "usage_limit": self.usage_limit,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass(frozen=True)
class CanonicalCustomer:
    origin: OriginKey
    email: str
    brand_id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Address] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.email:
            raise ValueError("Customer email is required")
        for key in ("source_platform", "source_customer_id"):
            if key not in self.metadata:
                raise ValueError(f"Customer metadata must carry {key}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "origin": str(self.origin),
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "address": self.address.to_dict() if self.address else None,
            "brand_id": self.brand_id,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class CanonicalSubscription:
    origin: OriginKey
    product_id: str
    customer_email: str
    billing_address: Address
    price_id: Optional[str] = None
    customer_name: Optional[str] = None
    quantity: int = 1
    product_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.product_id:
            raise ValueError("Subscription needs a target product id")
        if not self.customer_email:
            raise ValueError("Subscription needs a customer email")
        if self.quantity < 1:
            raise ValueError(f"Quantity must be >= 1, got {self.quantity}")

    @property
    def source_id(self) -> str:
        return self.origin.source_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "origin": str(self.origin),
            "product_id": self.product_id,
            "price_id": self.price_id,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "billing_address": self.billing_address.to_dict(),
            "quantity": self.quantity,
            "metadata": dict(self.metadata),
        }
