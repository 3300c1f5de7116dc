"""Normalization of raw source records into the canonical schema."""

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar, Union

from dateutil import parser as date_parser

from ..errors import FatalMigrationError, LinkNotFound, SourceError, SourceRateLimitedError
from ..models.canonical import (
    CURRENCY_PATTERN,
    MAX_TERM_PERIODS,
    Address,
    BillingPeriod,
    CanonicalCustomer,
    CanonicalDiscount,
    CanonicalProduct,
    CanonicalSubscription,
    DiscountType,
    EntityKind,
    IntervalUnit,
    MoneyAmount,
    OriginKey,
    ProductKind,
    SENTINEL_ADDRESS,
    minor_unit_exponent,
)
from ..models.record import (
    Dropped,
    ParentRecord,
    RawAddress,
    RawCustomer,
    RawDiscount,
    RawPrice,
    RawProduct,
    RawSubscription,
)
from .linker import CrossEntityLinker
from .reference_cache import ReferenceCache
from .variants import VariantExpander

logger = logging.getLogger(__name__)

C = TypeVar("C")

INTERVAL_ALIASES = {
    "day": IntervalUnit.DAY,
    "days": IntervalUnit.DAY,
    "daily": IntervalUnit.DAY,
    "week": IntervalUnit.WEEK,
    "weeks": IntervalUnit.WEEK,
    "weekly": IntervalUnit.WEEK,
    "month": IntervalUnit.MONTH,
    "months": IntervalUnit.MONTH,
    "monthly": IntervalUnit.MONTH,
    "year": IntervalUnit.YEAR,
    "years": IntervalUnit.YEAR,
    "yearly": IntervalUnit.YEAR,
}

BILLING_PERIODS = {
    IntervalUnit.MONTH: BillingPeriod.MONTHLY,
    IntervalUnit.YEAR: BillingPeriod.YEARLY,
}

RECURRING_CATEGORIES = {"recurring", "subscription", "recurring_price"}
ONE_TIME_CATEGORIES = {"one_time", "one-time", "onetime", "single", "one_time_price"}

INACTIVE_SUBSCRIPTION_STATUSES = {
    "canceled", "cancelled", "expired", "incomplete_expired", "revoked", "unpaid",
}

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")


# Field rules

def clean(value: Any) -> Optional[str]:
    """Strip a value to a non-empty string, or None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_currency(value: Any) -> Optional[str]:
    """Uppercase a currency code; None unless it is a 3-letter code."""
    text = clean(value)
    if text is None:
        return None
    code = text.upper()
    return code if CURRENCY_PATTERN.match(code) else None


def to_minor_units(
    unit_amount: Any,
    unit_amount_decimal: Any = None,
    currency: Optional[str] = None
) -> Optional[int]:
    """
    Resolve an amount in minor units.

    An integer minor-unit amount wins when positive. Otherwise the decimal
    major-unit string is parsed and rounded half-up to the currency's minor
    unit. None when neither yields a positive amount.
    """
    if isinstance(unit_amount, bool):
        unit_amount = None
    if isinstance(unit_amount, int) and unit_amount > 0:
        return unit_amount
    if isinstance(unit_amount, float) and unit_amount.is_integer() and unit_amount > 0:
        return int(unit_amount)

    text = clean(unit_amount_decimal)
    if text is None:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite() or value <= 0:
        return None

    exponent = minor_unit_exponent(currency) if currency else 2
    minor = value.scaleb(exponent).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(minor) if minor > 0 else None


def to_positive_int(value: Any) -> Optional[int]:
    """
    Coerce a count (int, integral float or digit string) to a positive int.

    Returns None for anything else, including zero and negatives.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not value.is_integer():
            return None
        number = int(value)
    else:
        text = clean(value)
        if text is None or not text.isdigit():
            return None
        number = int(text)
    return number if number > 0 else None


def normalize_interval(value: Any) -> Optional[IntervalUnit]:
    """Map day/week/month/year and their variants; None for anything else."""
    text = clean(value)
    if text is None:
        return None
    return INTERVAL_ALIASES.get(text.lower())


def billing_period_for(unit: Optional[IntervalUnit]) -> Optional[BillingPeriod]:
    return BILLING_PERIODS.get(unit)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 string, unix seconds or datetime into an aware datetime.

    Naive values are taken as UTC.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        try:
            parsed = date_parser.isoparse(str(value))
        except (ValueError, OverflowError):
            parsed = date_parser.parse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def classify_price(price: RawPrice) -> ProductKind:
    """Decide whether a price is a subscription or a one-time price."""
    category = (clean(price.category) or "").lower()
    if category in RECURRING_CATEGORIES:
        return ProductKind.SUBSCRIPTION
    if category in ONE_TIME_CATEGORIES:
        return ProductKind.ONE_TIME
    return ProductKind.SUBSCRIPTION if clean(price.interval) else ProductKind.ONE_TIME


def to_address(raw: Optional[RawAddress]) -> Optional[Address]:
    """Convert a raw address, keeping partial addresses; None when empty."""
    if raw is None:
        return None
    address = Address(
        line1=clean(raw.line1),
        line2=clean(raw.line2),
        city=clean(raw.city),
        region=clean(raw.region),
        postal_code=clean(raw.postal_code),
        country=clean(raw.country),
    )
    return None if address.is_empty else address


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Normalizers

class EntityNormalizer(ABC, Generic[C]):
    """
    Base class for per-kind normalizers.

    normalize() returns either canonical entities or a Dropped with the
    reason. Records with an unsupported shape never raise; only fatal
    errors (authentication, rate limits while resolving references) do.
    """

    kind: EntityKind

    def __init__(self, source_platform: str):
        self.source_platform = source_platform
        self.dropped: List[Dropped] = []

    @abstractmethod
    def normalize(self, raw: Any) -> Union[C, List[C], Dropped]:
        """Normalize one raw record."""

    def normalize_all(self, records: Iterable[Any]) -> List[C]:
        """
        Normalize records in order, collecting drops.

        Returns:
            Canonical entities in source order
        """
        normalized: List[C] = []
        for raw in records:
            result = self.normalize(raw)
            if isinstance(result, Dropped):
                self._log_drop(result)
            elif isinstance(result, list):
                normalized.extend(result)
            else:
                normalized.append(result)

        logger.info(
            f"Normalized {len(normalized)} {self.kind.value} "
            f"({len(self.dropped)} dropped)"
        )
        return normalized

    def drop(self, identifier: str, reason: str) -> Dropped:
        return Dropped(identifier=identifier, reason=reason)

    def _log_drop(self, dropped: Dropped) -> None:
        self.dropped.append(dropped)
        logger.warning(f"Dropping {self.kind.value} {dropped.identifier}: {dropped.reason}")

    def _resolve_parent_currency(
        self,
        cache: Optional[ReferenceCache[ParentRecord]],
        parent_id: Optional[str]
    ) -> Union[str, Dropped, None]:
        """
        Look up a currency through the parent cache.

        Returns:
            The currency, None when there is nothing to look up, or a
            Dropped carrying the reason when the lookup fails

        Raises:
            FatalMigrationError, SourceRateLimitedError: Propagated as-is
        """
        if cache is None or parent_id is None:
            return None
        try:
            parent = cache.resolve(parent_id)
        except (FatalMigrationError, SourceRateLimitedError):
            raise
        except SourceError as e:
            return Dropped(identifier=str(parent_id), reason=f"currency resolution failed: {e}")
        return normalize_currency(parent.currency)


class ProductNormalizer(EntityNormalizer[CanonicalProduct]):
    """Turns source products into one canonical product per eligible price."""

    kind = EntityKind.PRODUCTS

    def __init__(
        self,
        source_platform: str,
        brand_id: str,
        currency_cache: Optional[ReferenceCache[ParentRecord]] = None
    ):
        super().__init__(source_platform)
        self.brand_id = brand_id
        self.currency_cache = currency_cache
        self.expander = VariantExpander(self.normalize_price)

    def normalize(self, raw: RawProduct) -> Union[List[CanonicalProduct], Dropped]:
        identifier = self._identifier(raw)
        if raw.active is False:
            return self.drop(identifier, "product is not active")

        if raw.benefits:
            logger.warning(
                f"Product {identifier} has {len(raw.benefits)} benefit(s) "
                f"that require manual setup on the target"
            )

        expansion = self.expander.expand(raw)
        for dropped in expansion.dropped:
            self._log_drop(dropped)

        if not expansion.products:
            if not raw.prices and raw.fallback_price is None:
                return self.drop(identifier, "no active price")
            return self.drop(identifier, "no eligible price")
        return expansion.products

    def normalize_price(
        self,
        product: RawProduct,
        price: RawPrice,
        variant: str
    ) -> Union[CanonicalProduct, Dropped]:
        """Normalize one price variant of a product."""
        identifier = f"{self._identifier(product)} [{variant}]"

        if price.active is False:
            return self.drop(identifier, "price is archived")
        amount_type = clean(price.amount_type)
        if amount_type and amount_type.lower() != "fixed":
            return self.drop(identifier, f"unsupported price type '{amount_type}'")

        currency = normalize_currency(price.currency)
        if currency is None:
            resolved = self._resolve_parent_currency(self.currency_cache, product.parent_id)
            if isinstance(resolved, Dropped):
                return self.drop(identifier, resolved.reason)
            currency = resolved
        if currency is None:
            return self.drop(identifier, "currency resolution failed: no currency on price or store")

        amount = to_minor_units(price.unit_amount, price.unit_amount_decimal, currency)
        if amount is None:
            return self.drop(identifier, "no positive amount")

        origin = OriginKey(EntityKind.PRODUCTS, str(product.id), variant)
        name = clean(product.name) or "Unnamed Product"
        description = clean(product.description)
        kind = classify_price(price)

        if kind == ProductKind.ONE_TIME:
            return CanonicalProduct(
                origin=origin,
                name=name,
                description=description,
                kind=kind,
                price=MoneyAmount(amount, currency),
                brand_id=self.brand_id,
            )

        if clean(price.interval) is None:
            return self.drop(identifier, "missing billing interval")
        unit = normalize_interval(price.interval)
        period = billing_period_for(unit)
        if period is None:
            return self.drop(identifier, f"unsupported billing interval '{price.interval}'")

        count = 1
        if price.interval_count is not None:
            count = to_positive_int(price.interval_count)
            if count is None:
                return self.drop(identifier, f"invalid interval count {price.interval_count!r}")

        term = None
        if price.term_count is not None:
            term = to_positive_int(price.term_count)
            limit = MAX_TERM_PERIODS[unit]
            if term is None:
                logger.info(f"Ignoring invalid term {price.term_count!r} of {identifier}")
            elif term > limit:
                logger.info(f"Capping term of {identifier} from {term} to {limit} {unit.value}s")
                term = limit

        return CanonicalProduct(
            origin=origin,
            name=name,
            description=description,
            kind=kind,
            price=MoneyAmount(amount, currency),
            brand_id=self.brand_id,
            billing_period=period,
            interval_unit=unit,
            interval_count=count,
            term_count=term,
        )

    def _identifier(self, raw: RawProduct) -> str:
        name = clean(raw.name)
        return f"'{name}' ({raw.id})" if name else str(raw.id)


class DiscountNormalizer(EntityNormalizer[CanonicalDiscount]):
    """Turns source coupons/discounts into canonical discount codes."""

    kind = EntityKind.DISCOUNTS

    def __init__(
        self,
        source_platform: str,
        brand_id: str,
        currency_cache: Optional[ReferenceCache[ParentRecord]] = None,
        now: Callable[[], datetime] = utc_now
    ):
        super().__init__(source_platform)
        self.brand_id = brand_id
        self.currency_cache = currency_cache
        self._now = now
        self._seen_codes = set()

    def normalize(self, raw: RawDiscount) -> Union[CanonicalDiscount, Dropped]:
        code = clean(raw.code)
        identifier = code or str(raw.id)

        if raw.active is False:
            return self.drop(identifier, "discount is not active")
        if code is None:
            return self.drop(identifier, "missing code")
        if code.upper() in self._seen_codes:
            return self.drop(identifier, "duplicate code in this run")

        try:
            expires_at = parse_timestamp(raw.expires_at)
        except (ValueError, OverflowError):
            return self.drop(identifier, f"unparseable expiry '{raw.expires_at}'")
        if expires_at is not None and expires_at <= self._now():
            return self.drop(identifier, f"expired at {expires_at.isoformat()}")

        token = (clean(raw.type_token) or "").lower()
        percent_off = None
        amount_off = None

        if "percent" in token:
            discount_type = DiscountType.PERCENTAGE
            try:
                percent_off = Decimal(str(raw.percent_off)) if raw.percent_off is not None else None
            except InvalidOperation:
                percent_off = None
            if percent_off is None or not percent_off.is_finite() or percent_off <= 0:
                return self.drop(identifier, "no discount value")
            if percent_off > 100:
                return self.drop(identifier, f"percentage {percent_off} is above 100")
        else:
            discount_type = DiscountType.FIXED_AMOUNT
            currency = normalize_currency(raw.currency)
            if currency is None:
                resolved = self._resolve_parent_currency(self.currency_cache, raw.parent_id)
                if isinstance(resolved, Dropped):
                    return self.drop(identifier, resolved.reason)
                currency = resolved
            if currency is None:
                return self.drop(identifier, "currency resolution failed for fixed-amount discount")
            amount = to_minor_units(raw.amount_off, raw.amount_off_decimal, currency)
            if amount is None:
                return self.drop(identifier, "no discount value")
            amount_off = MoneyAmount(amount, currency)

        if raw.restricted_products:
            logger.warning(
                f"Discount {code} is restricted to {raw.restricted_products} product(s); "
                f"product restrictions are not migrated"
            )

        usage_limit = to_positive_int(raw.usage_limit)

        self._seen_codes.add(code.upper())
        return CanonicalDiscount(
            origin=OriginKey(EntityKind.DISCOUNTS, str(raw.id)),
            code=code,
            name=clean(raw.name) or code,
            type=discount_type,
            brand_id=self.brand_id,
            percent_off=percent_off,
            amount_off=amount_off,
            usage_limit=usage_limit,
            expires_at=expires_at,
        )


class CustomerNormalizer(EntityNormalizer[CanonicalCustomer]):

    kind = EntityKind.CUSTOMERS

    def __init__(self, source_platform: str, brand_id: str):
        super().__init__(source_platform)
        self.brand_id = brand_id

    def normalize(self, raw: RawCustomer) -> Union[CanonicalCustomer, Dropped]:
        identifier = str(raw.id)
        if raw.deleted:
            return self.drop(identifier, "customer is deleted")

        email = clean(raw.email)
        if email is None:
            return self.drop(identifier, "missing email")
        if not EMAIL_PATTERN.match(email):
            return self.drop(identifier, f"invalid email '{email}'")

        metadata = {
            "source_platform": self.source_platform,
            "source_customer_id": str(raw.id),
        }
        if clean(raw.external_id):
            metadata["source_external_id"] = clean(raw.external_id)
        if raw.metadata:
            metadata["source_metadata"] = dict(raw.metadata)

        return CanonicalCustomer(
            origin=OriginKey(EntityKind.CUSTOMERS, str(raw.id)),
            email=email,
            brand_id=self.brand_id,
            name=clean(raw.name),
            phone=clean(raw.phone),
            address=to_address(raw.address),
            metadata=metadata,
        )


class SubscriptionNormalizer(EntityNormalizer[CanonicalSubscription]):
    """
    Attaches source subscriptions to the products created earlier in the run.

    The product must have been created by the products phase; otherwise the
    subscription is dropped. Customer details missing from the subscription
    are looked up once per customer through the customer cache.
    """

    kind = EntityKind.SUBSCRIPTIONS

    def __init__(
        self,
        source_platform: str,
        linker: CrossEntityLinker,
        customer_cache: Optional[ReferenceCache[RawCustomer]] = None
    ):
        super().__init__(source_platform)
        self.linker = linker
        self.customer_cache = customer_cache

    def normalize(self, raw: RawSubscription) -> Union[CanonicalSubscription, Dropped]:
        identifier = str(raw.id)
        status = (clean(raw.status) or "").lower()
        if status in INACTIVE_SUBSCRIPTION_STATUSES:
            return self.drop(identifier, f"subscription is {status}")

        product_id = clean(raw.product_id)
        if product_id is None:
            return self.drop(identifier, "missing product reference")
        price_id = clean(raw.price_id)

        try:
            if price_id:
                product_origin = OriginKey(EntityKind.PRODUCTS, product_id, price_id)
                ref = self.linker.lookup(product_origin)
            else:
                ref = self.linker.lookup_source(EntityKind.PRODUCTS, product_id)
                product_origin = None
        except LinkNotFound as e:
            return self.drop(identifier, f"product was not migrated ({e})")

        email = clean(raw.customer_email)
        name = clean(raw.customer_name)
        customer: Optional[RawCustomer] = None
        if (email is None or raw.billing_address is None) and raw.customer_id and self.customer_cache:
            try:
                customer = self.customer_cache.resolve(raw.customer_id)
            except (FatalMigrationError, SourceRateLimitedError):
                raise
            except SourceError as e:
                if email is None:
                    return self.drop(identifier, f"customer lookup failed: {e}")
                logger.warning(f"Customer lookup for subscription {identifier} failed: {e}")

        if customer is not None:
            email = email or clean(customer.email)
            name = name or clean(customer.name)
        if email is None:
            return self.drop(identifier, "missing customer email")

        address = to_address(raw.billing_address)
        if address is None and customer is not None:
            address = to_address(customer.address)
        if address is None:
            logger.info(f"Subscription {identifier} has no billing address; using placeholder address")
            address = SENTINEL_ADDRESS

        quantity = to_positive_int(raw.quantity) or 1

        return CanonicalSubscription(
            origin=OriginKey(EntityKind.SUBSCRIPTIONS, identifier),
            product_id=ref.id,
            price_id=ref.sub_id,
            customer_email=email,
            customer_name=name,
            billing_address=address,
            quantity=quantity,
            product_name=str(product_origin) if product_origin else f"products:{product_id}",
            metadata={
                "source_platform": self.source_platform,
                "source_subscription_id": identifier,
                "source_customer_id": clean(raw.customer_id),
                "original_status": status or None,
            },
        )
