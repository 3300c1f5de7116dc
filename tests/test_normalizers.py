"""Tests for the entity normalizers and field rules."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from commerce_migrate.errors import SourceAuthError, SourceNotFoundError, SourceRateLimitedError
from commerce_migrate.models.canonical import (
    BillingPeriod,
    DiscountType,
    EntityKind,
    IntervalUnit,
    OriginKey,
    ProductKind,
    SENTINEL_ADDRESS,
)
from commerce_migrate.models.record import (
    Dropped,
    ParentRecord,
    RawAddress,
    RawCustomer,
    RawDiscount,
    RawPrice,
    RawProduct,
    RawSubscription,
    TargetRef,
)
from commerce_migrate.services.linker import CrossEntityLinker
from commerce_migrate.services.normalizer import (
    CustomerNormalizer,
    DiscountNormalizer,
    ProductNormalizer,
    SubscriptionNormalizer,
    normalize_interval,
    parse_timestamp,
    to_minor_units,
    to_positive_int,
)
from commerce_migrate.services.reference_cache import ReferenceCache

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def products():
    return ProductNormalizer("stripe", "brand_1")


@pytest.fixture
def discounts():
    return DiscountNormalizer("stripe", "brand_1", now=lambda: NOW)


class TestFieldRules:

    def test_minor_units_prefers_integer(self):
        assert to_minor_units(999, "12.00", "USD") == 999

    def test_decimal_string_rounds_half_up(self):
        assert to_minor_units(None, "19.99", "USD") == 1999
        assert to_minor_units(None, "0.005", "USD") == 1
        assert to_minor_units(None, "1500", "JPY") == 1500

    def test_non_positive_amounts_rejected(self):
        assert to_minor_units(0, None, "USD") is None
        assert to_minor_units(None, "0.00", "USD") is None
        assert to_minor_units(None, "abc", "USD") is None

    @pytest.mark.parametrize("value, expected", [
        ("month", IntervalUnit.MONTH),
        ("Monthly", IntervalUnit.MONTH),
        ("years", IntervalUnit.YEAR),
        ("week", IntervalUnit.WEEK),
        ("fortnight", None),
        (None, None),
    ])
    def test_interval_mapping(self, value, expected):
        assert normalize_interval(value) == expected

    def test_timestamps(self):
        assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
        assert parse_timestamp("2026-01-02T03:04:05Z") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert parse_timestamp("2026-01-02").tzinfo is not None
        assert parse_timestamp(None) is None

    @pytest.mark.parametrize("value, expected", [
        (3, 3),
        ("3", 3),
        (" 12 ", 12),
        (2.0, 2),
        (0, None),
        (-1, None),
        ("0", None),
        ("-2", None),
        ("abc", None),
        ("1.5", None),
        (2.5, None),
        (True, None),
        (None, None),
    ])
    def test_positive_int(self, value, expected):
        assert to_positive_int(value) == expected


class TestProductNormalizer:

    def test_monthly_and_one_time_products(self, products):
        raw = [
            RawProduct(id="prod_a", name="Pro", prices=[
                RawPrice(id="price_a", category="recurring", unit_amount=999,
                         currency="usd", interval="month"),
            ]),
            RawProduct(id="prod_b", name="Ebook", prices=[
                RawPrice(id="price_b", category="one_time", unit_amount_decimal="19.99", currency="USD"),
            ]),
        ]

        result = products.normalize_all(raw)

        assert len(result) == 2
        pro, ebook = result
        assert pro.kind == ProductKind.SUBSCRIPTION
        assert pro.price.amount == 999
        assert pro.price.currency == "USD"
        assert pro.billing_period == BillingPeriod.MONTHLY
        assert pro.interval_unit == IntervalUnit.MONTH
        assert pro.interval_count == 1
        assert pro.origin == OriginKey(EntityKind.PRODUCTS, "prod_a", "price_a")
        assert ebook.kind == ProductKind.ONE_TIME
        assert ebook.price.amount == 1999
        assert ebook.billing_period is None

    @pytest.mark.parametrize("interval", ["week", "day"])
    def test_short_intervals_dropped(self, products, interval):
        raw = RawProduct(id="prod_w", name="Weekly", prices=[
            RawPrice(id="p", category="recurring", unit_amount=100, currency="USD", interval=interval),
        ])

        assert products.normalize_all([raw]) == []
        assert any("unsupported billing interval" in d.reason for d in products.dropped)

    def test_recurring_without_interval_dropped(self, products):
        raw = RawProduct(id="prod_x", prices=[
            RawPrice(id="p", category="recurring", unit_amount=100, currency="USD"),
        ])

        products.normalize_all([raw])

        assert any(d.reason == "missing billing interval" for d in products.dropped)

    def test_yearly_with_interval_count(self, products):
        raw = RawProduct(id="prod_y", name="Biennial", prices=[
            RawPrice(id="p", category="recurring", unit_amount=10000, currency="EUR",
                     interval="year", interval_count=2),
        ])

        [product] = products.normalize_all([raw])

        assert product.billing_period == BillingPeriod.YEARLY
        assert product.interval_count == 2
        assert product.cadence == "yearly, every 2 years"

    def test_term_is_capped(self, products):
        raw = RawProduct(id="prod_t", name="Long", prices=[
            RawPrice(id="p", category="recurring", unit_amount=100, currency="USD",
                     interval="year", term_count=50),
        ])

        [product] = products.normalize_all([raw])

        assert product.term_count == 20

    def test_string_interval_count_and_term(self, products):
        raw = RawProduct(id="prod_s", name="Quarterly", prices=[
            RawPrice(id="p", category="recurring", unit_amount=300, currency="USD",
                     interval="month", interval_count="3", term_count="4"),
        ])

        [product] = products.normalize_all([raw])

        assert product.interval_count == 3
        assert product.term_count == 4

    @pytest.mark.parametrize("count", ["abc", 0, "-1", 1.5])
    def test_invalid_interval_count_dropped(self, products, count):
        raw = RawProduct(id="prod_i", name="Odd", prices=[
            RawPrice(id="p", category="recurring", unit_amount=300, currency="USD",
                     interval="month", interval_count=count),
        ])

        assert products.normalize_all([raw]) == []
        assert "invalid interval count" in products.dropped[0].reason

    def test_invalid_term_ignored(self, products):
        raw = RawProduct(id="prod_j", name="Open", prices=[
            RawPrice(id="p", category="recurring", unit_amount=300, currency="USD",
                     interval="month", term_count="forever"),
        ])

        [product] = products.normalize_all([raw])

        assert product.term_count is None

    def test_inactive_and_priceless_products_dropped(self, products):
        raw = [
            RawProduct(id="prod_old", name="Old", active=False),
            RawProduct(id="prod_empty", name="Empty"),
        ]

        assert products.normalize_all(raw) == []
        reasons = {d.reason for d in products.dropped}
        assert "product is not active" in reasons
        assert "no active price" in reasons

    def test_unsupported_price_types_dropped(self, products):
        raw = RawProduct(id="prod_c", name="Custom", prices=[
            RawPrice(id="p1", category="one_time", unit_amount=100, currency="USD", amount_type="custom"),
            RawPrice(id="p2", category="one_time", unit_amount=100, currency="USD", active=False),
            RawPrice(id="p3", category="one_time", unit_amount=0, currency="USD"),
        ])

        assert products.normalize_all([raw]) == []
        reasons = [d.reason for d in products.dropped]
        assert "unsupported price type 'custom'" in reasons
        assert "price is archived" in reasons
        assert "no positive amount" in reasons

    def test_currency_from_parent(self):
        cache = ReferenceCache("store", MagicMock(return_value=ParentRecord(id="s1", currency="gbp")))
        normalizer = ProductNormalizer("lemonsqueezy", "brand_1", cache)
        raw = RawProduct(id="1", name="Course", parent_id="s1", prices=[
            RawPrice(id="10", category="one_time", unit_amount=2500),
        ])

        [product] = normalizer.normalize_all([raw])

        assert product.price.currency == "GBP"

    def test_parent_lookup_failure_drops(self):
        cache = ReferenceCache("store", MagicMock(side_effect=SourceNotFoundError("gone")))
        normalizer = ProductNormalizer("lemonsqueezy", "brand_1", cache)
        raw = RawProduct(id="1", parent_id="s1", prices=[RawPrice(id="10", unit_amount=2500)])

        assert normalizer.normalize_all([raw]) == []
        assert normalizer.dropped[0].reason.startswith("currency resolution failed")

    def test_parent_auth_failure_propagates(self):
        cache = ReferenceCache("store", MagicMock(side_effect=SourceAuthError("denied", status_code=401)))
        normalizer = ProductNormalizer("lemonsqueezy", "brand_1", cache)
        raw = RawProduct(id="1", parent_id="s1", prices=[RawPrice(id="10", unit_amount=2500)])

        with pytest.raises(SourceAuthError):
            normalizer.normalize_all([raw])

    def test_parent_rate_limit_propagates(self):
        cache = ReferenceCache("store", MagicMock(side_effect=SourceRateLimitedError("slow", retry_after=5)))
        normalizer = ProductNormalizer("lemonsqueezy", "brand_1", cache)
        raw = RawProduct(id="1", parent_id="s1", prices=[RawPrice(id="10", unit_amount=2500)])

        with pytest.raises(SourceRateLimitedError):
            normalizer.normalize_all([raw])

    def test_missing_name_gets_placeholder(self, products):
        raw = RawProduct(id="p", prices=[RawPrice(id="x", unit_amount=100, currency="USD")])

        [product] = products.normalize_all([raw])

        assert product.name == "Unnamed Product"


class TestDiscountNormalizer:

    def test_percentage_discount(self, discounts):
        raw = RawDiscount(id="SAVE20", code="SAVE20", type_token="percent", percent_off=20)

        [discount] = discounts.normalize_all([raw])

        assert discount.type == DiscountType.PERCENTAGE
        assert discount.percent_off == Decimal("20")
        assert discount.amount_off is None
        assert discount.code == "SAVE20"
        assert discount.name == "SAVE20"

    def test_fixed_amount_discount(self, discounts):
        raw = RawDiscount(id="FIVE", code="FIVE", type_token="amount", amount_off=500, currency="usd")

        [discount] = discounts.normalize_all([raw])

        assert discount.type == DiscountType.FIXED_AMOUNT
        assert discount.percent_off is None
        assert discount.amount_off.amount == 500
        assert discount.amount_off.currency == "USD"

    def test_exactly_one_value_is_set(self, discounts):
        raw = [
            RawDiscount(id="a", code="A", type_token="percent", percent_off=10),
            RawDiscount(id="b", code="B", type_token="fixed", amount_off=100, currency="EUR"),
        ]

        for discount in discounts.normalize_all(raw):
            assert (discount.percent_off is None) != (discount.amount_off is None)

    def test_expired_discount_dropped(self, discounts):
        raw = RawDiscount(id="OLD", code="OLD", type_token="percent", percent_off=10,
                          expires_at=(NOW - timedelta(days=1)).isoformat())

        assert discounts.normalize_all([raw]) == []
        assert discounts.dropped[0].reason.startswith("expired at")

    def test_future_expiry_kept(self, discounts):
        expires = int((NOW + timedelta(days=30)).timestamp())
        raw = RawDiscount(id="NEW", code="NEW", type_token="percent", percent_off=10, expires_at=expires)

        [discount] = discounts.normalize_all([raw])

        assert discount.expires_at == NOW + timedelta(days=30)

    def test_unparseable_expiry_dropped(self, discounts):
        raw = RawDiscount(id="X", code="X", type_token="percent", percent_off=10, expires_at="not a date")

        assert discounts.normalize_all([raw]) == []
        assert "unparseable expiry" in discounts.dropped[0].reason

    @pytest.mark.parametrize("percent", [0, 150, None])
    def test_invalid_percentages_dropped(self, discounts, percent):
        raw = RawDiscount(id="P", code="P", type_token="percentage", percent_off=percent)

        assert discounts.normalize_all([raw]) == []

    def test_duplicate_codes_dropped(self, discounts):
        raw = [
            RawDiscount(id="1", code="SPRING", type_token="percent", percent_off=10),
            RawDiscount(id="2", code="spring", type_token="percent", percent_off=15),
        ]

        result = discounts.normalize_all(raw)

        assert [d.origin.source_id for d in result] == ["1"]
        assert discounts.dropped[0].reason == "duplicate code in this run"

    def test_missing_code_and_inactive_dropped(self, discounts):
        raw = [
            RawDiscount(id="1", type_token="percent", percent_off=10),
            RawDiscount(id="2", code="OFF", type_token="percent", percent_off=10, active=False),
        ]

        assert discounts.normalize_all(raw) == []
        assert {d.reason for d in discounts.dropped} == {"missing code", "discount is not active"}

    def test_fixed_amount_without_currency_dropped(self, discounts):
        raw = RawDiscount(id="F", code="F", type_token="fixed", amount_off=100)

        assert discounts.normalize_all([raw]) == []
        assert "currency resolution failed" in discounts.dropped[0].reason

    def test_non_positive_usage_limit_ignored(self, discounts):
        raw = RawDiscount(id="U", code="U", type_token="percent", percent_off=5, usage_limit=0)

        [discount] = discounts.normalize_all([raw])

        assert discount.usage_limit is None

    @pytest.mark.parametrize("limit, expected", [("10", 10), ("ten", None), (25, 25)])
    def test_usage_limit_coerced(self, discounts, limit, expected):
        raw = RawDiscount(id="L", code="L", type_token="percent", percent_off=5, usage_limit=limit)

        [discount] = discounts.normalize_all([raw])

        assert discount.usage_limit == expected


class TestCustomerNormalizer:

    def test_customer_with_metadata(self):
        normalizer = CustomerNormalizer("polar", "brand_1")
        raw = RawCustomer(
            id="cus_1",
            email=" jane@example.com ",
            name="Jane",
            external_id="ext-9",
            metadata={"plan": "gold"},
            address=RawAddress(city="Berlin", country="DE"),
        )

        [customer] = normalizer.normalize_all([raw])

        assert customer.email == "jane@example.com"
        assert customer.metadata["source_platform"] == "polar"
        assert customer.metadata["source_customer_id"] == "cus_1"
        assert customer.metadata["source_external_id"] == "ext-9"
        assert customer.metadata["source_metadata"] == {"plan": "gold"}
        assert customer.address.city == "Berlin"
        assert customer.address.line1 is None

    def test_invalid_customers_dropped(self):
        normalizer = CustomerNormalizer("stripe", "brand_1")
        raw = [
            RawCustomer(id="1"),
            RawCustomer(id="2", email="not-an-email"),
            RawCustomer(id="3", email="gone@example.com", deleted=True),
        ]

        assert normalizer.normalize_all(raw) == []
        assert len(normalizer.dropped) == 3


class TestSubscriptionNormalizer:

    @pytest.fixture
    def linker(self):
        linker = CrossEntityLinker()
        linker.record(OriginKey(EntityKind.PRODUCTS, "prod_1", "price_1"), TargetRef("pdt_1", "pri_1"))
        linker.record(OriginKey(EntityKind.PRODUCTS, "prod_1", "price_2"), TargetRef("pdt_2", "pri_2"))
        return linker

    def test_attaches_to_created_variant(self, linker):
        normalizer = SubscriptionNormalizer("stripe", linker)
        raw = RawSubscription(id="sub_1", product_id="prod_1", price_id="price_2",
                              customer_email="a@example.com", status="active", quantity=3)

        [sub] = normalizer.normalize_all([raw])

        assert sub.product_id == "pdt_2"
        assert sub.price_id == "pri_2"
        assert sub.quantity == 3
        assert sub.billing_address == SENTINEL_ADDRESS
        assert sub.metadata["source_subscription_id"] == "sub_1"

    def test_falls_back_to_first_variant_without_price(self, linker):
        normalizer = SubscriptionNormalizer("stripe", linker)
        raw = RawSubscription(id="sub_1", product_id="prod_1", customer_email="a@example.com")

        [sub] = normalizer.normalize_all([raw])

        assert sub.product_id == "pdt_1"

    @pytest.mark.parametrize("quantity, expected", [("2", 2), ("x", 1), (0, 1), (None, 1)])
    def test_quantity_coerced(self, linker, quantity, expected):
        normalizer = SubscriptionNormalizer("stripe", linker)
        raw = RawSubscription(id="sub_q", product_id="prod_1", price_id="price_1",
                              customer_email="a@example.com", quantity=quantity)

        [sub] = normalizer.normalize_all([raw])

        assert sub.quantity == expected

    def test_unmigrated_product_dropped(self, linker):
        normalizer = SubscriptionNormalizer("stripe", linker)
        raw = [
            RawSubscription(id="sub_1", product_id="prod_9", price_id="x", customer_email="a@example.com"),
            RawSubscription(id="sub_2", product_id="prod_1", price_id="price_3", customer_email="a@example.com"),
        ]

        assert normalizer.normalize_all(raw) == []
        assert all("product was not migrated" in d.reason for d in normalizer.dropped)

    def test_inactive_statuses_dropped(self, linker):
        normalizer = SubscriptionNormalizer("stripe", linker)
        raw = RawSubscription(id="sub_1", product_id="prod_1", price_id="price_1",
                              customer_email="a@example.com", status="canceled")

        assert normalizer.normalize_all([raw]) == []

    def test_customer_resolved_once_through_cache(self, linker):
        fetch = MagicMock(return_value=RawCustomer(
            id="cus_1", email="b@example.com", name="Bea",
            address=RawAddress(line1="1 Main St", city="Austin", region="TX", postal_code="73301", country="US"),
        ))
        normalizer = SubscriptionNormalizer("stripe", linker, ReferenceCache("customer", fetch))
        raw = [
            RawSubscription(id=f"sub_{i}", product_id="prod_1", price_id="price_1", customer_id="cus_1")
            for i in range(3)
        ]

        result = normalizer.normalize_all(raw)

        assert len(result) == 3
        assert result[0].customer_email == "b@example.com"
        assert result[0].billing_address.city == "Austin"
        fetch.assert_called_once_with("cus_1")

    def test_customer_lookup_failure_without_email_drops(self, linker):
        cache = ReferenceCache("customer", MagicMock(side_effect=SourceNotFoundError("gone")))
        normalizer = SubscriptionNormalizer("stripe", linker, cache)
        raw = RawSubscription(id="sub_1", product_id="prod_1", price_id="price_1", customer_id="cus_x")

        assert normalizer.normalize_all([raw]) == []
        assert normalizer.dropped[0].reason.startswith("customer lookup failed")


class TestDropped:

    def test_normalize_returns_dropped_without_raising(self, products):
        result = products.normalize(RawProduct(id="p", active=False))

        assert isinstance(result, Dropped)
        assert products.dropped == []
