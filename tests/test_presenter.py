"""Tests for the plan presenter and confirmation gate."""

import io
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from commerce_migrate.errors import ConfirmationRequiredError
from commerce_migrate.models.canonical import (
    BillingPeriod,
    CanonicalDiscount,
    CanonicalProduct,
    DiscountType,
    EntityKind,
    IntervalUnit,
    MoneyAmount,
    OriginKey,
    ProductKind,
)
from commerce_migrate.models.migration import ConfirmPolicy
from commerce_migrate.services.presenter import PlanPresenter, describe


def product(name="Pro", amount=999):
    return CanonicalProduct(
        origin=OriginKey(EntityKind.PRODUCTS, name, "p"),
        name=name,
        kind=ProductKind.SUBSCRIPTION,
        price=MoneyAmount(amount, "USD"),
        brand_id="brand_1",
        billing_period=BillingPeriod.MONTHLY,
        interval_unit=IntervalUnit.MONTH,
    )


def discount(code="SAVE20"):
    return CanonicalDiscount(
        origin=OriginKey(EntityKind.DISCOUNTS, code),
        code=code,
        name="Spring sale",
        type=DiscountType.PERCENTAGE,
        brand_id="brand_1",
        percent_off=Decimal("20"),
        expires_at=datetime(2027, 1, 31, tzinfo=timezone.utc),
        usage_limit=100,
    )


class TestDescribe:

    def test_product_line(self):
        assert describe(product()) == "Pro - USD 9.99 - subscription (monthly, every month)"

    def test_discount_line(self):
        assert describe(discount()) == "SAVE20 - 20% off - Spring sale (expires 2027-01-31) (limit 100)"


class TestPlanPresenter:

    def test_render_numbers_items_in_order(self):
        presenter = PlanPresenter(ConfirmPolicy.APPROVE)

        lines = presenter.render(EntityKind.PRODUCTS, [product("A"), product("B")])

        assert lines[0] == "Products to migrate (2):"
        assert lines[1].startswith("  1. A")
        assert lines[2].startswith("  2. B")

    @pytest.mark.parametrize("answer, expected", [("y", True), ("YES", True), ("n", False), ("", False)])
    def test_prompt_answers(self, answer, expected):
        output = io.StringIO()
        presenter = PlanPresenter(ConfirmPolicy.PROMPT, True, input_func=lambda _: answer, output=output)

        assert presenter.present(EntityKind.DISCOUNTS, [discount()]) is expected
        assert "SAVE20" in output.getvalue()

    def test_approve_policy_never_asks(self):
        ask = MagicMock()
        presenter = PlanPresenter(ConfirmPolicy.APPROVE, False, input_func=ask, output=io.StringIO())

        assert presenter.present(EntityKind.PRODUCTS, [product()]) is True
        ask.assert_not_called()

    def test_reject_policy_never_asks(self):
        ask = MagicMock()
        presenter = PlanPresenter(ConfirmPolicy.REJECT, True, input_func=ask, output=io.StringIO())

        assert presenter.present(EntityKind.PRODUCTS, [product()]) is False
        ask.assert_not_called()

    def test_prompt_without_terminal_raises(self):
        presenter = PlanPresenter(ConfirmPolicy.PROMPT, False, output=io.StringIO())

        with pytest.raises(ConfirmationRequiredError):
            presenter.present(EntityKind.PRODUCTS, [product()])
