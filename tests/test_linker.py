"""Tests for the cross-entity linker."""

import pytest

from commerce_migrate.errors import LinkNotFound
from commerce_migrate.models.canonical import EntityKind, OriginKey
from commerce_migrate.models.record import TargetRef
from commerce_migrate.services.linker import CrossEntityLinker


class TestCrossEntityLinker:

    def test_record_and_lookup(self):
        linker = CrossEntityLinker()
        origin = OriginKey(EntityKind.PRODUCTS, "prod_1", "price_1")

        linker.record(origin, TargetRef("pdt_1", "pri_1"))

        assert linker.lookup(origin) == TargetRef("pdt_1", "pri_1")
        assert linker.find(OriginKey(EntityKind.PRODUCTS, "prod_1", "price_2")) is None

    def test_missing_link_raises(self):
        with pytest.raises(LinkNotFound):
            CrossEntityLinker().lookup(OriginKey(EntityKind.PRODUCTS, "nope"))

    def test_source_lookup_returns_first_variant(self):
        linker = CrossEntityLinker()
        linker.record(OriginKey(EntityKind.PRODUCTS, "prod_1", "a"), TargetRef("pdt_a"))
        linker.record(OriginKey(EntityKind.PRODUCTS, "prod_1", "b"), TargetRef("pdt_b"))

        assert linker.lookup_source(EntityKind.PRODUCTS, "prod_1").id == "pdt_a"
        with pytest.raises(LinkNotFound):
            linker.lookup_source(EntityKind.DISCOUNTS, "prod_1")

    def test_origin_key_text(self):
        assert str(OriginKey(EntityKind.PRODUCTS, "p", "v")) == "products:p:v"
        assert str(OriginKey(EntityKind.DISCOUNTS, "d")) == "discounts:d"
