"""Tests for the parent reference cache."""

from unittest.mock import MagicMock

import pytest

from commerce_migrate.errors import SourceError
from commerce_migrate.models.record import ParentRecord, RawPrice, RawProduct
from commerce_migrate.services.normalizer import ProductNormalizer
from commerce_migrate.services.reference_cache import ReferenceCache


class TestReferenceCache:

    def test_fetches_each_id_once(self):
        fetch = MagicMock(side_effect=lambda pid: ParentRecord(id=pid, currency="USD"))
        cache = ReferenceCache("store", fetch)

        for _ in range(5):
            assert cache.resolve("store_1").currency == "USD"
        cache.resolve("store_2")

        assert fetch.call_count == 2
        assert cache.fetch_count == 2
        assert "store_1" in cache
        assert len(cache) == 2

    def test_ids_compared_as_strings(self):
        fetch = MagicMock(return_value=ParentRecord(id="7", currency="EUR"))
        cache = ReferenceCache("store", fetch)

        cache.resolve(7)
        cache.resolve("7")

        fetch.assert_called_once_with("7")

    def test_failures_are_not_cached(self):
        fetch = MagicMock(side_effect=[SourceError("boom"), ParentRecord(id="s", currency="USD")])
        cache = ReferenceCache("store", fetch)

        with pytest.raises(SourceError):
            cache.resolve("s")
        assert cache.resolve("s").currency == "USD"
        assert fetch.call_count == 2

    def test_fifty_products_of_one_store_fetch_once(self):
        fetch = MagicMock(return_value=ParentRecord(id="store_1", currency="usd"))
        cache = ReferenceCache("store", fetch)
        normalizer = ProductNormalizer("lemonsqueezy", "brand_1", cache)
        products = [
            RawProduct(
                id=f"prod_{i}",
                name=f"Product {i}",
                parent_id="store_1",
                prices=[RawPrice(id=f"price_{i}", category="one_time", unit_amount=500)],
            )
            for i in range(50)
        ]

        result = normalizer.normalize_all(products)

        assert len(result) == 50
        assert all(p.price.currency == "USD" for p in result)
        fetch.assert_called_once_with("store_1")
