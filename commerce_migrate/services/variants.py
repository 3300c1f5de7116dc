"""Expansion of a source product into one canonical product per price."""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, List, Union

from ..models.canonical import CanonicalProduct, ProductKind
from ..models.record import Dropped, RawPrice, RawProduct

logger = logging.getLogger(__name__)

# Discriminator of the single variant built from a product-level price
PRODUCT_PRICE_VARIANT = "product-price"

PriceNormalizer = Callable[[RawProduct, RawPrice, str], Union[CanonicalProduct, Dropped]]


@dataclass
class Expansion:
    products: List[CanonicalProduct] = field(default_factory=list)
    dropped: List[Dropped] = field(default_factory=list)


def variant_discriminator(price: RawPrice, position: int) -> str:
    """Stable discriminator for a price: its id, or its position in the list."""
    if price.id is not None and str(price.id).strip():
        return str(price.id).strip()
    return f"position-{position}"


class VariantExpander:
    """
    Emits one canonical product per eligible price of a source product.

    When a product has eligible subscription prices, only those are
    emitted and its one-time prices are dropped. One-time prices are
    emitted when no subscription price is eligible. Origin keys are
    derived from the source product and price ids, so unchanged input
    always yields the same keys.
    """

    def __init__(self, normalize_price: PriceNormalizer):
        """
        Args:
            normalize_price: Callable taking (product, price, discriminator)
                and returning a CanonicalProduct or Dropped
        """
        self.normalize_price = normalize_price

    def expand(self, product: RawProduct) -> Expansion:
        expansion = Expansion()

        candidates = [
            (price, variant_discriminator(price, position))
            for position, price in enumerate(product.prices)
        ]
        if not candidates and product.fallback_price is not None:
            candidates = [(product.fallback_price, PRODUCT_PRICE_VARIANT)]

        subscriptions: List[CanonicalProduct] = []
        one_time: List[CanonicalProduct] = []
        seen = set()

        for price, variant in candidates:
            if variant in seen:
                expansion.dropped.append(Dropped(
                    identifier=f"{product.id} [{variant}]",
                    reason="duplicate price id",
                ))
                continue
            seen.add(variant)

            result = self.normalize_price(product, price, variant)
            if isinstance(result, Dropped):
                expansion.dropped.append(result)
            elif result.kind == ProductKind.SUBSCRIPTION:
                subscriptions.append(result)
            else:
                one_time.append(result)

        if subscriptions:
            for superseded in one_time:
                expansion.dropped.append(Dropped(
                    identifier=f"{product.id} [{superseded.origin.variant}]",
                    reason="one-time price skipped because the product has subscription prices",
                ))
            emitted = subscriptions
        else:
            emitted = one_time

        if len(emitted) > 1:
            emitted = [
                replace(item, name=f"{item.name} ({item.price.format()})")
                for item in emitted
            ]

        expansion.products = emitted
        logger.debug(
            f"Expanded product {product.id} into {len(emitted)} variant(s), "
            f"{len(expansion.dropped)} dropped"
        )
        return expansion
