"""Service layer for the migration application."""

from .reference_cache import ReferenceCache
from .linker import CrossEntityLinker
from .normalizer import (
    EntityNormalizer,
    ProductNormalizer,
    DiscountNormalizer,
    CustomerNormalizer,
    SubscriptionNormalizer,
)
from .variants import VariantExpander
from .presenter import PlanPresenter

__all__ = [
    "ReferenceCache",
    "CrossEntityLinker",
    "EntityNormalizer",
    "ProductNormalizer",
    "DiscountNormalizer",
    "CustomerNormalizer",
    "SubscriptionNormalizer",
    "VariantExpander",
    "PlanPresenter",
]
