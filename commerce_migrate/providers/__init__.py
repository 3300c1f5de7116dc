"""Source providers."""

from .base import SourceProvider, HTTPSourceProvider, dig
from .stripe import StripeProvider
from .lemonsqueezy import LemonSqueezyProvider
from .polar import PolarProvider
from .cashfree import CashfreeProvider

PROVIDERS = {
    "stripe": StripeProvider,
    "lemonsqueezy": LemonSqueezyProvider,
    "polar": PolarProvider,
    "cashfree": CashfreeProvider,
}

__all__ = [
    "SourceProvider",
    "HTTPSourceProvider",
    "dig",
    "StripeProvider",
    "LemonSqueezyProvider",
    "PolarProvider",
    "CashfreeProvider",
    "PROVIDERS",
]
