"""
Commerce Migration Application

Migrates catalog items, prices, discount codes, customers and subscriptions
from a source commerce platform to a target commerce platform.

Supports:
- Multiple source providers (Stripe, Lemon Squeezy, Polar, Cashfree)
- Dodo Payments as the target platform
- Paginated extraction with rate-limit handling
- Normalization into one canonical commerce schema
- Per-kind preview and confirmation before anything is created
- Per-item failure isolation and a run report
"""

__version__ = "0.1.0"
