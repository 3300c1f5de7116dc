"""Target platforms and the apply engine."""

from .base import TargetPlatform, ApplyEngine
from .dodo_loader import DodoPaymentsTarget

__all__ = [
    "TargetPlatform",
    "ApplyEngine",
    "DodoPaymentsTarget",
]
