"""Paged extraction from source providers."""

from .base import PagedExtractor, ExtractionResult

__all__ = [
    "PagedExtractor",
    "ExtractionResult",
]
