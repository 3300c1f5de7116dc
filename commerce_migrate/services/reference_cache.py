"""Memoized parent lookups."""

import logging
from typing import Callable, Dict, Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


class ReferenceCache(Generic[V]):
    """
    Resolves parent records (stores, customers) by id, fetching each id once.

    A successful fetch is kept for the rest of the run, so any number of
    records sharing a parent cause a single remote call. Failed fetches are
    not cached and the error reaches the caller.
    """

    def __init__(self, name: str, fetch: Callable[[str], V]):
        """
        Initialize the cache.

        Args:
            name: What is being resolved (used in log messages)
            fetch: Callable performing the remote lookup for one id
        """
        self.name = name
        self._fetch = fetch
        self._values: Dict[str, V] = {}
        self.fetch_count = 0

    def resolve(self, parent_id) -> V:
        """
        Get the value for a parent id, fetching it on first use.

        Raises:
            SourceError: If the remote fetch fails
        """
        key = str(parent_id)
        if key in self._values:
            logger.debug(f"Using cached {self.name} {key}")
            return self._values[key]

        logger.info(f"Fetching {self.name} {key}")
        self.fetch_count += 1
        value = self._fetch(key)
        self._values[key] = value
        return value

    def __contains__(self, parent_id) -> bool:
        return str(parent_id) in self._values

    def __len__(self) -> int:
        return len(self._values)
