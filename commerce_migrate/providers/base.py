"""Base interface for source providers."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
import logging
import time

import requests

from ..errors import (
    SourceAuthError,
    SourceError,
    SourceNotFoundError,
    SourceRateLimitedError,
)
from ..http import create_session, error_details, response_json, retry_after_seconds
from ..models.canonical import EntityKind
from ..models.record import Page, ParentRecord, RawCustomer

logger = logging.getLogger(__name__)


def dig(data: Any, *keys, default: Any = None) -> Any:
    """
    Walk nested dictionaries, returning default when any key is missing.

    Example: dig(item, "attributes", "store_id")
    """
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current


class SourceProvider(ABC):
    """
    Base class for source providers.

    A provider exposes one paged "list" capability per supported entity
    kind plus parent and customer lookups. It copies provider payloads into
    raw records and converts provider units (for example basis points), but
    leaves every keep/drop decision to the normalizers.
    """

    name = "source"
    supported_kinds: List[EntityKind] = []

    def list_products(self, page_token: Any, page_size: int) -> Page:
        raise NotImplementedError(f"{self.name} does not provide products")

    def list_discounts(self, page_token: Any, page_size: int) -> Page:
        raise NotImplementedError(f"{self.name} does not provide discounts")

    def list_customers(self, page_token: Any, page_size: int) -> Page:
        raise NotImplementedError(f"{self.name} does not provide customers")

    def list_subscriptions(self, page_token: Any, page_size: int) -> Page:
        raise NotImplementedError(f"{self.name} does not provide subscriptions")

    def get_parent(self, parent_id: str) -> ParentRecord:
        """Fetch the parent (store, organization) of a record."""
        raise SourceNotFoundError(f"{self.name} has no parent records", provider=self.name)

    def get_customer(self, customer_id: str) -> RawCustomer:
        """Fetch a single customer by id."""
        raise SourceNotFoundError(f"{self.name} cannot look up customers", provider=self.name)

    @abstractmethod
    def verify_connection(self) -> None:
        """
        Check that the credentials are accepted.

        Raises:
            SourceAuthError: If the credentials are rejected
            SourceError: If the source cannot be reached
        """
        pass

    def supports(self, kind: EntityKind) -> bool:
        return kind in self.supported_kinds

    def lister_for(self, kind: EntityKind) -> Callable[[Any, int], Page]:
        """Get the list capability for an entity kind."""
        if not self.supports(kind):
            raise ValueError(f"{self.name} does not support {kind.value}")
        return {
            EntityKind.PRODUCTS: self.list_products,
            EntityKind.DISCOUNTS: self.list_discounts,
            EntityKind.CUSTOMERS: self.list_customers,
            EntityKind.SUBSCRIPTIONS: self.list_subscriptions,
        }[kind]


class HTTPSourceProvider(SourceProvider):
    """
    Source provider backed by a REST API.

    Handles the session, rate limiting and mapping of HTTP failures to the
    source error types.
    """

    base_url = ""

    def __init__(
        self,
        headers: Dict[str, str],
        timeout: float = 30.0,
        rate_limit: float = 5.0,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the provider.

        Args:
            headers: Authentication and versioning headers
            timeout: Request timeout in seconds
            rate_limit: Max requests per second
            base_url: Override base URL
            session: Custom requests session
        """
        if base_url:
            self.base_url = base_url
        self.base_url = self.base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limit = rate_limit
        self._last_request_time = 0.0
        self._session = session or create_session(headers)
        if session is not None:
            self._session.headers.update(headers)

    def _rate_limit_wait(self):
        """Wait to respect rate limits."""
        if self.rate_limit > 0:
            elapsed = time.time() - self._last_request_time
            wait_time = (1.0 / self.rate_limit) - elapsed
            if wait_time > 0:
                time.sleep(wait_time)
        self._last_request_time = time.time()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a JSON resource.

        Raises:
            SourceAuthError: On 401/403
            SourceNotFoundError: On 404
            SourceRateLimitedError: On 429, carrying Retry-After
            SourceError: On any other failure
        """
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        self._rate_limit_wait()

        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise SourceError(f"Request to {self.name} failed: {e}", provider=self.name) from e

        status = response.status_code
        if status < 400:
            return response_json(response)

        message = error_details(response)["message"]
        if status in (401, 403):
            raise SourceAuthError(
                f"{self.name} rejected the credentials: {message}",
                status_code=status,
                provider=self.name,
            )
        if status == 404:
            raise SourceNotFoundError(f"{path} not found: {message}", status_code=status, provider=self.name)
        if status == 429:
            raise SourceRateLimitedError(
                f"{self.name} rate limit exceeded",
                retry_after=retry_after_seconds(response),
                provider=self.name,
            )
        raise SourceError(f"HTTP {status} from {self.name}: {message}", status_code=status, provider=self.name)
