"""Cashfree source provider."""

import logging
from typing import Any, Dict, Optional

import requests

from .base import HTTPSourceProvider
from ..errors import CredentialError
from ..models.canonical import EntityKind
from ..models.record import Page, RawAddress, RawCustomer, RawDiscount, RawPrice, RawProduct

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2025-01-01"
API_VERSIONS = ("2025-01-01", "2023-08-01", "2022-09-01")


def _first(item: Dict[str, Any], *keys) -> Any:
    """Value of the first key present and not None."""
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return None


def _decimal_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class CashfreeProvider(HTTPSourceProvider):
    """
    Reads plans, offers and customers from Cashfree Subscriptions.

    Authenticates with the client id/secret headers. Lists page with an
    opaque `cursor`. Plan and offer amounts are decimal major units.
    """

    name = "cashfree"
    supported_kinds = [
        EntityKind.PRODUCTS,
        EntityKind.DISCOUNTS,
        EntityKind.CUSTOMERS,
    ]

    BASE_URLS = {
        "sandbox": "https://sandbox.cashfree.com",
        "production": "https://api.cashfree.com",
    }

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        environment: str = "sandbox",
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 30.0,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the provider.

        Args:
            client_id: Cashfree client id (x-client-id)
            client_secret: Cashfree client secret (x-client-secret)
            environment: sandbox or production
            api_version: Value of the x-api-version header
            timeout: Request timeout in seconds
            base_url: Override base URL
            session: Custom requests session
        """
        if not client_id or not client_secret:
            raise CredentialError("Cashfree client id and client secret are required")
        if environment not in self.BASE_URLS:
            raise ValueError(f"Unknown Cashfree environment: {environment}")
        super().__init__(
            {
                "x-client-id": client_id,
                "x-client-secret": client_secret,
                "x-api-version": api_version,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            rate_limit=5.0,
            base_url=base_url or self.BASE_URLS[environment],
            session=session,
        )
        self.environment = environment
        self.api_version = api_version

    def _list(self, path: str, page_token: Any, page_size: int) -> Page:
        params: Dict[str, Any] = {"limit": page_size}
        if page_token:
            params["cursor"] = page_token
        data = self._get(path, params)

        if isinstance(data, list):
            return Page(records=data, next_token=None)
        items = _first(data, "data", "items")
        if items is None:
            raise KeyError("data")
        return Page(records=items, next_token=_first(data, "cursor", "next_cursor") or None)

    def verify_connection(self) -> None:
        self._get("/subscriptions/customers", {"limit": 1})
        logger.info(f"Successfully connected to Cashfree ({self.environment})")

    # Plans

    def list_products(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/subscriptions/plans", page_token, page_size)
        page.records = [self._plan(item) for item in page.records]
        return page

    def _plan(self, item: Dict[str, Any]) -> RawProduct:
        plan_id = str(_first(item, "plan_id", "id"))
        interval = _first(item, "plan_interval_type", "interval", "billing_period")
        status = _first(item, "plan_status", "status")

        price = RawPrice(
            id=plan_id,
            category="recurring" if interval else "one_time",
            unit_amount_decimal=_decimal_text(
                _first(item, "plan_recurring_amount", "amount", "price")
            ),
            currency=_first(item, "plan_currency", "currency"),
            interval=interval,
            interval_count=_first(item, "plan_intervals", "interval_count"),
            term_count=_first(item, "plan_max_cycles"),
        )
        return RawProduct(
            id=plan_id,
            name=_first(item, "plan_name", "name"),
            description=_first(item, "plan_note", "description"),
            prices=[price],
            active=None if status is None else str(status).upper() == "ACTIVE",
            raw=item,
        )

    # Offers

    def list_discounts(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/subscriptions/offers", page_token, page_size)
        page.records = [self._offer(item) for item in page.records]
        return page

    def _offer(self, item: Dict[str, Any]) -> RawDiscount:
        code = _first(item, "offer_code", "code", "name")
        offer_type = str(_first(item, "offer_type", "discount_type", "type") or "")
        return RawDiscount(
            id=str(_first(item, "offer_id", "id") or code),
            code=code,
            name=_first(item, "offer_name", "name"),
            type_token=offer_type,
            percent_off=_first(item, "percentage", "percent_off"),
            amount_off_decimal=_decimal_text(_first(item, "offer_amount", "amount", "amount_off")),
            currency=_first(item, "offer_currency", "currency"),
            usage_limit=_first(item, "max_redemptions", "usage_limit"),
            expires_at=_first(item, "offer_end_time", "expires_at", "valid_until"),
            raw=item,
        )

    # Customers

    def list_customers(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/subscriptions/customers", page_token, page_size)
        page.records = [self._customer(item) for item in page.records]
        return page

    def _customer(self, item: Dict[str, Any]) -> RawCustomer:
        address = RawAddress(
            line1=_first(item, "address_line1", "line1"),
            line2=_first(item, "address_line2", "line2"),
            city=item.get("city"),
            region=item.get("state"),
            postal_code=_first(item, "postal_code", "zip"),
            country=item.get("country"),
        )
        return RawCustomer(
            id=str(_first(item, "customer_id", "id")),
            email=_first(item, "customer_email", "email"),
            name=_first(item, "customer_name", "name"),
            phone=_first(item, "customer_phone", "phone", "mobile"),
            address=address,
            raw=item,
        )
