"""Polar source provider."""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from .base import HTTPSourceProvider, dig
from ..errors import CredentialError
from ..models.canonical import EntityKind
from ..models.record import (
    Page,
    RawAddress,
    RawCustomer,
    RawDiscount,
    RawPrice,
    RawProduct,
    RawSubscription,
)

logger = logging.getLogger(__name__)


def basis_points_to_percent(value: Any) -> Optional[Decimal]:
    """Convert basis points to a percentage (2000 -> 20)."""
    if value is None:
        return None
    return Decimal(str(value)) / 100


def _address(data: Optional[Dict[str, Any]]) -> Optional[RawAddress]:
    if not data:
        return None
    return RawAddress(
        line1=data.get("line1"),
        line2=data.get("line2"),
        city=data.get("city"),
        region=data.get("state"),
        postal_code=data.get("postal_code"),
        country=data.get("country"),
    )


class PolarProvider(HTTPSourceProvider):
    """
    Reads products, discounts, customers and subscriptions from Polar.

    Polar pages by number (`page`, `limit`) and reports `pagination.max_page`.
    Every list is scoped to one organization. Prices are embedded in the
    product; amounts are integer minor units and percentage discounts are
    given in basis points.
    """

    name = "polar"
    base_url = "https://api.polar.sh/v1"
    supported_kinds = [
        EntityKind.PRODUCTS,
        EntityKind.DISCOUNTS,
        EntityKind.CUSTOMERS,
        EntityKind.SUBSCRIPTIONS,
    ]

    def __init__(
        self,
        api_key: str,
        organization_id: Optional[str] = None,
        timeout: float = 30.0,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the provider.

        Args:
            api_key: Polar organization access token
            organization_id: Organization to read from; required before listing
            timeout: Request timeout in seconds
            base_url: Override base URL (e.g. the sandbox API)
            session: Custom requests session
        """
        if not api_key:
            raise CredentialError("Polar organization access token is required")
        super().__init__(
            {"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            rate_limit=5.0,
            base_url=base_url,
            session=session,
        )
        self.organization_id = organization_id

    def _list(self, path: str, page_token: Any, page_size: int, **params) -> Page:
        if self.organization_id is None:
            raise CredentialError("A Polar organization must be selected before listing records")
        page_number = int(page_token or 1)
        params.update({
            "organization_id": self.organization_id,
            "page": page_number,
            "limit": page_size,
        })
        data = self._get(path, params)

        max_page = dig(data, "pagination", "max_page")
        next_token = page_number + 1 if max_page is not None and page_number < int(max_page) else None
        return Page(records=data["items"], next_token=next_token)

    def list_organizations(self) -> List[Dict[str, Any]]:
        """List every organization the token can access."""
        organizations: List[Dict[str, Any]] = []
        page_number = 1
        while True:
            data = self._get("/organizations/", {"page": page_number, "limit": 100})
            organizations.extend(data.get("items") or [])
            max_page = dig(data, "pagination", "max_page", default=1)
            if page_number >= int(max_page):
                return organizations
            page_number += 1

    def verify_connection(self) -> None:
        organizations = self.list_organizations()
        if not organizations:
            raise CredentialError(
                "No Polar organizations found for this access token; "
                "check the token at https://polar.sh/settings/tokens"
            )
        logger.info("Successfully connected to Polar")

    # Products

    def list_products(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/products/", page_token, page_size, is_archived="false")
        page.records = [self._product(item) for item in page.records]
        return page

    def _product(self, item: Dict[str, Any]) -> RawProduct:
        product_interval = item.get("recurring_interval")
        prices = [self._price(price, product_interval) for price in item.get("prices") or []]
        return RawProduct(
            id=item["id"],
            name=item.get("name"),
            description=item.get("description"),
            prices=prices,
            parent_id=item.get("organization_id"),
            active=not item.get("is_archived", False),
            benefits=[
                benefit.get("description") or benefit.get("type", "benefit")
                for benefit in item.get("benefits") or []
            ],
            raw=item,
        )

    def _price(self, price: Dict[str, Any], product_interval: Optional[str]) -> RawPrice:
        interval = price.get("recurring_interval") or product_interval
        price_type = price.get("type") or ("recurring" if interval else "one_time")
        return RawPrice(
            id=price["id"],
            category=price_type,
            unit_amount=price.get("price_amount"),
            currency=price.get("price_currency"),
            interval=interval if price_type == "recurring" else None,
            interval_count=price.get("recurring_interval_count"),
            amount_type=price.get("amount_type"),
            active=not price.get("is_archived", False),
        )

    # Discounts

    def list_discounts(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/discounts/", page_token, page_size)
        page.records = [self._discount(item) for item in page.records]
        return page

    def _discount(self, item: Dict[str, Any]) -> RawDiscount:
        discount_type = item.get("type") or ""
        return RawDiscount(
            id=item["id"],
            code=item.get("code"),
            name=item.get("name"),
            type_token=discount_type,
            percent_off=basis_points_to_percent(item.get("basis_points")),
            amount_off=item.get("amount"),
            currency=item.get("currency"),
            parent_id=item.get("organization_id"),
            usage_limit=item.get("max_redemptions"),
            expires_at=item.get("ends_at"),
            restricted_products=len(item.get("products") or []),
            raw=item,
        )

    # Customers

    def list_customers(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/customers/", page_token, page_size)
        page.records = [self._customer(item) for item in page.records]
        return page

    def get_customer(self, customer_id: str) -> RawCustomer:
        return self._customer(self._get(f"/customers/{customer_id}"))

    def _customer(self, item: Dict[str, Any]) -> RawCustomer:
        return RawCustomer(
            id=item["id"],
            email=item.get("email"),
            name=item.get("name"),
            address=_address(item.get("billing_address")),
            external_id=item.get("external_id"),
            deleted=bool(item.get("deleted_at")),
            metadata=item.get("metadata") or {},
            raw=item,
        )

    # Subscriptions

    def list_subscriptions(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/subscriptions/", page_token, page_size)
        page.records = [self._subscription(item) for item in page.records]
        return page

    def _subscription(self, item: Dict[str, Any]) -> RawSubscription:
        customer = item.get("customer") or {}
        prices = item.get("prices") or []
        price_id = item.get("price_id") or (prices[0].get("id") if prices else None)
        return RawSubscription(
            id=item["id"],
            product_id=item.get("product_id"),
            price_id=price_id,
            customer_id=item.get("customer_id") or customer.get("id"),
            customer_email=customer.get("email"),
            customer_name=customer.get("name"),
            status=item.get("status"),
            billing_address=_address(customer.get("billing_address")),
            metadata=item.get("metadata") or {},
            raw=item,
        )
