"""Lemon Squeezy source provider."""

import logging
from typing import Any, Dict, List, Optional

import requests

from .base import HTTPSourceProvider, dig
from ..errors import CredentialError
from ..models.canonical import EntityKind
from ..models.record import (
    Page,
    ParentRecord,
    RawAddress,
    RawCustomer,
    RawDiscount,
    RawPrice,
    RawProduct,
    RawSubscription,
)

logger = logging.getLogger(__name__)

# Price categories that have no fixed amount
CATEGORY_AMOUNT_TYPES = {
    "pwyw": "custom",
    "lead_magnet": "free",
}

ACTIVE_DISCOUNT_STATUSES = {"published", "active", "enabled"}


class LemonSqueezyProvider(HTTPSourceProvider):
    """
    Reads products, discounts, customers and subscriptions from Lemon Squeezy.

    The API follows JSON:API: records sit under `data` with an `attributes`
    object, and pages are numbered (`page[number]`, `page[size]`) up to
    `meta.page.lastPage`. Product prices live on variant price objects.
    Currencies are set per store, so products and discounts are completed
    with their store's currency.
    """

    name = "lemonsqueezy"
    base_url = "https://api.lemonsqueezy.com/v1"
    supported_kinds = [
        EntityKind.PRODUCTS,
        EntityKind.DISCOUNTS,
        EntityKind.CUSTOMERS,
        EntityKind.SUBSCRIPTIONS,
    ]

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        if not api_key:
            raise CredentialError("Lemon Squeezy API key is required")
        super().__init__(
            {
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/vnd.api+json",
                "Content-Type": "application/vnd.api+json",
            },
            timeout=timeout,
            rate_limit=5.0,
            base_url=base_url,
            session=session,
        )

    def _list(self, path: str, page_token: Any, page_size: int, **params) -> Page:
        page_number = int(page_token or 1)
        params["page[number]"] = page_number
        params["page[size]"] = page_size
        data = self._get(path, params)

        last_page = dig(data, "meta", "page", "lastPage")
        if last_page is None:
            next_token = page_number + 1 if data["data"] else None
        else:
            next_token = page_number + 1 if page_number < int(last_page) else None
        return Page(records=data["data"], next_token=next_token)

    def verify_connection(self) -> None:
        self._get("/users/me")
        logger.info("Successfully connected to Lemon Squeezy")

    def get_parent(self, parent_id: str) -> ParentRecord:
        """Fetch a store, which carries the currency of its products."""
        data = self._get(f"/stores/{parent_id}")
        attributes = dig(data, "data", "attributes", default={})
        return ParentRecord(
            id=str(parent_id),
            currency=attributes.get("currency"),
            name=attributes.get("name"),
        )

    # Products

    def list_products(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/products", page_token, page_size, include="variants")
        page.records = [self._product(item) for item in page.records]
        return page

    def _variant_prices(self, variant_id: str) -> List[Dict[str, Any]]:
        prices: List[Dict[str, Any]] = []
        token = None
        while True:
            page = self._list("/prices", token, 100, **{"filter[variant_id]": variant_id})
            prices.extend(page.records)
            if page.next_token is None or len(page.records) < 100:
                return prices
            token = page.next_token

    def _product(self, item: Dict[str, Any]) -> RawProduct:
        attributes = item.get("attributes") or {}
        variants = dig(item, "relationships", "variants", "data", default=[])

        prices: List[RawPrice] = []
        for variant in variants:
            variant_prices = self._variant_prices(str(variant["id"]))
            logger.debug(f"Found {len(variant_prices)} prices for variant {variant['id']}")
            prices.extend(self._price(price) for price in variant_prices)

        fallback = None
        if not prices and attributes.get("price"):
            logger.warning(f"No prices found for product {item['id']}; using the product-level price")
            fallback = RawPrice(category="one_time", unit_amount=attributes.get("price"))

        return RawProduct(
            id=str(item["id"]),
            name=attributes.get("name"),
            description=attributes.get("description"),
            prices=prices,
            parent_id=_str_or_none(attributes.get("store_id")),
            fallback_price=fallback,
            active=None if attributes.get("status") is None else attributes.get("status") == "published",
            raw=item,
        )

    def _price(self, price: Dict[str, Any]) -> RawPrice:
        attributes = price.get("attributes") or {}
        category = attributes.get("category")
        return RawPrice(
            id=str(price["id"]),
            category=category,
            unit_amount=attributes.get("unit_price"),
            unit_amount_decimal=attributes.get("unit_price_decimal"),
            interval=attributes.get("renewal_interval_unit"),
            interval_count=attributes.get("renewal_interval_quantity"),
            amount_type=CATEGORY_AMOUNT_TYPES.get(category, "fixed"),
        )

    # Discounts

    def list_discounts(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/discounts", page_token, page_size)
        page.records = [self._discount(item) for item in page.records]
        return page

    def _discount(self, item: Dict[str, Any]) -> RawDiscount:
        attributes = item.get("attributes") or {}
        amount_type = attributes.get("amount_type") or attributes.get("discount_type") or ""
        status = attributes.get("status")
        is_percent = "percent" in amount_type.lower()
        limited = attributes.get("is_limited_redemptions")

        return RawDiscount(
            id=str(item["id"]),
            code=attributes.get("code"),
            name=attributes.get("name"),
            type_token=amount_type,
            percent_off=attributes.get("amount") if is_percent else None,
            amount_off=None if is_percent else attributes.get("amount"),
            currency=attributes.get("currency"),
            parent_id=_str_or_none(
                attributes.get("store_id") or dig(item, "relationships", "store", "data", "id")
            ),
            usage_limit=attributes.get("max_redemptions") if limited is not False else None,
            expires_at=attributes.get("expires_at"),
            active=None if status is None else status in ACTIVE_DISCOUNT_STATUSES,
            restricted_products=1 if attributes.get("is_limited_to_products") else 0,
            raw=item,
        )

    # Customers

    def list_customers(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/customers", page_token, page_size)
        page.records = [self._customer(item) for item in page.records]
        return page

    def get_customer(self, customer_id: str) -> RawCustomer:
        return self._customer(self._get(f"/customers/{customer_id}")["data"])

    def _customer(self, item: Dict[str, Any]) -> RawCustomer:
        attributes = item.get("attributes") or {}
        address = None
        if any(attributes.get(key) for key in ("city", "region", "country")):
            address = RawAddress(
                city=attributes.get("city"),
                region=attributes.get("region"),
                country=attributes.get("country"),
            )
        return RawCustomer(
            id=str(item["id"]),
            email=attributes.get("email"),
            name=attributes.get("name"),
            address=address,
            raw=item,
        )

    # Subscriptions

    def list_subscriptions(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/subscriptions", page_token, page_size)
        page.records = [self._subscription(item) for item in page.records]
        return page

    def _subscription(self, item: Dict[str, Any]) -> RawSubscription:
        attributes = item.get("attributes") or {}
        first_item = attributes.get("first_subscription_item") or {}
        return RawSubscription(
            id=str(item["id"]),
            product_id=_str_or_none(attributes.get("product_id")),
            price_id=_str_or_none(first_item.get("price_id")),
            customer_id=_str_or_none(attributes.get("customer_id")),
            customer_email=attributes.get("user_email"),
            customer_name=attributes.get("user_name"),
            status=attributes.get("status"),
            quantity=first_item.get("quantity"),
            metadata={"variant_id": _str_or_none(attributes.get("variant_id"))},
            raw=item,
        )


def _str_or_none(value: Any) -> Optional[str]:
    return None if value is None else str(value)
