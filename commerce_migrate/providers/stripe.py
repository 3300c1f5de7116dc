"""Stripe source provider."""

import logging
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


class StripeProvider(HTTPSourceProvider):
    """
    Reads products, coupons, customers and subscriptions from Stripe.

    Stripe pages with a cursor: the id of the last record of the previous
    page is sent as `starting_after` while `has_more` is true. Amounts are
    integer minor units.
    """

    name = "stripe"
    base_url = "https://api.stripe.com/v1"
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
            raise CredentialError("Stripe secret API key is required")
        super().__init__(
            {"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            rate_limit=20.0,
            base_url=base_url,
            session=session,
        )

    def _list(self, path: str, page_token: Any, page_size: int, **params) -> Page:
        params["limit"] = page_size
        if page_token:
            params["starting_after"] = page_token
        data = self._get(path, params)
        items = data["data"]
        next_token = items[-1]["id"] if data.get("has_more") and items else None
        return Page(records=items, next_token=next_token)

    def verify_connection(self) -> None:
        self._get("/account")
        logger.info("Successfully connected to Stripe")

    # Products

    def list_products(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/products", page_token, page_size, active="true")
        page.records = [self._product(item) for item in page.records]
        return page

    def _product_prices(self, product_id: str) -> List[Dict[str, Any]]:
        prices: List[Dict[str, Any]] = []
        token = None
        while True:
            page = self._list("/prices", token, 100, product=product_id, active="true")
            prices.extend(page.records)
            if page.next_token is None:
                return prices
            token = page.next_token

    def _product(self, item: Dict[str, Any]) -> RawProduct:
        prices = [self._price(price) for price in self._product_prices(item["id"])]
        return RawProduct(
            id=item["id"],
            name=item.get("name"),
            description=item.get("description"),
            prices=prices,
            active=item.get("active"),
            raw=item,
        )

    def _price(self, price: Dict[str, Any]) -> RawPrice:
        recurring = price.get("recurring") or {}
        if price.get("custom_unit_amount"):
            amount_type = "custom"
        elif price.get("billing_scheme") == "tiered":
            amount_type = "tiered"
        elif recurring.get("usage_type") == "metered":
            amount_type = "metered"
        else:
            amount_type = "fixed"

        return RawPrice(
            id=price["id"],
            category=price.get("type"),
            unit_amount=price.get("unit_amount"),
            currency=price.get("currency"),
            interval=recurring.get("interval"),
            interval_count=recurring.get("interval_count"),
            amount_type=amount_type,
            active=price.get("active"),
        )

    # Coupons

    def list_discounts(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/coupons", page_token, page_size)
        page.records = [self._coupon(item) for item in page.records]
        return page

    def _coupon(self, item: Dict[str, Any]) -> RawDiscount:
        percent_off = item.get("percent_off")
        return RawDiscount(
            id=item["id"],
            code=item["id"],
            name=item.get("name"),
            type_token="percent" if percent_off else "amount",
            percent_off=percent_off,
            amount_off=item.get("amount_off"),
            currency=item.get("currency"),
            usage_limit=item.get("max_redemptions"),
            expires_at=item.get("redeem_by"),
            active=item.get("valid"),
            restricted_products=len(dig(item, "applies_to", "products", default=[])),
            raw=item,
        )

    # Customers

    def list_customers(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/customers", page_token, page_size)
        page.records = [self._customer(item) for item in page.records]
        return page

    def get_customer(self, customer_id: str) -> RawCustomer:
        return self._customer(self._get(f"/customers/{customer_id}"))

    def _customer(self, item: Dict[str, Any]) -> RawCustomer:
        return RawCustomer(
            id=item["id"],
            email=item.get("email"),
            name=item.get("name"),
            phone=item.get("phone"),
            address=_address(item.get("address")),
            deleted=bool(item.get("deleted")),
            metadata=item.get("metadata") or {},
            raw=item,
        )

    # Subscriptions

    def list_subscriptions(self, page_token: Any, page_size: int) -> Page:
        page = self._list("/subscriptions", page_token, page_size, status="all")
        page.records = [self._subscription(item) for item in page.records]
        return page

    def _subscription(self, item: Dict[str, Any]) -> RawSubscription:
        items = dig(item, "items", "data", default=[])
        first = items[0] if items else {}
        if len(items) > 1:
            logger.warning(
                f"Subscription {item['id']} has {len(items)} items; only the first is migrated"
            )
        customer = item.get("customer")
        customer_id = customer.get("id") if isinstance(customer, dict) else customer

        return RawSubscription(
            id=item["id"],
            product_id=dig(first, "price", "product"),
            price_id=dig(first, "price", "id"),
            customer_id=customer_id,
            status=item.get("status"),
            quantity=first.get("quantity"),
            metadata=item.get("metadata") or {},
            raw=item,
        )
