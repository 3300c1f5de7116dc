"""Dodo Payments target platform."""

import json
import time
import logging
from typing import Any, Dict, List, Optional

import requests

from .base import TargetPlatform
from ..errors import CredentialError, TargetError, TargetRateLimitedError
from ..http import create_session, error_details, response_json, retry_after_seconds
from ..models.canonical import (
    Address,
    CanonicalCustomer,
    CanonicalDiscount,
    CanonicalProduct,
    CanonicalSubscription,
    DiscountType,
)
from ..models.migration import TargetEnvironment
from ..models.record import Brand, TargetRef

logger = logging.getLogger(__name__)


class DodoPaymentsTarget(TargetPlatform):
    """
    Creates products, discounts, customers and subscriptions in Dodo Payments.

    Discounts are percentage-only on this platform; fixed-amount discounts
    are rejected per item. In dry-run mode no request is sent and synthetic
    ids (`dry-run:<origin key>`) are returned.
    """

    name = "dodo"

    BASE_URLS = {
        TargetEnvironment.TEST: "https://test.dodopayments.com",
        TargetEnvironment.LIVE: "https://live.dodopayments.com",
    }

    def __init__(
        self,
        api_key: str,
        environment: TargetEnvironment = TargetEnvironment.TEST,
        dry_run: bool = False,
        timeout: float = 30.0,
        rate_limit: float = 5.0,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the target.

        Args:
            api_key: Dodo Payments API key
            environment: test_mode or live_mode
            dry_run: If True, simulate without making changes
            timeout: Request timeout in seconds
            rate_limit: Max requests per second
            base_url: Override base URL
            session: Custom requests session
        """
        super().__init__(dry_run)
        if not api_key:
            raise CredentialError("Dodo Payments API key is required")
        self.environment = environment
        self.base_url = (base_url or self.BASE_URLS[environment]).rstrip("/")
        self.timeout = timeout
        self.rate_limit = rate_limit
        self._last_request_time = 0.0
        self._session = session or create_session({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def _rate_limit_wait(self):
        """Wait to respect rate limits."""
        if self.rate_limit > 0:
            elapsed = time.time() - self._last_request_time
            wait_time = (1.0 / self.rate_limit) - elapsed
            if wait_time > 0:
                time.sleep(wait_time)
        self._last_request_time = time.time()

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send a request and map error responses to TargetError.

        Raises:
            TargetRateLimitedError: On HTTP 429
            TargetError: On any other failure
        """
        url = f"{self.base_url}{path}"
        self._rate_limit_wait()

        try:
            response = self._session.request(method, url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TargetError(f"Request to {path} failed: {e}") from e

        if response.status_code == 429:
            raise TargetRateLimitedError(
                "Dodo Payments rate limit exceeded",
                retry_after=retry_after_seconds(response),
            )
        if response.status_code >= 400:
            details = error_details(response)
            raise TargetError(
                details["message"],
                status_code=response.status_code,
                code=details["code"],
            )

        return response_json(response) or {}

    def _dry_run_ref(self, item: Any) -> TargetRef:
        ref = TargetRef(id=f"dry-run:{item.origin}")
        logger.info(f"[dry run] Would create {item.origin.kind.value} {ref.id}")
        return ref

    def _created(self, data: Any, id_key: str, label: str) -> str:
        """
        Pull the new record id out of a create response.

        Raises:
            TargetError: If the body is not an object or carries no id
        """
        if not isinstance(data, dict):
            raise TargetError(f"{label} created but the response was not an object")
        record_id = data.get(id_key) or data.get("id")
        if not record_id:
            raise TargetError(f"{label} created but no {id_key} was returned")
        return str(record_id)

    # Payloads

    def product_payload(self, product: CanonicalProduct) -> Dict[str, Any]:
        price: Dict[str, Any] = {
            "currency": product.price.currency,
            "price": product.price.amount,
            "discount": 0,
            "purchasing_power_parity": False,
        }

        if product.is_subscription:
            unit = product.interval_unit.value.capitalize()
            price.update({
                "type": "recurring_price",
                "billing_period": product.billing_period.value,
                "payment_frequency_count": product.interval_count,
                "payment_frequency_interval": unit,
                "subscription_period_interval": unit,
            })
            # Omitted count means the subscription renews indefinitely
            if product.term_count is not None:
                price["subscription_period_count"] = product.term_count
        else:
            price["type"] = "one_time_price"

        return {
            "name": product.name,
            "description": product.description or "",
            "tax_category": product.tax_category,
            "price": price,
            "brand_id": product.brand_id,
        }

    def discount_payload(self, discount: CanonicalDiscount) -> Dict[str, Any]:
        # Percentages are sent in basis points (20% -> 2000)
        basis_points = int((discount.percent_off * 100).to_integral_value())
        return {
            "code": discount.code,
            "name": discount.name,
            "type": "percentage",
            "amount": basis_points,
            "usage_limit": discount.usage_limit,
            "expires_at": discount.expires_at.isoformat() if discount.expires_at else None,
            "brand_id": discount.brand_id,
        }

    def customer_payload(self, customer: CanonicalCustomer) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "email": customer.email,
            "name": customer.name or customer.email,
            "brand_id": customer.brand_id,
            "metadata": {k: _metadata_value(v) for k, v in customer.metadata.items() if v is not None},
        }
        if customer.phone:
            payload["phone_number"] = customer.phone
        if customer.address:
            address = customer.address.to_dict()
            address["state"] = address.pop("region")
            payload["address"] = {k: v for k, v in address.items() if v}
        return payload

    def subscription_payload(self, subscription: CanonicalSubscription) -> Dict[str, Any]:
        return {
            "product_id": subscription.product_id,
            "quantity": subscription.quantity,
            "customer": {
                "email": subscription.customer_email,
                "name": subscription.customer_name or subscription.customer_email,
            },
            "billing": _billing_address(subscription.billing_address),
            "metadata": {
                k: _metadata_value(v) for k, v in subscription.metadata.items() if v is not None
            },
        }

    # Create operations

    def create_product(self, product: CanonicalProduct) -> TargetRef:
        if self.dry_run:
            return self._dry_run_ref(product)
        data = self._request("POST", "/products", self.product_payload(product))
        product_id = self._created(data, "product_id", "Product")
        price_id = data.get("price_id") or (data.get("price") or {}).get("price_id")
        return TargetRef(id=product_id, sub_id=str(price_id) if price_id else None)

    def create_discount(self, discount: CanonicalDiscount) -> TargetRef:
        if discount.type != DiscountType.PERCENTAGE:
            raise TargetError(
                f"Dodo Payments only supports percentage discounts; "
                f"{discount.value_label} cannot be migrated",
                code="unsupported_discount_type",
            )
        if self.dry_run:
            return self._dry_run_ref(discount)
        data = self._request("POST", "/discounts", self.discount_payload(discount))
        return TargetRef(id=self._created(data, "discount_id", "Discount"))

    def create_customer(self, customer: CanonicalCustomer) -> TargetRef:
        if self.dry_run:
            return self._dry_run_ref(customer)
        data = self._request("POST", "/customers", self.customer_payload(customer))
        return TargetRef(id=self._created(data, "customer_id", "Customer"))

    def create_subscription(self, subscription: CanonicalSubscription) -> TargetRef:
        if self.dry_run:
            return self._dry_run_ref(subscription)
        data = self._request("POST", "/subscriptions", self.subscription_payload(subscription))
        return TargetRef(id=self._created(data, "subscription_id", "Subscription"))

    def list_brands(self) -> List[Brand]:
        data = self._request("GET", "/brands")
        items = data.get("items", []) if isinstance(data, dict) else data
        return [
            Brand(id=str(item.get("brand_id") or item.get("id")), name=item.get("name"))
            for item in items or []
        ]


def _billing_address(address: Address) -> Dict[str, Any]:
    street = ", ".join(part for part in (address.line1, address.line2) if part)
    return {
        "street": street or "Not provided",
        "city": address.city or "Not provided",
        "state": address.region or "Not provided",
        "zipcode": address.postal_code or "00000",
        "country": address.country or "US",
    }


def _metadata_value(value: Any) -> str:
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True)
    return str(value)
