"""Shared fixtures and fakes for the migration tests."""

import json
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import requests

from commerce_migrate.errors import SourceNotFoundError, TargetError
from commerce_migrate.loaders.base import TargetPlatform
from commerce_migrate.models.canonical import EntityKind
from commerce_migrate.models.migration import ConfirmPolicy, MigrationConfig
from commerce_migrate.models.record import Brand, Page, ParentRecord, RawCustomer, TargetRef
from commerce_migrate.providers.base import SourceProvider


def make_response(status_code: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None):
    """Build a real requests.Response with a JSON body."""
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body).encode() if body is not None else b""
    response.headers.update(headers or {})
    response.reason = "Error" if status_code >= 400 else "OK"
    return response


def mock_session(*responses):
    """A MagicMock session returning the given responses in order."""
    session = MagicMock()
    session.headers = {}
    session.get.side_effect = list(responses)
    session.request.side_effect = list(responses)
    return session


class FakeProvider(SourceProvider):
    """In-memory source provider serving fixed pages."""

    name = "fake"

    def __init__(
        self,
        records: Optional[Dict[EntityKind, List[Any]]] = None,
        parents: Optional[Dict[str, ParentRecord]] = None,
        customers: Optional[Dict[str, RawCustomer]] = None
    ):
        self.records = records or {}
        self.supported_kinds = list(self.records)
        self.parents = parents or {}
        self.customers = customers or {}
        self.parent_calls: List[str] = []
        self.customer_calls: List[str] = []

    def _page(self, kind: EntityKind, page_token, page_size) -> Page:
        start = int(page_token or 0)
        items = self.records[kind][start:start + page_size]
        has_more = start + page_size < len(self.records[kind])
        return Page(records=items, next_token=start + page_size if has_more else None)

    def list_products(self, page_token, page_size):
        return self._page(EntityKind.PRODUCTS, page_token, page_size)

    def list_discounts(self, page_token, page_size):
        return self._page(EntityKind.DISCOUNTS, page_token, page_size)

    def list_customers(self, page_token, page_size):
        return self._page(EntityKind.CUSTOMERS, page_token, page_size)

    def list_subscriptions(self, page_token, page_size):
        return self._page(EntityKind.SUBSCRIPTIONS, page_token, page_size)

    def get_parent(self, parent_id):
        self.parent_calls.append(parent_id)
        if parent_id not in self.parents:
            raise SourceNotFoundError(f"store {parent_id} not found")
        return self.parents[parent_id]

    def get_customer(self, customer_id):
        self.customer_calls.append(customer_id)
        if customer_id not in self.customers:
            raise SourceNotFoundError(f"customer {customer_id} not found")
        return self.customers[customer_id]

    def verify_connection(self):
        return None


class FakeTarget(TargetPlatform):
    """Target recording every create; items listed in `reject` fail."""

    name = "fake-target"

    def __init__(self, reject: Optional[Dict[str, TargetError]] = None, dry_run: bool = False):
        super().__init__(dry_run)
        self.reject = reject or {}
        self.created: List[Any] = []
        self.attempted: List[str] = []

    def _create(self, item, key: str, prefix: str) -> TargetRef:
        self.attempted.append(key)
        if key in self.reject:
            raise self.reject[key]
        self.created.append(item)
        return TargetRef(id=f"{prefix}_{len(self.created)}", sub_id=f"pri_{len(self.created)}")

    def create_product(self, product):
        return self._create(product, product.name, "pdt")

    def create_discount(self, discount):
        return self._create(discount, discount.code, "dsc")

    def create_customer(self, customer):
        return self._create(customer, customer.email, "cus")

    def create_subscription(self, subscription):
        return self._create(subscription, subscription.source_id, "sub")

    def list_brands(self):
        return [Brand(id="brand_1", name="Main")]


@pytest.fixture
def fake_target():
    return FakeTarget()


@pytest.fixture
def approve_config():
    """Config that auto-approves every plan."""
    return MigrationConfig(
        source="fake",
        brand_id="brand_1",
        kinds=[EntityKind.PRODUCTS, EntityKind.DISCOUNTS],
        interactive=False,
        confirm_policy=ConfirmPolicy.APPROVE,
        page_size=10,
    )
