"""Raw source records and per-item results."""

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union
from enum import Enum
from datetime import datetime


T = TypeVar("T")


class RecordStatus(str, Enum):
    """Status of a record during migration."""
    CREATED = "created"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


@dataclass
class Page(Generic[T]):
    """
    One page of records returned by a source provider.

    next_token is a cursor or the next page number; None means there are
    no further pages.
    """
    records: List[T] = field(default_factory=list)
    next_token: Optional[Union[str, int]] = None


@dataclass
class RawAddress:
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


@dataclass
class RawPrice:
    """
    A price variant as the source describes it.

    Every field is optional; the normalizers decide what is usable.
    `category` is the source's own word for the price type
    ("recurring", "subscription", "one_time", ...).
    """
    id: Optional[str] = None
    category: Optional[str] = None
    unit_amount: Optional[int] = None  # Minor units
    unit_amount_decimal: Optional[str] = None  # Major units, e.g. "19.99"
    currency: Optional[str] = None
    interval: Optional[str] = None
    interval_count: Optional[int] = None
    term_count: Optional[int] = None
    amount_type: Optional[str] = None  # fixed, custom, free, metered...
    active: Optional[bool] = None


@dataclass
class RawProduct:
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    prices: List[RawPrice] = field(default_factory=list)
    parent_id: Optional[str] = None  # Store/organization owning the product
    fallback_price: Optional[RawPrice] = None  # Product-level price when no variants exist
    active: Optional[bool] = None
    benefits: List[str] = field(default_factory=list)
    raw: Optional[Dict[str, Any]] = None


@dataclass
class RawDiscount:
    id: str
    code: Optional[str] = None
    name: Optional[str] = None
    type_token: Optional[str] = None
    percent_off: Optional[Any] = None
    amount_off: Optional[int] = None  # Minor units
    amount_off_decimal: Optional[str] = None  # Major units
    currency: Optional[str] = None
    parent_id: Optional[str] = None
    usage_limit: Optional[int] = None
    expires_at: Optional[Any] = None  # ISO string, unix seconds or datetime
    active: Optional[bool] = None
    restricted_products: int = 0
    raw: Optional[Dict[str, Any]] = None


@dataclass
class RawCustomer:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[RawAddress] = None
    external_id: Optional[str] = None
    deleted: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw: Optional[Dict[str, Any]] = None


@dataclass
class RawSubscription:
    id: str
    product_id: Optional[str] = None
    price_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    status: Optional[str] = None
    quantity: Optional[int] = None
    billing_address: Optional[RawAddress] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw: Optional[Dict[str, Any]] = None


@dataclass
class ParentRecord:
    """A parent resource (store, organization) used to complete child records."""
    id: str
    currency: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class Dropped:
    """A record normalization could not represent."""
    identifier: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"identifier": self.identifier, "reason": self.reason}


@dataclass(frozen=True)
class TargetRef:
    """Identifiers the target assigned to a created record."""
    id: str
    sub_id: Optional[str] = None  # e.g. the price id of a created product


@dataclass
class Brand:
    id: str
    name: Optional[str] = None


@dataclass
class MigrationResult:
    """Result of attempting to create one item on the target."""
    identifier: str
    origin: Optional[str] = None
    target_id: Optional[str] = None
    target_sub_id: Optional[str] = None
    success: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    status_code: Optional[int] = None
    status: RecordStatus = RecordStatus.NOT_ATTEMPTED
    loaded_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "identifier": self.identifier,
            "origin": self.origin,
            "target_id": self.target_id,
            "target_sub_id": self.target_sub_id,
            "success": self.success,
            "error": self.error,
            "error_code": self.error_code,
            "status_code": self.status_code,
            "status": self.status.value,
            "loaded_at": self.loaded_at.isoformat() if self.loaded_at else None,
        }
