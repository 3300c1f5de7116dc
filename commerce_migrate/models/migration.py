"""Migration execution models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
from datetime import datetime
import uuid

from .canonical import EntityKind, ENTITY_ORDER
from .record import MigrationResult


class MigrationStatus(str, Enum):
    """Status of a migration run or phase."""
    PENDING = "pending"
    EXTRACTING = "extracting"
    NORMALIZING = "normalizing"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    APPLYING = "applying"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABORTED = "aborted"


class ConfirmPolicy(str, Enum):
    """How a plan confirmation gate is decided."""
    PROMPT = "prompt"  # Ask on the terminal
    APPROVE = "approve"  # Auto-approve every plan
    REJECT = "reject"  # Preview only, create nothing


class TargetEnvironment(str, Enum):
    TEST = "test_mode"
    LIVE = "live_mode"


KIND_ALIASES = {
    "product": EntityKind.PRODUCTS,
    "products": EntityKind.PRODUCTS,
    "discount": EntityKind.DISCOUNTS,
    "discounts": EntityKind.DISCOUNTS,
    "coupon": EntityKind.DISCOUNTS,
    "coupons": EntityKind.DISCOUNTS,
    "customer": EntityKind.CUSTOMERS,
    "customers": EntityKind.CUSTOMERS,
    "subscription": EntityKind.SUBSCRIPTIONS,
    "subscriptions": EntityKind.SUBSCRIPTIONS,
}

DEFAULT_KINDS = [EntityKind.PRODUCTS, EntityKind.DISCOUNTS]


def parse_entity_kinds(value: Any) -> List[EntityKind]:
    """
    Parse a comma-separated string or a list of kind names.

    Returns the kinds in dependency order, without duplicates.

    Raises:
        ValueError: If a name is not a known entity kind
    """
    if isinstance(value, str):
        names = [part.strip() for part in value.split(",")]
    else:
        names = [str(part).strip() for part in value or []]

    kinds = set()
    for name in names:
        if not name:
            continue
        kind = KIND_ALIASES.get(name.lower())
        if kind is None:
            raise ValueError(
                f"Unknown entity kind '{name}'. "
                f"Choose from: {', '.join(k.value for k in ENTITY_ORDER)}"
            )
        kinds.add(kind)

    return [kind for kind in ENTITY_ORDER if kind in kinds]


@dataclass
class MigrationOutcome:
    """Per entity kind outcome of a run."""
    kind: EntityKind
    status: MigrationStatus = MigrationStatus.PENDING
    extracted: int = 0
    planned: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)  # (identifier, message)
    dropped: List[Tuple[str, str]] = field(default_factory=list)  # (identifier, reason)
    not_attempted: List[str] = field(default_factory=list)
    created_ids: List[str] = field(default_factory=list)
    results: List[MigrationResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def record_failure(self, identifier: str, message: str) -> None:
        self.failed += 1
        self.failures.append((identifier, message))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "kind": self.kind.value,
            "status": self.status.value,
            "extracted": self.extracted,
            "planned": self.planned,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures": [
                {"identifier": identifier, "error": message}
                for identifier, message in self.failures
            ],
            "dropped": [
                {"identifier": identifier, "reason": reason}
                for identifier, reason in self.dropped
            ],
            "not_attempted": self.not_attempted,
            "created_ids": self.created_ids,
            "results": [r.to_dict() for r in self.results],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class MigrationRun:
    """A complete migration run."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source: str = ""
    target: str = ""
    status: MigrationStatus = MigrationStatus.PENDING
    dry_run: bool = False

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    outcomes: Dict[EntityKind, MigrationOutcome] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "outcomes": {kind.value: o.to_dict() for kind, o in self.outcomes.items()},
            "totals": {
                "succeeded": self.total_succeeded,
                "failed": self.total_failed,
                "dropped": self.total_dropped,
            },
            "errors": self.errors,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add_outcome(self, kind: EntityKind) -> MigrationOutcome:
        """Start tracking a new entity kind phase."""
        outcome = MigrationOutcome(kind=kind)
        self.outcomes[kind] = outcome
        return outcome

    @property
    def total_succeeded(self) -> int:
        return sum(o.succeeded for o in self.outcomes.values())

    @property
    def total_failed(self) -> int:
        return sum(o.failed for o in self.outcomes.values())

    @property
    def total_dropped(self) -> int:
        return sum(len(o.dropped) for o in self.outcomes.values())


@dataclass
class MigrationConfig:
    """Configuration for a migration."""
    source: str
    source_api_key: Optional[str] = None
    source_api_secret: Optional[str] = None
    source_options: Dict[str, Any] = field(default_factory=dict)

    target_api_key: Optional[str] = None
    brand_id: Optional[str] = None
    environment: TargetEnvironment = TargetEnvironment.TEST

    kinds: List[EntityKind] = field(default_factory=lambda: list(DEFAULT_KINDS))

    # Execution options
    interactive: bool = True
    confirm_policy: ConfirmPolicy = ConfirmPolicy.PROMPT
    dry_run: bool = False
    page_size: int = 100
    request_timeout: float = 30.0

    # Output
    report_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation. Credentials are never included."""
        return {
            "source": self.source,
            "source_options": self.source_options,
            "brand_id": self.brand_id,
            "environment": self.environment.value,
            "kinds": [kind.value for kind in self.kinds],
            "interactive": self.interactive,
            "confirm_policy": self.confirm_policy.value,
            "dry_run": self.dry_run,
            "page_size": self.page_size,
            "request_timeout": self.request_timeout,
            "report_path": self.report_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        kinds = data.get("kinds")
        return cls(
            source=data.get("source", ""),
            source_api_key=data.get("source_api_key"),
            source_api_secret=data.get("source_api_secret"),
            source_options=data.get("source_options", {}),
            target_api_key=data.get("target_api_key"),
            brand_id=data.get("brand_id"),
            environment=TargetEnvironment(data.get("environment", "test_mode")),
            kinds=parse_entity_kinds(kinds) if kinds else list(DEFAULT_KINDS),
            interactive=data.get("interactive", True),
            confirm_policy=ConfirmPolicy(data.get("confirm_policy", "prompt")),
            dry_run=data.get("dry_run", False),
            page_size=data.get("page_size", 100),
            request_timeout=data.get("request_timeout", 30.0),
            report_path=data.get("report_path"),
        )
