"""Target platform interface and the apply engine."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence
import logging

from ..errors import TargetError, TargetRateLimitedError
from ..models.canonical import (
    CanonicalCustomer,
    CanonicalDiscount,
    CanonicalProduct,
    CanonicalSubscription,
    EntityKind,
)
from ..models.migration import MigrationOutcome, MigrationStatus
from ..models.record import Brand, MigrationResult, RecordStatus, TargetRef
from ..services.linker import CrossEntityLinker

logger = logging.getLogger(__name__)

CreateFunc = Callable[[Any], TargetRef]


def item_identifier(item: Any) -> str:
    """Name used for an item in logs and failure lists."""
    if isinstance(item, CanonicalProduct):
        return item.name
    if isinstance(item, CanonicalDiscount):
        return item.code
    if isinstance(item, CanonicalCustomer):
        return item.email
    if isinstance(item, CanonicalSubscription):
        return f"{item.source_id} ({item.customer_email})"
    return str(item)


class TargetPlatform(ABC):
    """
    Base class for target platforms.

    A target creates canonical entities and returns the identifiers it
    assigned. Rejections are raised as TargetError; a rate limit is raised
    as TargetRateLimitedError.
    """

    name = "target"

    def __init__(self, dry_run: bool = False):
        """
        Initialize the target.

        Args:
            dry_run: If True, return synthetic ids without calling the platform
        """
        self.dry_run = dry_run

    @abstractmethod
    def create_product(self, product: CanonicalProduct) -> TargetRef:
        pass

    @abstractmethod
    def create_discount(self, discount: CanonicalDiscount) -> TargetRef:
        pass

    @abstractmethod
    def create_customer(self, customer: CanonicalCustomer) -> TargetRef:
        pass

    @abstractmethod
    def create_subscription(self, subscription: CanonicalSubscription) -> TargetRef:
        pass

    @abstractmethod
    def list_brands(self) -> List[Brand]:
        """List the namespaces (brands) entities can be created in."""
        pass

    def creator_for(self, kind: EntityKind) -> CreateFunc:
        """Get the create operation for an entity kind."""
        return {
            EntityKind.PRODUCTS: self.create_product,
            EntityKind.DISCOUNTS: self.create_discount,
            EntityKind.CUSTOMERS: self.create_customer,
            EntityKind.SUBSCRIPTIONS: self.create_subscription,
        }[kind]


class ApplyEngine:
    """
    Creates planned items on the target, one at a time, in plan order.

    A rejected item is logged and counted and the next item is attempted.
    Failed creates are never retried. A rate limit from the target ends the
    batch: the current item counts as failed, the remaining items are
    reported as not attempted and the error propagates.
    """

    def __init__(self, linker: CrossEntityLinker):
        self.linker = linker

    def apply(
        self,
        kind: EntityKind,
        items: Sequence[Any],
        create: CreateFunc,
        outcome: Optional[MigrationOutcome] = None
    ) -> MigrationOutcome:
        """
        Apply a confirmed batch.

        Args:
            kind: Entity kind of the batch
            items: Canonical items in the order they were presented
            create: Target create operation for the kind
            outcome: Outcome to fill in (a new one is created if omitted)

        Returns:
            MigrationOutcome with per-item results

        Raises:
            TargetRateLimitedError: If the target rate limits a create
        """
        outcome = outcome or MigrationOutcome(kind=kind)
        outcome.status = MigrationStatus.APPLYING
        outcome.started_at = outcome.started_at or datetime.utcnow()

        logger.info(f"Creating {len(items)} {kind.value}...")

        for position, item in enumerate(items):
            identifier = item_identifier(item)
            outcome.attempted += 1

            try:
                ref = create(item)

            except TargetRateLimitedError as e:
                self._record_failure(outcome, item, identifier, e)
                remaining = [item_identifier(rest) for rest in items[position + 1:]]
                outcome.not_attempted.extend(remaining)
                for rest in items[position + 1:]:
                    outcome.results.append(MigrationResult(
                        identifier=item_identifier(rest),
                        origin=str(rest.origin),
                        status=RecordStatus.NOT_ATTEMPTED,
                    ))
                wait = f" Wait {e.retry_after:.0f} seconds and re-run." if e.retry_after else ""
                logger.error(
                    f"Target rate limit reached while creating {kind.value}.{wait} "
                    f"Not attempted ({len(remaining)}): {', '.join(remaining) or 'none'}"
                )
                outcome.status = MigrationStatus.FAILED
                outcome.completed_at = datetime.utcnow()
                raise

            except TargetError as e:
                self._record_failure(outcome, item, identifier, e)
                continue

            self.linker.record(item.origin, ref)
            outcome.succeeded += 1
            outcome.created_ids.append(ref.id)
            outcome.results.append(MigrationResult(
                identifier=identifier,
                origin=str(item.origin),
                target_id=ref.id,
                target_sub_id=ref.sub_id,
                success=True,
                status=RecordStatus.CREATED,
                loaded_at=datetime.utcnow(),
            ))
            logger.info(f"Created {kind.value} {identifier} -> {ref.id}")

        outcome.status = MigrationStatus.COMPLETED
        outcome.completed_at = datetime.utcnow()
        logger.info(
            f"Applied {kind.value}: {outcome.succeeded}/{outcome.attempted} succeeded, "
            f"{outcome.failed} failed"
        )
        return outcome

    def _record_failure(
        self,
        outcome: MigrationOutcome,
        item: Any,
        identifier: str,
        error: TargetError
    ) -> None:
        details = []
        if error.status_code is not None:
            details.append(f"status {error.status_code}")
        if error.code:
            details.append(f"code {error.code}")
        suffix = f" ({', '.join(details)})" if details else ""

        message = f"{error.message}{suffix}"
        outcome.record_failure(identifier, message)
        outcome.results.append(MigrationResult(
            identifier=identifier,
            origin=str(item.origin),
            success=False,
            error=error.message,
            error_code=error.code,
            status_code=error.status_code,
            status=RecordStatus.FAILED,
        ))
        logger.error(f"Failed to create {outcome.kind.value} {identifier}: {message}")
