"""Migration orchestrator - runs the per-kind extract, normalize, confirm and apply phases."""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import (
    CredentialError,
    ExtractionError,
    FatalMigrationError,
    SourceRateLimitedError,
    UserAbortError,
)
from .extractors.base import ExtractionResult, PagedExtractor
from .loaders.base import ApplyEngine, TargetPlatform
from .models.canonical import ENTITY_ORDER, EntityKind
from .models.migration import (
    ConfirmPolicy,
    MigrationConfig,
    MigrationOutcome,
    MigrationRun,
    MigrationStatus,
)
from .models.record import ParentRecord, RawCustomer
from .providers.base import SourceProvider
from .services.linker import CrossEntityLinker
from .services.normalizer import (
    CustomerNormalizer,
    DiscountNormalizer,
    EntityNormalizer,
    ProductNormalizer,
    SubscriptionNormalizer,
)
from .services.presenter import PlanPresenter
from .services.reference_cache import ReferenceCache

logger = logging.getLogger(__name__)


@dataclass
class PhaseResult:
    """Collections owned by one entity kind phase, in pipeline order."""
    kind: EntityKind
    extracted: List[Any] = field(default_factory=list)
    normalized: List[Any] = field(default_factory=list)
    planned: List[Any] = field(default_factory=list)
    approved: Optional[bool] = None
    outcome: Optional[MigrationOutcome] = None


class MigrationOrchestrator:
    """
    Orchestrates a migration run.

    Entity kinds are processed one at a time in dependency order (products,
    discounts, customers, subscriptions). Each phase extracts every record
    of the kind, normalizes it, shows the plan, and applies it once
    confirmed. Products created earlier in the run are recorded in the
    linker so that subscriptions can attach to them.
    """

    def __init__(
        self,
        config: MigrationConfig,
        provider: SourceProvider,
        target: TargetPlatform,
        presenter: Optional[PlanPresenter] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            provider: Source provider to read from
            target: Target platform to create records in
            presenter: Plan presenter (built from the config if omitted)
            sleep: Sleep function used when waiting out rate limits
        """
        if not config.brand_id:
            raise CredentialError("A target brand id is required")

        self.config = config
        self.provider = provider
        self.target = target
        self.presenter = presenter or PlanPresenter(
            policy=config.confirm_policy,
            interactive=config.interactive,
        )
        self._sleep = sleep

        # Run state, owned by this orchestrator only
        self.run: Optional[MigrationRun] = None
        self.linker = CrossEntityLinker()
        self.apply_engine = ApplyEngine(self.linker)
        self.parent_cache: ReferenceCache[ParentRecord] = ReferenceCache("parent", provider.get_parent)
        self.customer_cache: ReferenceCache[RawCustomer] = ReferenceCache("customer", provider.get_customer)
        self.phases: Dict[EntityKind, PhaseResult] = {}

    def run_migration(self) -> MigrationRun:
        """
        Run every selected entity kind phase.

        Fatal errors stop the run; they are recorded on the returned run
        (status FAILED, or ABORTED for a user abort) rather than raised.

        Returns:
            MigrationRun with per-kind outcomes
        """
        self.run = MigrationRun(
            source=self.provider.name,
            target=self.target.name,
            dry_run=self.config.dry_run,
        )
        self.run.started_at = datetime.utcnow()

        kinds = [kind for kind in ENTITY_ORDER if kind in self.config.kinds]
        logger.info(f"Will migrate: {', '.join(kind.value for kind in kinds)}")
        if EntityKind.SUBSCRIPTIONS in kinds and EntityKind.PRODUCTS not in kinds:
            logger.warning(
                "Subscriptions can only attach to products created in the same run; "
                "without products every subscription will be dropped"
            )
        if self.config.dry_run:
            logger.info("Dry run: nothing will be created on the target")

        try:
            for kind in kinds:
                logger.info(f"=== {kind.value.upper()} ===")
                self.run_phase(kind)

            self.run.status = MigrationStatus.COMPLETED
            logger.info("=== MIGRATION COMPLETED ===")

        except UserAbortError as e:
            logger.warning(str(e))
            self.run.status = MigrationStatus.ABORTED
            self._record_error(e)

        except FatalMigrationError as e:
            logger.error(f"Migration failed: {e}")
            self.run.status = MigrationStatus.FAILED
            self._record_error(e)

        finally:
            self.run.completed_at = datetime.utcnow()
            self._log_summary()
            if self.config.report_path:
                self._save_report(self.config.report_path)

        return self.run

    def run_phase(self, kind: EntityKind) -> PhaseResult:
        """
        Run one entity kind phase: extract, normalize, confirm, apply.

        Raises:
            FatalMigrationError: On extraction failure, missing confirmation,
                user abort or a target rate limit
        """
        outcome = self.run.add_outcome(kind)
        outcome.started_at = datetime.utcnow()
        phase = PhaseResult(kind=kind, outcome=outcome)
        self.phases[kind] = phase

        if not self.provider.supports(kind):
            logger.warning(f"{self.provider.name} does not provide {kind.value}; skipping")
            outcome.status = MigrationStatus.SKIPPED
            outcome.completed_at = datetime.utcnow()
            return phase

        # Extraction
        outcome.status = MigrationStatus.EXTRACTING
        extraction = self._extract(kind)
        phase.extracted = extraction.records
        outcome.extracted = extraction.total_extracted

        # Normalization
        outcome.status = MigrationStatus.NORMALIZING
        normalizer = self._create_normalizer(kind)
        try:
            phase.normalized = normalizer.normalize_all(phase.extracted)
        except SourceRateLimitedError as e:
            wait = f"{e.retry_after:.0f}" if e.retry_after is not None else "a few"
            raise ExtractionError(
                kind.value,
                f"rate limited while resolving related records. Wait {wait} seconds and re-run the migration.",
                cause=e,
            ) from e
        outcome.dropped = [(d.identifier, d.reason) for d in normalizer.dropped]

        phase.planned = list(phase.normalized)
        outcome.planned = len(phase.planned)

        if not phase.planned:
            logger.info(f"No {kind.value} to migrate")
            outcome.status = MigrationStatus.COMPLETED
            outcome.completed_at = datetime.utcnow()
            return phase

        # Confirmation
        outcome.status = MigrationStatus.AWAITING_CONFIRMATION
        phase.approved = self.presenter.present(kind, phase.planned)
        if not phase.approved:
            outcome.not_attempted = [str(item.origin) for item in phase.planned]
            outcome.completed_at = datetime.utcnow()
            if self.presenter.policy == ConfirmPolicy.REJECT:
                outcome.status = MigrationStatus.SKIPPED
                return phase
            outcome.status = MigrationStatus.ABORTED
            raise UserAbortError(kind.value)

        # Apply
        self.apply_engine.apply(kind, phase.planned, self.target.creator_for(kind), outcome)
        return phase

    def _extract(self, kind: EntityKind) -> ExtractionResult:
        extractor = PagedExtractor(
            kind.value,
            self.provider.lister_for(kind),
            page_size=self.config.page_size,
            sleep=self._sleep,
        )
        return extractor.extract()

    def _create_normalizer(self, kind: EntityKind) -> EntityNormalizer:
        source = self.provider.name
        brand_id = self.config.brand_id

        if kind == EntityKind.PRODUCTS:
            return ProductNormalizer(source, brand_id, self.parent_cache)
        if kind == EntityKind.DISCOUNTS:
            return DiscountNormalizer(source, brand_id, self.parent_cache)
        if kind == EntityKind.CUSTOMERS:
            return CustomerNormalizer(source, brand_id)
        return SubscriptionNormalizer(source, self.linker, self.customer_cache)

    def _record_error(self, error: Exception):
        self.run.errors.append({
            "type": type(error).__name__,
            "error": str(error),
            "timestamp": datetime.utcnow().isoformat(),
        })

    def _log_summary(self):
        """Log the per-kind aggregate, naming everything that was not migrated."""
        for kind, outcome in self.run.outcomes.items():
            logger.info(
                f"{kind.value}: {outcome.succeeded} succeeded, {outcome.failed} failed, "
                f"{len(outcome.dropped)} dropped, {len(outcome.not_attempted)} not attempted "
                f"({outcome.status.value})"
            )
            for identifier, message in outcome.failures:
                logger.info(f"  failed: {identifier} - {message}")
            for identifier, reason in outcome.dropped:
                logger.info(f"  dropped: {identifier} - {reason}")
            for identifier in outcome.not_attempted:
                logger.info(f"  not attempted: {identifier}")

    def _save_report(self, path: str):
        """Save the migration report."""
        filepath = Path(path)
        if filepath.parent:
            filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self.run.to_dict(), f, indent=2, default=str)
        logger.info(f"Saved migration report to {filepath}")
