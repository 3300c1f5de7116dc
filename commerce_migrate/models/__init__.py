"""Data models for the migration application."""

from .canonical import (
    EntityKind,
    ENTITY_ORDER,
    ProductKind,
    BillingPeriod,
    IntervalUnit,
    DiscountType,
    MoneyAmount,
    OriginKey,
    Address,
    SENTINEL_ADDRESS,
    CanonicalProduct,
    CanonicalDiscount,
    CanonicalCustomer,
    CanonicalSubscription,
)
from .migration import (
    MigrationConfig,
    MigrationRun,
    MigrationOutcome,
    MigrationStatus,
    ConfirmPolicy,
    TargetEnvironment,
    parse_entity_kinds,
)
from .settings import ConfigFile, resolve_config
from .record import (
    Page,
    RawAddress,
    RawPrice,
    RawProduct,
    RawDiscount,
    RawCustomer,
    RawSubscription,
    ParentRecord,
    Dropped,
    TargetRef,
    Brand,
    MigrationResult,
)

__all__ = [
    "EntityKind",
    "ENTITY_ORDER",
    "ProductKind",
    "BillingPeriod",
    "IntervalUnit",
    "DiscountType",
    "MoneyAmount",
    "OriginKey",
    "Address",
    "SENTINEL_ADDRESS",
    "CanonicalProduct",
    "CanonicalDiscount",
    "CanonicalCustomer",
    "CanonicalSubscription",
    "MigrationConfig",
    "MigrationRun",
    "MigrationOutcome",
    "MigrationStatus",
    "ConfirmPolicy",
    "TargetEnvironment",
    "parse_entity_kinds",
    "ConfigFile",
    "resolve_config",
    "Page",
    "RawAddress",
    "RawPrice",
    "RawProduct",
    "RawDiscount",
    "RawCustomer",
    "RawSubscription",
    "ParentRecord",
    "Dropped",
    "TargetRef",
    "Brand",
    "MigrationResult",
]
