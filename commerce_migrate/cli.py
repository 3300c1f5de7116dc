"""Command line interface for commerce migrations."""

import argparse
import getpass
import logging
import sys
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import (
    ConfirmationRequiredError,
    CredentialError,
    FatalMigrationError,
    SourceError,
    TargetError,
)
from .loaders.dodo_loader import DodoPaymentsTarget
from .models.canonical import ENTITY_ORDER, EntityKind
from .models.migration import (
    ConfirmPolicy,
    DEFAULT_KINDS,
    MigrationConfig,
    MigrationRun,
    MigrationStatus,
    TargetEnvironment,
    parse_entity_kinds,
)
from .models.settings import ConfigFile, resolve_config
from .orchestrator import MigrationOrchestrator
from .providers import PROVIDERS
from .providers.base import SourceProvider
from .providers.cashfree import API_VERSIONS as CASHFREE_API_VERSIONS
from .providers.cashfree import DEFAULT_API_VERSION as CASHFREE_DEFAULT_API_VERSION
from .providers.polar import PolarProvider

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_USAGE = 2
EXIT_ABORTED = 3

PROVIDER_LABELS = {
    "stripe": "Stripe secret API key (sk_...)",
    "lemonsqueezy": "Lemon Squeezy API key",
    "polar": "Polar organization access token",
    "cashfree": "Cashfree client id",
}


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Configure root logging; optionally also log to a file."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def page_size(value: str) -> int:
    """argparse type for --page-size: an integer from 1 to 100."""
    try:
        size = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid page size: {value!r}") from None
    if not 1 <= size <= 100:
        raise argparse.ArgumentTypeError(f"page size must be between 1 and 100, got {size}")
    return size


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one sub-command per source provider."""
    parser = argparse.ArgumentParser(
        prog="commerce-migrate",
        description="Migrate products, discounts, customers and subscriptions to Dodo Payments"
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--provider-api-key", help="Source provider API key")
    common.add_argument("--target-api-key", "--dodo-api-key", dest="target_api_key",
                        help="Dodo Payments API key")
    common.add_argument("--brand-id", "--dodo-brand-id", dest="brand_id",
                        help="Dodo Payments brand id")
    common.add_argument("--mode", choices=[e.value for e in TargetEnvironment],
                        help="Dodo Payments environment (default: test_mode)")
    common.add_argument("--migrate-types",
                        help="Comma-separated kinds: products,discounts,customers,subscriptions")
    common.add_argument("--non-interactive", action="store_true",
                        help="Never prompt; missing required input is an error")
    common.add_argument("--yes", "-y", action="store_true",
                        help="Approve every plan without asking (same as --confirm-policy approve)")
    common.add_argument("--confirm-policy", choices=[p.value for p in ConfirmPolicy],
                        help="How plans are confirmed (default: prompt)")
    common.add_argument("--dry-run", action="store_true", help="Simulate without creating anything")
    common.add_argument("--page-size", type=page_size, help="Records requested per page (1-100)")
    common.add_argument("--config", help="Path to a JSON config file")
    common.add_argument("--report", help="Write a JSON run report to this path")
    common.add_argument("--log-file", help="Also write logs to this file")
    common.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="provider", help="Source provider")

    subparsers.add_parser("stripe", parents=[common], help="Migrate from Stripe")
    subparsers.add_parser("lemonsqueezy", parents=[common], help="Migrate from Lemon Squeezy")

    polar_parser = subparsers.add_parser("polar", parents=[common], help="Migrate from Polar")
    polar_parser.add_argument("--organization-id", "--polar-organization-id", dest="organization_id",
                              help="Polar organization to migrate from")

    cashfree_parser = subparsers.add_parser("cashfree", parents=[common], help="Migrate from Cashfree")
    cashfree_parser.add_argument("--provider-api-secret", help="Cashfree client secret")
    cashfree_parser.add_argument("--cashfree-env", choices=["sandbox", "production"],
                                 help="Cashfree environment (default: sandbox)")
    cashfree_parser.add_argument("--cashfree-api-version", choices=list(CASHFREE_API_VERSIONS),
                                 help=f"Cashfree API version (default: {CASHFREE_DEFAULT_API_VERSION})")
    cashfree_parser.add_argument("--cashfree-base-url",
                                 help="Override the Cashfree API base URL")

    return parser


class Prompter:
    """Terminal prompts; refuses to ask when running non-interactively."""

    def __init__(
        self,
        interactive: bool,
        input_func: Callable[[str], str] = input,
        secret_func: Callable[[str], str] = getpass.getpass
    ):
        self.interactive = interactive
        self._input = input_func
        self._secret = secret_func

    def secret(self, label: str, flag: str) -> str:
        """
        Ask for a hidden value.

        Raises:
            CredentialError: If non-interactive or nothing was entered
        """
        if not self.interactive:
            raise CredentialError(f"{flag} is required in non-interactive mode")
        value = self._secret(f"Enter your {label}: ").strip()
        if not value:
            raise CredentialError(f"{label} is required")
        return value

    def choose(self, message: str, options: Sequence[Any], labels: Sequence[str], default: int = 0) -> Any:
        """Ask the user to pick one option by number."""
        print(f"\n{message}")
        for i, label in enumerate(labels, 1):
            print(f"  {i}. {label}")
        while True:
            answer = self._input(f"Enter choice [{default + 1}]: ").strip()
            if not answer:
                return options[default]
            if answer.isdigit() and 1 <= int(answer) <= len(options):
                return options[int(answer) - 1]
            print("Invalid choice. Please try again.")

    def kinds(self) -> List[EntityKind]:
        """Ask which entity kinds to migrate."""
        default = ",".join(kind.value for kind in DEFAULT_KINDS)
        print("\nWhat do you want to migrate? (products, discounts, customers, subscriptions)")
        while True:
            answer = self._input(f"Comma-separated kinds [{default}]: ").strip()
            try:
                return parse_entity_kinds(answer or default)
            except ValueError as e:
                print(str(e))


def resolve_credentials(config: MigrationConfig, prompter: Prompter):
    """Fill in missing credentials, prompting when allowed."""
    if not config.source_api_key:
        config.source_api_key = prompter.secret(PROVIDER_LABELS[config.source], "--provider-api-key")
    if config.source == "cashfree" and not config.source_api_secret:
        config.source_api_secret = prompter.secret("Cashfree client secret", "--provider-api-secret")
    if not config.target_api_key:
        config.target_api_key = prompter.secret("Dodo Payments API key", "--target-api-key")


def build_provider(config: MigrationConfig) -> SourceProvider:
    """Create the source provider named in the config."""
    options = config.source_options
    timeout = config.request_timeout

    if config.source == "polar":
        return PolarProvider(
            config.source_api_key,
            organization_id=options.get("organization_id"),
            timeout=timeout,
        )
    if config.source == "cashfree":
        return PROVIDERS["cashfree"](
            config.source_api_key,
            config.source_api_secret,
            environment=options.get("cashfree_env") or "sandbox",
            api_version=options.get("cashfree_api_version") or CASHFREE_DEFAULT_API_VERSION,
            base_url=options.get("cashfree_base_url"),
            timeout=timeout,
        )
    return PROVIDERS[config.source](config.source_api_key, timeout=timeout)


def select_organization(provider: PolarProvider, prompter: Prompter):
    """Pick the Polar organization when none was given."""
    if provider.organization_id:
        return
    organizations = provider.list_organizations()
    if len(organizations) == 1:
        provider.organization_id = organizations[0]["id"]
        logger.info(f"Using organization: {organizations[0].get('name') or provider.organization_id}")
        return
    if not prompter.interactive:
        raise CredentialError(
            "Multiple Polar organizations found; pass --organization-id in non-interactive mode"
        )
    provider.organization_id = prompter.choose(
        "Select your Polar organization:",
        [org["id"] for org in organizations],
        [org.get("name") or "Unnamed Organization" for org in organizations],
    )


def select_brand(config: MigrationConfig, target: DodoPaymentsTarget, prompter: Prompter):
    """Pick the target brand when none was given."""
    if config.brand_id:
        return
    brands = target.list_brands()
    if not brands:
        raise CredentialError("No brands found in Dodo Payments")
    if len(brands) == 1:
        config.brand_id = brands[0].id
        logger.info(f"Using brand: {brands[0].name or brands[0].id}")
        return
    if not prompter.interactive:
        raise CredentialError("--brand-id is required in non-interactive mode")
    config.brand_id = prompter.choose(
        "Select your Dodo Payments brand:",
        [brand.id for brand in brands],
        [brand.name or "Unnamed Brand" for brand in brands],
    )


def cli_values(args: argparse.Namespace, interactive: bool) -> Dict[str, Any]:
    """Collect the values given on the command line."""
    policy = ConfirmPolicy.APPROVE.value if args.yes else args.confirm_policy
    return {
        "source_api_key": args.provider_api_key,
        "source_api_secret": getattr(args, "provider_api_secret", None),
        "target_api_key": args.target_api_key,
        "brand_id": args.brand_id,
        "mode": args.mode,
        "migrate_types": args.migrate_types,
        "confirm_policy": policy,
        "dry_run": args.dry_run,
        "page_size": args.page_size,
        "report": args.report,
        "interactive": interactive,
        "source_options": {
            "organization_id": getattr(args, "organization_id", None),
            "cashfree_env": getattr(args, "cashfree_env", None),
            "cashfree_api_version": getattr(args, "cashfree_api_version", None),
            "cashfree_base_url": getattr(args, "cashfree_base_url", None),
        },
    }


def print_summary(run: MigrationRun):
    """Print the end-of-run aggregate per entity kind."""
    print("\n" + "=" * 60)
    print("MIGRATION " + ("COMPLETE" if run.status == MigrationStatus.COMPLETED else run.status.value.upper()))
    print("=" * 60)
    if run.dry_run:
        print("Dry run: nothing was created")
    for kind in ENTITY_ORDER:
        outcome = run.outcomes.get(kind)
        if outcome is None:
            continue
        print(
            f"{kind.value:<14} {outcome.succeeded} succeeded, {outcome.failed} failed, "
            f"{len(outcome.dropped)} dropped ({outcome.status.value})"
        )
        for identifier, message in outcome.failures:
            print(f"    failed: {identifier}: {message}")
        for identifier, reason in outcome.dropped:
            print(f"    dropped: {identifier}: {reason}")
        for identifier in outcome.not_attempted:
            print(f"    not attempted: {identifier}")
    for error in run.errors:
        print(f"Error: {error['error']}")
    if run.duration_seconds:
        print(f"Duration: {run.duration_seconds:.2f} seconds")


def run_migration(args: argparse.Namespace, prompter: Prompter) -> int:
    """Resolve settings, connect both sides and run the migration."""
    config_file = ConfigFile.from_json_file(args.config) if args.config else None
    values = cli_values(args, prompter.interactive)
    config = resolve_config(args.provider, values, config_file)

    if config.confirm_policy == ConfirmPolicy.PROMPT and not prompter.interactive:
        raise ConfirmationRequiredError(
            "Plans cannot be confirmed in non-interactive mode; "
            "pass --yes, or --confirm-policy approve/reject"
        )

    kinds_given = values["migrate_types"] or (config_file and config_file.migrate_types)
    if not kinds_given:
        if prompter.interactive:
            config.kinds = prompter.kinds()
        else:
            logger.info(
                f"No --migrate-types given; defaulting to {', '.join(k.value for k in config.kinds)}"
            )

    resolve_credentials(config, prompter)
    if not values["mode"] and not (config_file and config_file.mode) and prompter.interactive:
        config.environment = prompter.choose(
            "Select Dodo Payments environment:",
            [TargetEnvironment.TEST, TargetEnvironment.LIVE],
            ["Test Mode", "Live Mode"],
        )

    provider = build_provider(config)
    provider.verify_connection()
    if isinstance(provider, PolarProvider):
        select_organization(provider, prompter)
        config.source_options["organization_id"] = provider.organization_id

    target = DodoPaymentsTarget(
        config.target_api_key,
        environment=config.environment,
        dry_run=config.dry_run,
        timeout=config.request_timeout,
    )
    select_brand(config, target, prompter)

    orchestrator = MigrationOrchestrator(config, provider, target)
    run = orchestrator.run_migration()
    print_summary(run)

    if run.status == MigrationStatus.ABORTED:
        return EXIT_ABORTED
    if run.status == MigrationStatus.FAILED:
        return EXIT_FATAL
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.provider:
        parser.print_help()
        return EXIT_USAGE

    setup_logging(args.verbose, args.log_file)
    interactive = not args.non_interactive and sys.stdin.isatty()
    prompter = Prompter(interactive)

    try:
        return run_migration(args, prompter)

    except KeyboardInterrupt:
        print("\nMigration cancelled")
        return EXIT_ABORTED

    except (FatalMigrationError, SourceError, TargetError) as e:
        logger.error(str(e))
        return EXIT_FATAL

    except ValueError as e:
        # Invalid config file or option values
        logger.error(f"Invalid configuration: {e}")
        return EXIT_FATAL

    except OSError as e:
        logger.error(f"Could not read configuration: {e}")
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
