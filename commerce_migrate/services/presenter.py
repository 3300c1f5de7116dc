"""Plan preview and the per-kind confirmation gate."""

import logging
import sys
from typing import Any, Callable, List, Optional, Sequence, TextIO

from ..errors import ConfirmationRequiredError
from ..models.canonical import (
    CanonicalCustomer,
    CanonicalDiscount,
    CanonicalProduct,
    CanonicalSubscription,
    EntityKind,
)
from ..models.migration import ConfirmPolicy

logger = logging.getLogger(__name__)


def describe(item: Any) -> str:
    """One-line plan description of a canonical entity."""
    if isinstance(item, CanonicalProduct):
        line = f"{item.name} - {item.price.format()} - {item.kind.value}"
        if item.is_subscription:
            line += f" ({item.cadence})"
        return line

    if isinstance(item, CanonicalDiscount):
        line = f"{item.code} - {item.value_label}"
        if item.name and item.name != item.code:
            line += f" - {item.name}"
        if item.expires_at:
            line += f" (expires {item.expires_at.date().isoformat()})"
        if item.usage_limit:
            line += f" (limit {item.usage_limit})"
        return line

    if isinstance(item, CanonicalCustomer):
        return f"{item.name or '(no name)'} <{item.email}>"

    if isinstance(item, CanonicalSubscription):
        line = f"{item.customer_email} -> {item.product_name or item.product_id}"
        if item.quantity > 1:
            line += f" x{item.quantity}"
        return line

    return str(item)


class PlanPresenter:
    """
    Shows the planned items of one entity kind and gets a single decision.

    The decision gates the whole batch. With the `prompt` policy the user is
    asked on the terminal; `approve` and `reject` decide without asking and
    are logged so that the decision is never implicit.
    """

    def __init__(
        self,
        policy: ConfirmPolicy = ConfirmPolicy.PROMPT,
        interactive: bool = True,
        input_func: Callable[[str], str] = input,
        output: Optional[TextIO] = None
    ):
        """
        Initialize the presenter.

        Args:
            policy: Confirmation policy
            interactive: Whether a terminal is available for prompting
            input_func: Function reading the answer (injectable for tests)
            output: Stream the plan is written to (defaults to stdout)
        """
        self.policy = policy
        self.interactive = interactive
        self._input = input_func
        self._output = output

    def render(self, kind: EntityKind, items: Sequence[Any]) -> List[str]:
        """Build the plan lines in presentation order."""
        lines = [f"{kind.value.capitalize()} to migrate ({len(items)}):"]
        for i, item in enumerate(items, 1):
            lines.append(f"  {i}. {describe(item)}")
        return lines

    def present(self, kind: EntityKind, items: Sequence[Any]) -> bool:
        """
        Display the plan for a kind and decide whether to apply it.

        Args:
            kind: Entity kind of the batch
            items: Canonical items, in the order they will be applied

        Returns:
            True if the batch may be applied

        Raises:
            ConfirmationRequiredError: If the policy is `prompt` but no
                interactive terminal is available
        """
        self._print("")
        for line in self.render(kind, items):
            self._print(line)

        if self.policy == ConfirmPolicy.APPROVE:
            logger.warning(
                f"Auto-approving {len(items)} {kind.value} "
                f"(confirmation policy: {self.policy.value})"
            )
            return True

        if self.policy == ConfirmPolicy.REJECT:
            logger.info(
                f"Not applying {kind.value} "
                f"(confirmation policy: {self.policy.value})"
            )
            return False

        if not self.interactive:
            raise ConfirmationRequiredError(
                f"Cannot confirm {kind.value} without an interactive terminal; "
                f"pass --yes or --confirm-policy approve/reject"
            )

        answer = self._input(f"\nProceed to migrate these {kind.value}? (y/n): ").strip().lower()
        allowed = answer in ("y", "yes")
        logger.info(f"User {'approved' if allowed else 'declined'} {kind.value}")
        return allowed

    def _print(self, text: str) -> None:
        print(text, file=self._output or sys.stdout)
