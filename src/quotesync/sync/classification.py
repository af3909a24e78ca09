"""Decides whether a simPRO quote is worth mirroring to monday.

One rule set shared by batch and webhook mode. All rules must hold:

1. Total (ex tax) is known and >= the minimum value.
2. Stage is in the active-stage allow-list.
3. Normalised status is in the active-status allow-list.
4. The quote is open, unless its status maps to a terminal board stage
   (won / archived not won), so a quote that just closed is still mirrored.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from src.quotesync.sync.schemas import Quote
from src.quotesync.sync.stages import is_terminal, map_to_board_stage, status_key


@dataclass(frozen=True)
class ClassificationPolicy:
    """Allow-lists and threshold, normalised once at construction."""

    minimum_value: float
    active_stages: frozenset[str] = field(default_factory=frozenset)
    active_statuses: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        minimum_value: float,
        stages: Iterable[str],
        statuses: Iterable[str],
    ) -> ClassificationPolicy:
        return cls(
            minimum_value=minimum_value,
            active_stages=frozenset(s.strip().casefold() for s in stages if s and s.strip()),
            active_statuses=frozenset(status_key(s) for s in statuses if s and s.strip()),
        )

    @classmethod
    def from_settings(cls, settings) -> ClassificationPolicy:
        return cls.build(
            settings.MINIMUM_QUOTE_VALUE,
            settings.ACTIVE_QUOTE_STAGES,
            settings.ACTIVE_QUOTE_STATUSES,
        )

    def with_minimum(self, minimum_value: float) -> ClassificationPolicy:
        return ClassificationPolicy(minimum_value, self.active_stages, self.active_statuses)


def passes_value_filter(total: float | None, minimum_value: float) -> bool:
    """Cheap first-pass check usable on list results before fetching details."""
    return total is not None and total >= minimum_value


def classify(quote: Quote, policy: ClassificationPolicy) -> tuple[bool, str | None]:
    """Evaluate every rule and explain the first failure.

    Returns:
        (eligible, reason); reason is None when eligible.
    """
    total = quote.total_ex_tax
    if not passes_value_filter(total, policy.minimum_value):
        return False, f"total {total} below minimum {policy.minimum_value:g}"

    stage = (quote.stage or "").strip()
    if stage.casefold() not in policy.active_stages:
        return False, f"stage '{stage}' not active"

    status = quote.status_name
    if status_key(status) not in policy.active_statuses:
        return False, f"status '{status}' not active"

    if quote.is_closed and not is_terminal(map_to_board_stage(status)):
        return False, "quote is closed"

    return True, None


def is_sync_eligible(
    quote: Quote,
    policy: ClassificationPolicy,
    minimum_value: float | None = None,
) -> bool:
    """True when ``quote`` passes every rule; ``minimum_value`` overrides the policy floor."""
    if minimum_value is not None:
        policy = policy.with_minimum(minimum_value)
    eligible, _ = classify(quote, policy)
    return eligible
