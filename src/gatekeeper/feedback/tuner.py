"""Weight tuner: nudges criterion weights toward recurring failures.

Reads recurring issues from the feedback ledger and proposes a relative
weight increase for every criterion that failed at least
``MIN_OCCURRENCES`` times in the recent window since it was last adjusted.
Applying proposals yields a new registry; the old one is never modified, so
requests already in flight keep the snapshot they started with.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from gatekeeper.routing.models import TaskCategory
from gatekeeper.validation.registry import CriteriaRegistry

from .ledger import KIND_WEIGHT_ADJUSTMENT, FeedbackLedger, LedgerEntry

logger = logging.getLogger(__name__)

MIN_OCCURRENCES = 3
WEIGHT_STEP = 0.10
DEFAULT_WINDOW = 50


@dataclass(frozen=True)
class WeightProposal:
    """Proposal for raising one criterion's weight."""

    category: TaskCategory
    criterion: str
    current_weight: float
    proposed_weight: float
    occurrences: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "criterion": self.criterion,
            "current_weight": self.current_weight,
            "proposed_weight": self.proposed_weight,
            "occurrences": self.occurrences,
        }


class WeightTuner:
    """Ledger-driven criterion weight adjustment."""

    def __init__(
        self,
        ledger: FeedbackLedger,
        window_size: int = DEFAULT_WINDOW,
        min_occurrences: int = MIN_OCCURRENCES,
        step: float = WEIGHT_STEP,
    ) -> None:
        if step <= 0.0:
            raise ValueError(f"step must be > 0.0, got {step}")
        self.ledger = ledger
        self.window_size = window_size
        self.min_occurrences = min_occurrences
        self.step = step

    async def propose(
        self,
        registry: CriteriaRegistry,
        categories: Sequence[TaskCategory] | None = None,
    ) -> list[WeightProposal]:
        """Generate proposals from the recent ledger window.

        Only failures recorded after the last adjustment of a criterion count
        toward it, so tuning twice on the same outcomes changes nothing.

        Issues that are not criteria of the category (``empty_artifact``,
        worker failures) are ignored, as are criteria that are alone in their
        phase since renormalizing cannot change them.

        Returns:
            List of WeightProposal objects, ordered by category then frequency

        """
        proposals: list[WeightProposal] = []
        for category in categories or list(TaskCategory):
            entry = registry.entry(category)
            adjusted = await self.ledger.last_adjustments(category.value)
            recurring = await self.ledger.recurring_issues(
                category.value, self.window_size, after=adjusted
            )
            for issue, occurrences in recurring:
                if occurrences < self.min_occurrences:
                    continue
                criterion = entry.get(issue)
                if criterion is None or len(entry.in_phase(criterion.phase)) < 2:
                    continue
                preview = registry.adjusted(category, issue, 1.0 + self.step)
                proposals.append(
                    WeightProposal(
                        category=category,
                        criterion=issue,
                        current_weight=criterion.weight,
                        proposed_weight=preview.entry(category).get(issue).weight,
                        occurrences=occurrences,
                    )
                )
        return proposals

    async def apply(
        self, registry: CriteriaRegistry, proposals: Sequence[WeightProposal]
    ) -> CriteriaRegistry:
        """Apply ``proposals`` in order and record one ledger entry per change."""
        updated = registry
        for proposal in proposals:
            before = updated.entry(proposal.category).get(proposal.criterion).weight
            updated = updated.adjusted(proposal.category, proposal.criterion, 1.0 + self.step)
            after = updated.entry(proposal.category).get(proposal.criterion).weight
            await self.ledger.record(
                LedgerEntry(
                    category=proposal.category.value,
                    aggregate_score=0.0,
                    disposition="adjusted",
                    issues=(proposal.criterion,),
                    kind=KIND_WEIGHT_ADJUSTMENT,
                    details={
                        "criterion": proposal.criterion,
                        "old_weight": before,
                        "new_weight": after,
                        "occurrences": proposal.occurrences,
                        "registry_version": updated.version,
                    },
                )
            )
        if proposals:
            logger.info(
                "Applied %d weight proposal(s); registry v%d -> v%d",
                len(proposals), registry.version, updated.version,
            )
        return updated
