"""Quality gate: maps a validation result to PASS / ENHANCE / REGENERATE."""

from __future__ import annotations

from gatekeeper.routing.models import TaskCategory

from .models import Disposition, ValidationResult
from .registry import CriteriaRegistry


class QualityGate:
    """Total, deterministic gate over the aggregate score and the critical flag."""

    def __init__(self, registry: CriteriaRegistry | None = None) -> None:
        self.registry = registry or CriteriaRegistry.default()

    def decide(self, result: ValidationResult, category: TaskCategory) -> Disposition:
        """
        Critical failures always regenerate; otherwise the aggregate is
        compared against the category's pass and enhance thresholds.
        """
        if result.critical_flag:
            return Disposition.REGENERATE

        thresholds = self.registry.thresholds(category)
        if result.aggregate >= thresholds.pass_:
            return Disposition.PASS
        if result.aggregate >= thresholds.enhance:
            return Disposition.ENHANCE
        return Disposition.REGENERATE
