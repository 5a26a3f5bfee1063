"""Validation engine: four-phase weighted scoring of a worker artifact."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any

from gatekeeper.routing.models import TaskCategory

from .models import PHASE_ORDER, Criterion, Phase, PhaseScore, ValidationResult
from .registry import CriteriaRegistry

logger = logging.getLogger(__name__)

# A criterion scoring below this is reported as failing
CRITERION_FLOOR = 0.5

# Artifacts shorter than this (after stripping) are not scored at all
MIN_ARTIFACT_CHARS = 20


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def aggregate_score(
    phase_scores: tuple[PhaseScore, ...], phase_weights: Mapping[Phase, float]
) -> float:
    """Weighted sum of phase scores using the category's top-level phase weights."""
    return _clamp(math.fsum(phase_weights[s.phase] * s.score for s in phase_scores))


class ValidationEngine:
    """
    Scores an artifact against the registry entry for its task category.

    The engine is stateless apart from the registry snapshot it was built
    with; ``validate`` is a pure function of (artifact, category, context).
    """

    def __init__(self, registry: CriteriaRegistry | None = None) -> None:
        self.registry = registry or CriteriaRegistry.default()

    def evaluate_criterion(
        self, criterion: Criterion, artifact: str, context: Mapping[str, Any]
    ) -> float:
        raw = criterion.evaluator(artifact, context)
        if isinstance(raw, bool):
            return 1.0 if raw else 0.0
        return _clamp(float(raw))

    def validate(
        self,
        artifact: str,
        category: TaskCategory,
        request_context: Mapping[str, Any] | None = None,
    ) -> ValidationResult:
        context: Mapping[str, Any] = request_context or {}
        phase_weights = self.registry.phase_weights(category)

        if len((artifact or "").strip()) < MIN_ARTIFACT_CHARS:
            logger.debug("Artifact below %d chars, short-circuiting", MIN_ARTIFACT_CHARS)
            return ValidationResult(
                phase_scores=tuple(PhaseScore(phase, 0.0) for phase in PHASE_ORDER),
                aggregate=0.0,
                critical_flag=True,
                registry_version=self.registry.version,
                short_circuited=True,
            )

        phase_scores: list[PhaseScore] = []
        criterion_scores: dict[str, float] = {}
        critical_failures: set[str] = set()

        for phase, criteria in self.registry.criteria_for(category).items():
            weighted: list[float] = []
            failing: set[str] = set()
            for criterion in criteria:
                score = self.evaluate_criterion(criterion, artifact, context)
                criterion_scores[criterion.name] = score
                weighted.append(criterion.weight * score)
                if score < CRITERION_FLOOR:
                    failing.add(criterion.name)
                    if criterion.critical:
                        critical_failures.add(criterion.name)
            phase_scores.append(
                PhaseScore(phase, _clamp(math.fsum(weighted)), frozenset(failing))
            )

        aggregate = aggregate_score(tuple(phase_scores), phase_weights)
        result = ValidationResult(
            phase_scores=tuple(phase_scores),
            aggregate=aggregate,
            critical_flag=bool(critical_failures),
            critical_failures=frozenset(critical_failures),
            criterion_scores=criterion_scores,
            registry_version=self.registry.version,
        )
        logger.debug(
            "Validated %s artifact: aggregate=%.3f critical=%s failing=%s",
            category.value, aggregate, result.critical_flag, result.issues,
        )
        return result

