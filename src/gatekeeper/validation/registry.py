#!/usr/bin/env python3
"""Criteria Registry - per-category weighted checklists and gate thresholds.

One table keyed by task category holds every criterion, the top-level phase
weights and the pass/enhance thresholds. Registries are immutable: weight
adjustments produce a new registry with a bumped version, so a validation in
flight keeps using the snapshot it started with.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Final

from gatekeeper.errors import ConfigurationError
from gatekeeper.routing.models import TaskCategory

from . import evaluators as ev
from .models import PHASE_ORDER, Criterion, Phase, Thresholds

logger = logging.getLogger(__name__)

WEIGHT_EPSILON: Final[float] = 1e-6

# ═══════════════════════════════════════════════════════════════════════════
# DEFAULTS
# ═══════════════════════════════════════════════════════════════════════════

DEFAULT_PHASE_WEIGHTS: Final[dict[Phase, float]] = {
    Phase.COMPLETENESS: 0.30,
    Phase.CORRECTNESS: 0.35,
    Phase.QUALITY: 0.20,
    Phase.FORMAT: 0.15,
}

DEFAULT_THRESHOLDS: Final[dict[TaskCategory, Thresholds]] = {
    TaskCategory.RESEARCH: Thresholds(pass_=0.80, enhance=0.60),
    TaskCategory.CODE_GENERATION: Thresholds(pass_=0.85, enhance=0.65),
    TaskCategory.DEBUGGING: Thresholds(pass_=0.80, enhance=0.60),
    TaskCategory.REPORTING: Thresholds(pass_=0.75, enhance=0.55),
    TaskCategory.GENERIC: Thresholds(pass_=0.70, enhance=0.50),
}

C, R, Q, F = Phase.COMPLETENESS, Phase.CORRECTNESS, Phase.QUALITY, Phase.FORMAT


def _criteria(*specs: tuple[Any, ...]) -> tuple[Criterion, ...]:
    built = []
    for spec in specs:
        name, phase, weight, evaluator = spec[:4]
        critical = len(spec) > 4 and bool(spec[4])
        built.append(
            Criterion(
                name=name,
                phase=phase,
                weight=weight,
                evaluator=evaluator,
                critical=critical,
                description=(evaluator.__doc__ or "").strip().split("\n")[0],
            )
        )
    return tuple(built)


DEFAULT_CRITERIA: Final[dict[TaskCategory, tuple[Criterion, ...]]] = {
    TaskCategory.RESEARCH: _criteria(
        ("has_summary", C, 0.30, ev.has_section("has_summary")),
        ("has_references", C, 0.40, ev.has_section("has_references")),
        ("min_length", C, 0.30, ev.min_words(400)),
        ("citations_present", R, 0.40, ev.citations_present),
        ("fabricated_citation", R, 0.40, ev.no_fabricated_citations, True),
        ("no_placeholders", R, 0.20, ev.no_unresolved_placeholders),
        ("citation_coverage", Q, 0.50, ev.paragraph_citation_coverage),
        ("section_structure", Q, 0.30, ev.section_structure(3)),
        ("readable_sentences", Q, 0.20, ev.readable_sentences),
        ("citation_format", F, 0.40, ev.citation_format),
        ("heading_hierarchy", F, 0.30, ev.heading_hierarchy),
        ("clean_whitespace", F, 0.30, ev.clean_whitespace),
    ),
    TaskCategory.CODE_GENERATION: _criteria(
        ("has_code_block", C, 0.50, ev.has_code_block),
        ("no_stub_bodies", C, 0.30, ev.no_stub_bodies),
        ("has_usage_example", C, 0.20, ev.has_usage_example),
        ("syntax_valid", R, 0.70, ev.python_syntax_valid, True),
        ("no_error_markers", R, 0.30, ev.no_error_markers),
        ("documented_code", Q, 0.50, ev.documented_code),
        ("line_length", Q, 0.30, ev.code_line_length),
        ("readable_sentences", Q, 0.20, ev.readable_sentences),
        ("fenced_blocks_closed", F, 0.40, ev.fenced_blocks_closed),
        ("code_language_tagged", F, 0.30, ev.code_language_tagged),
        ("heading_hierarchy", F, 0.30, ev.heading_hierarchy),
    ),
    TaskCategory.DEBUGGING: _criteria(
        ("has_root_cause", C, 0.40, ev.has_section("has_root_cause")),
        ("has_fix", C, 0.40, ev.has_section("has_fix")),
        ("has_verification", C, 0.20, ev.has_section("has_verification")),
        ("unsafe_fix", R, 0.50, ev.no_unsafe_fix, True),
        ("references_reported_error", R, 0.30, ev.references_reported_error),
        ("syntax_valid", R, 0.20, ev.python_syntax_valid, True),
        ("explains_reasoning", Q, 0.60, ev.explains_reasoning),
        ("readable_sentences", Q, 0.40, ev.readable_sentences),
        ("fenced_blocks_closed", F, 0.40, ev.fenced_blocks_closed),
        ("heading_hierarchy", F, 0.30, ev.heading_hierarchy),
        ("clean_whitespace", F, 0.30, ev.clean_whitespace),
    ),
    TaskCategory.REPORTING: _criteria(
        ("has_summary", C, 0.35, ev.has_section("has_summary")),
        ("has_findings", C, 0.35, ev.has_section("has_findings")),
        ("has_recommendations", C, 0.30, ev.has_section("has_recommendations")),
        ("no_placeholders", R, 0.50, ev.no_unresolved_placeholders),
        ("no_error_markers", R, 0.50, ev.no_error_markers),
        ("min_length", Q, 0.40, ev.min_words(300)),
        ("section_structure", Q, 0.30, ev.section_structure(3)),
        ("readable_sentences", Q, 0.30, ev.readable_sentences),
        ("heading_hierarchy", F, 0.50, ev.heading_hierarchy),
        ("clean_whitespace", F, 0.50, ev.clean_whitespace),
    ),
    TaskCategory.GENERIC: _criteria(
        ("min_length", C, 0.60, ev.min_words(30)),
        ("addresses_request", C, 0.40, ev.addresses_request),
        ("no_error_markers", R, 0.60, ev.no_error_markers),
        ("no_placeholders", R, 0.40, ev.no_unresolved_placeholders),
        ("readable_sentences", Q, 1.00, ev.readable_sentences),
        ("clean_whitespace", F, 0.50, ev.clean_whitespace),
        ("fenced_blocks_closed", F, 0.50, ev.fenced_blocks_closed),
    ),
}

DEFAULT_CATEGORY_PHASE_WEIGHTS: Final[dict[TaskCategory, dict[Phase, float]]] = {
    TaskCategory.CODE_GENERATION: {
        Phase.COMPLETENESS: 0.25,
        Phase.CORRECTNESS: 0.40,
        Phase.QUALITY: 0.20,
        Phase.FORMAT: 0.15,
    },
}


# ═══════════════════════════════════════════════════════════════════════════
# REGISTRY
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CategoryCriteria:
    """Everything the validator and gate need for one task category."""

    category: TaskCategory
    criteria: tuple[Criterion, ...]
    phase_weights: Mapping[Phase, float]
    thresholds: Thresholds

    def in_phase(self, phase: Phase) -> tuple[Criterion, ...]:
        return tuple(c for c in self.criteria if c.phase is phase)

    def get(self, name: str) -> Criterion | None:
        for criterion in self.criteria:
            if criterion.name == name:
                return criterion
        return None


def _check(entry: CategoryCriteria) -> None:
    """Raise ConfigurationError unless ``entry`` satisfies every registry invariant."""
    label = entry.category.value
    names = [c.name for c in entry.criteria]
    if len(names) != len(set(names)):
        raise ConfigurationError(f"{label}: duplicate criterion names")

    for phase in PHASE_ORDER:
        members = entry.in_phase(phase)
        if not members:
            raise ConfigurationError(f"{label}: phase {phase.value!r} has no criteria")
        for criterion in members:
            if not 0.0 < criterion.weight <= 1.0:
                raise ConfigurationError(
                    f"{label}: weight for {criterion.name!r} must be in (0, 1], got {criterion.weight}"
                )
        total = math.fsum(c.weight for c in members)
        if abs(total - 1.0) > WEIGHT_EPSILON:
            raise ConfigurationError(
                f"{label}: {phase.value} criterion weights sum to {total:.6f}, expected 1.0"
            )

    if set(entry.phase_weights) != set(PHASE_ORDER):
        raise ConfigurationError(f"{label}: phase weights must cover all four phases")
    for phase, weight in entry.phase_weights.items():
        if not 0.0 < weight <= 1.0:
            raise ConfigurationError(
                f"{label}: phase weight for {phase.value!r} must be in (0, 1], got {weight}"
            )
    phase_total = math.fsum(entry.phase_weights.values())
    if abs(phase_total - 1.0) > WEIGHT_EPSILON:
        raise ConfigurationError(f"{label}: phase weights sum to {phase_total:.6f}, expected 1.0")

    t = entry.thresholds
    if not 0.0 <= t.enhance <= t.pass_ <= 1.0:
        raise ConfigurationError(
            f"{label}: thresholds must satisfy 0 <= enhance ({t.enhance}) <= pass ({t.pass_}) <= 1"
        )


class CriteriaRegistry:
    """Immutable, validated mapping of task category -> criteria and thresholds."""

    def __init__(self, entries: Iterable[CategoryCriteria], version: int = 1) -> None:
        table: dict[TaskCategory, CategoryCriteria] = {}
        for entry in entries:
            _check(entry)
            table[entry.category] = replace(
                entry, phase_weights=MappingProxyType(dict(entry.phase_weights))
            )
        missing = [c.value for c in TaskCategory if c not in table]
        if missing:
            raise ConfigurationError(f"No criteria registered for: {', '.join(missing)}")
        self._table = MappingProxyType(table)
        self.version = version

    @classmethod
    def default(cls) -> CriteriaRegistry:
        return cls(
            CategoryCriteria(
                category=category,
                criteria=DEFAULT_CRITERIA[category],
                phase_weights=DEFAULT_CATEGORY_PHASE_WEIGHTS.get(category, DEFAULT_PHASE_WEIGHTS),
                thresholds=DEFAULT_THRESHOLDS[category],
            )
            for category in TaskCategory
        )

    def entry(self, category: TaskCategory) -> CategoryCriteria:
        return self._table[category]

    def criteria_for(self, category: TaskCategory) -> dict[Phase, tuple[Criterion, ...]]:
        """Criteria grouped by phase, in phase order."""
        entry = self._table[category]
        return {phase: entry.in_phase(phase) for phase in PHASE_ORDER}

    def phase_weights(self, category: TaskCategory) -> Mapping[Phase, float]:
        return self._table[category].phase_weights

    def thresholds(self, category: TaskCategory) -> Thresholds:
        return self._table[category].thresholds

    def with_overrides(
        self,
        category: TaskCategory,
        *,
        criterion_weights: Mapping[str, float] | None = None,
        phase_weights: Mapping[Phase, float] | None = None,
        thresholds: Thresholds | None = None,
    ) -> CriteriaRegistry:
        """Return a new registry with ``category`` overridden; validation re-runs."""
        entry = self._table[category]
        criteria = entry.criteria
        if criterion_weights:
            unknown = set(criterion_weights) - {c.name for c in criteria}
            if unknown:
                raise ConfigurationError(
                    f"{category.value}: unknown criteria {', '.join(sorted(unknown))}"
                )
            criteria = tuple(
                _reweight(c, criterion_weights[c.name]) if c.name in criterion_weights else c
                for c in criteria
            )
        updated = CategoryCriteria(
            category=category,
            criteria=criteria,
            phase_weights=dict(phase_weights) if phase_weights else dict(entry.phase_weights),
            thresholds=thresholds or entry.thresholds,
        )
        table = dict(self._table)
        table[category] = updated
        return CriteriaRegistry(table.values(), version=self.version + 1)

    def adjusted(self, category: TaskCategory, criterion: str, factor: float) -> CriteriaRegistry:
        """
        Scale one criterion's weight by ``factor`` and renormalize its phase.

        The other weights in the phase shrink proportionally so the phase
        still sums to 1.0.
        """
        entry = self._table[category]
        target = entry.get(criterion)
        if target is None:
            raise KeyError(f"{category.value}: no criterion named {criterion!r}")
        members = entry.in_phase(target.phase)
        raw = {c.name: c.weight * (factor if c.name == criterion else 1.0) for c in members}
        total = math.fsum(raw.values())
        normalized = {name: weight / total for name, weight in raw.items()}
        # Fold rounding residue into the target so the phase sums to exactly 1.0
        normalized[criterion] += 1.0 - math.fsum(normalized.values())
        logger.info(
            "Adjusted %s/%s weight %.4f -> %.4f (registry v%d)",
            category.value, criterion, target.weight, normalized[criterion], self.version + 1,
        )
        return self.with_overrides(category, criterion_weights=normalized)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "categories": {
                category.value: {
                    "thresholds": {"pass": e.thresholds.pass_, "enhance": e.thresholds.enhance},
                    "phase_weights": {p.value: w for p, w in e.phase_weights.items()},
                    "criteria": {
                        c.name: {"phase": c.phase.value, "weight": c.weight, "critical": c.critical}
                        for c in e.criteria
                    },
                }
                for category, e in self._table.items()
            },
        }


def _reweight(criterion: Criterion, weight: float) -> Criterion:
    if not 0.0 < weight <= 1.0:
        raise ConfigurationError(
            f"weight for {criterion.name!r} must be in (0, 1], got {weight}"
        )
    return replace(criterion, weight=weight)
