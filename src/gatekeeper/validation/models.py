"""Validation data structures: phases, criteria, scores and dispositions."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final, Union

# (artifact, request_context) -> bool or sub-score in [0, 1]
Evaluator = Callable[[str, Mapping[str, Any]], Union[bool, float]]


class Phase(str, Enum):
    """The four validation phases, in evaluation order."""

    COMPLETENESS = "completeness"
    CORRECTNESS = "correctness"
    QUALITY = "quality"
    FORMAT = "format"


PHASE_ORDER: Final[tuple[Phase, ...]] = (
    Phase.COMPLETENESS,
    Phase.CORRECTNESS,
    Phase.QUALITY,
    Phase.FORMAT,
)


class Disposition(str, Enum):
    """Gate verdict for a single artifact."""

    PASS = "pass"
    ENHANCE = "enhance"
    REGENERATE = "regenerate"


@dataclass(frozen=True)
class Criterion:
    """A weighted check evaluated during one validation phase."""

    name: str
    phase: Phase
    weight: float
    evaluator: Evaluator = field(compare=False, repr=False)
    critical: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        if not 0.0 < self.weight <= 1.0:
            raise ValueError(f"weight for {self.name!r} must be in (0.0, 1.0], got {self.weight}")


@dataclass(frozen=True)
class Thresholds:
    """Score boundaries: >= pass_ is PASS eligible, [enhance, pass_) is ENHANCE."""

    pass_: float
    enhance: float


@dataclass(frozen=True)
class PhaseScore:
    """Weighted score for one phase."""

    phase: Phase
    score: float
    failing_criteria: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"score must be in [0.0, 1.0], got {self.score}")


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of running every phase against one artifact."""

    phase_scores: tuple[PhaseScore, ...]
    aggregate: float
    critical_flag: bool
    critical_failures: frozenset[str] = frozenset()
    criterion_scores: Mapping[str, float] = field(default_factory=dict)
    registry_version: int = 0
    short_circuited: bool = False

    def phase(self, phase: Phase) -> PhaseScore:
        for score in self.phase_scores:
            if score.phase is phase:
                return score
        raise KeyError(phase)

    @property
    def failing_criteria(self) -> frozenset[str]:
        names: set[str] = set()
        for score in self.phase_scores:
            names |= score.failing_criteria
        return frozenset(names)

    @property
    def issues(self) -> list[str]:
        """Failing criterion names, critical ones first, each group sorted."""
        if self.short_circuited:
            return ["empty_artifact"]
        critical = sorted(self.critical_failures)
        rest = sorted(self.failing_criteria - self.critical_failures)
        return critical + rest

    def report(self) -> str:
        """Full plain-text validation report (used for retry feedback)."""
        lines = [f"Aggregate score: {self.aggregate:.3f}"]
        if self.short_circuited:
            lines.append("The response was empty or too short to evaluate.")
            return "\n".join(lines)
        for score in self.phase_scores:
            failing = ", ".join(sorted(score.failing_criteria)) or "none"
            lines.append(f"- {score.phase.value}: {score.score:.3f} (failing: {failing})")
        if self.critical_failures:
            lines.append(
                "Critical failures (must be fixed): "
                + ", ".join(sorted(self.critical_failures))
            )
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "aggregate": self.aggregate,
            "critical_flag": self.critical_flag,
            "critical_failures": sorted(self.critical_failures),
            "phases": {
                s.phase.value: {
                    "score": s.score,
                    "failing_criteria": sorted(s.failing_criteria),
                }
                for s in self.phase_scores
            },
            "criterion_scores": dict(self.criterion_scores),
            "registry_version": self.registry_version,
            "issues": self.issues,
        }
