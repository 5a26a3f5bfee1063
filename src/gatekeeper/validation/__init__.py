"""Artifact validation: criteria registry, four-phase scoring, gate and repairs."""

from .engine import CRITERION_FLOOR, MIN_ARTIFACT_CHARS, ValidationEngine, aggregate_score
from .enhancer import EnhancementEngine, EnhancementResult
from .gate import QualityGate
from .models import (
    PHASE_ORDER,
    Criterion,
    Disposition,
    Phase,
    PhaseScore,
    Thresholds,
    ValidationResult,
)
from .registry import (
    DEFAULT_PHASE_WEIGHTS,
    DEFAULT_THRESHOLDS,
    CategoryCriteria,
    CriteriaRegistry,
)

__all__ = [
    "CRITERION_FLOOR",
    "DEFAULT_PHASE_WEIGHTS",
    "DEFAULT_THRESHOLDS",
    "MIN_ARTIFACT_CHARS",
    "PHASE_ORDER",
    "CategoryCriteria",
    "CriteriaRegistry",
    "Criterion",
    "Disposition",
    "EnhancementEngine",
    "EnhancementResult",
    "Phase",
    "PhaseScore",
    "QualityGate",
    "Thresholds",
    "ValidationEngine",
    "ValidationResult",
    "aggregate_score",
]
