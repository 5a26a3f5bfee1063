"""Request routing: trigger matching, cost estimation and the delegation policy."""

from .complexity import ComplexityEstimator, CostEstimate, estimate_tokens
from .models import (
    CATEGORY_PRIORITY,
    DelegationDecision,
    Request,
    TaskCategory,
    TriggerMatch,
    parse_category,
)
from .policy import DEFAULT_TOKEN_THRESHOLDS, DelegationPolicy
from .triggers import TriggerMatcher, classify

__all__ = [
    "CATEGORY_PRIORITY",
    "ComplexityEstimator",
    "CostEstimate",
    "DEFAULT_TOKEN_THRESHOLDS",
    "DelegationDecision",
    "DelegationPolicy",
    "Request",
    "TaskCategory",
    "TriggerMatch",
    "TriggerMatcher",
    "classify",
    "estimate_tokens",
    "parse_category",
]
