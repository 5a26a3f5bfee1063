"""
Delegation Policy — OR-of-strong / majority-of-weak routing decision

Combines trigger matches and the cost estimate into a deterministic
delegate / do-not-delegate decision plus a task category.

Decision rule:
    delegate = any(strong factors) or count(weak factors) >= 2

A generic request has no trigger evidence, so only cost-derived factors
vote for it.
"""

import logging
import re
from typing import Dict, List, Mapping, Optional

from .complexity import ComplexityEstimator
from .models import DelegationDecision, TaskCategory
from .triggers import TriggerMatcher

logger = logging.getLogger(__name__)

# Per-category token thresholds above which a request counts as high-cost
DEFAULT_TOKEN_THRESHOLDS: Dict[TaskCategory, int] = {
    TaskCategory.RESEARCH: 1000,
    TaskCategory.CODE_GENERATION: 500,
    TaskCategory.REPORTING: 800,
    TaskCategory.DEBUGGING: 600,
    TaskCategory.GENERIC: 500,
}

STRONG_FACTORS = frozenset({"high_cost", "strong_match"})
WEAK_FACTORS = frozenset(
    {"large_context", "compound_request", "comprehensive_analysis", "near_threshold"}
)
MIN_WEAK_FACTORS = 2

# Factors derived from the cost estimate rather than from the wording
COST_FACTORS = frozenset(
    {"high_cost", "large_context", "compound_request", "near_threshold"}
)

# Attached context at or above this many characters counts as "large"
LARGE_CONTEXT_CHARS = 1000

COMPREHENSIVE_PATTERNS = [
    r"\bcomprehensive (analysis|review|overview|report)\b",
    r"\bin[- ]depth\b",
    r"\bend[- ]to[- ]end\b",
    r"\bthorough(ly)? (analy[sz]e|analysis|investigat\w+|review)\b",
    r"\bdeep[- ]dive\b",
]
_COMPREHENSIVE = [re.compile(p, re.IGNORECASE) for p in COMPREHENSIVE_PATTERNS]


class DelegationPolicy:
    """Decides whether a request goes to the worker and under which category."""

    def __init__(
        self,
        token_thresholds: Optional[Mapping[TaskCategory, int]] = None,
        matcher: Optional[TriggerMatcher] = None,
        estimator: Optional[ComplexityEstimator] = None,
    ) -> None:
        self.token_thresholds: Dict[TaskCategory, int] = dict(DEFAULT_TOKEN_THRESHOLDS)
        if token_thresholds:
            self.token_thresholds.update(token_thresholds)
        self.matcher = matcher or TriggerMatcher()
        self.estimator = estimator or ComplexityEstimator()

    def threshold(self, category: TaskCategory) -> int:
        return self.token_thresholds.get(
            category, self.token_thresholds[TaskCategory.GENERIC]
        )

    def decide(
        self, text: str, context: Optional[Mapping[str, str]] = None
    ) -> DelegationDecision:
        """
        Classify a request and decide whether to delegate it.

        Never raises: empty or non-string text is a generic, zero-cost,
        non-delegated request.
        """
        if not isinstance(text, str) or not text.strip():
            return DelegationDecision(
                should_delegate=False,
                category=TaskCategory.GENERIC,
                estimated_cost=0,
                reasoning="Empty request -> handled directly",
            )

        matches = self.matcher.classify(text)
        category = self.matcher.primary(matches)
        estimate = self.estimator.breakdown(text, context)
        cost = estimate.total
        threshold = self.threshold(category)

        factors: Dict[str, bool] = {
            "high_cost": cost > threshold,
            "strong_match": category is not TaskCategory.GENERIC,
            "large_context": estimate.context_chars >= LARGE_CONTEXT_CHARS,
            "compound_request": bool(estimate.multi_item_patterns),
            "comprehensive_analysis": any(p.search(text) for p in _COMPREHENSIVE),
            "near_threshold": cost > threshold / 2,
        }
        triggered = frozenset(name for name, on in factors.items() if on)

        voting = triggered & COST_FACTORS if category is TaskCategory.GENERIC else triggered
        strong = voting & STRONG_FACTORS
        weak = voting & WEAK_FACTORS
        should_delegate = bool(strong) or len(weak) >= MIN_WEAK_FACTORS

        reasoning_parts: List[str] = [
            f"Category {category.value} ({len(matches)} pattern match(es))",
            f"Cost {cost} vs threshold {threshold}",
        ]
        if strong:
            reasoning_parts.append(f"Strong: {', '.join(sorted(strong))}")
        if weak:
            reasoning_parts.append(f"Weak: {', '.join(sorted(weak))}")
        if triggered - voting:
            reasoning_parts.append(f"Ignored: {', '.join(sorted(triggered - voting))}")
        reasoning_parts.append("-> delegate" if should_delegate else "-> handle directly")

        decision = DelegationDecision(
            should_delegate=should_delegate,
            category=category,
            estimated_cost=cost,
            triggered_factors=triggered,
            matches=matches,
            reasoning=" | ".join(reasoning_parts),
        )
        logger.debug("Delegation decision: %s", decision.reasoning)
        return decision
