#!/usr/bin/env python3
"""Complexity Estimator - token-count cost signal for delegation decisions.

Cost = ceil(characters / 4) over the request text and every context blob,
plus a fixed bonus for each "multiple items" pattern found in the request.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

from .models import context_length

# ═══════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════

CHARS_PER_TOKEN: Final[int] = 4

# Added once per detected multi-item pattern
MULTI_ITEM_BONUS: Final[int] = 50

_CONJUNCTION = re.compile(r"\band\b", re.IGNORECASE)
_LIST_ITEM = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+\S", re.MULTILINE)
_COMMA_SERIES = re.compile(r"\w+(?:\s+\w+)?,\s*\w+(?:\s+\w+)?,\s*(?:and\s+|or\s+)?\w+")


# ═══════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CostEstimate:
    """Breakdown of a request's estimated cost."""

    tokens: int
    bonus: int
    multi_item_patterns: tuple[str, ...]
    context_chars: int

    @property
    def total(self) -> int:
        return self.tokens + self.bonus


# ═══════════════════════════════════════════════════════════════════════════
# ESTIMATION
# ═══════════════════════════════════════════════════════════════════════════


def estimate_tokens(text: str) -> int:
    """Estimate tokens as characters / 4, rounded up (0 for empty text)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def detect_multi_item_patterns(text: str) -> tuple[str, ...]:
    """Names of the compound-request patterns present in ``text``."""
    found: list[str] = []
    if len(_CONJUNCTION.findall(text)) >= 2:
        found.append("repeated_conjunction")
    if len(_LIST_ITEM.findall(text)) >= 2:
        found.append("enumerated_list")
    if _COMMA_SERIES.search(text):
        found.append("comma_series")
    return tuple(found)


class ComplexityEstimator:
    """Deterministic cost estimator for a request plus attached context."""

    def __init__(self, multi_item_bonus: int = MULTI_ITEM_BONUS) -> None:
        self.multi_item_bonus = multi_item_bonus

    def breakdown(self, text: str, context: Mapping[str, str] | None = None) -> CostEstimate:
        text = text or ""
        ctx_chars = context_length(context)
        tokens = math.ceil((len(text) + ctx_chars) / CHARS_PER_TOKEN)
        patterns = detect_multi_item_patterns(text) if text.strip() else ()
        return CostEstimate(
            tokens=tokens,
            bonus=self.multi_item_bonus * len(patterns),
            multi_item_patterns=patterns,
            context_chars=ctx_chars,
        )

    def estimate(self, text: str, context: Mapping[str, str] | None = None) -> int:
        """Integer cost for ``text`` and its context blobs."""
        return self.breakdown(text, context).total
