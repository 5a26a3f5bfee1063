#!/usr/bin/env python3
"""Trigger Matcher - pattern-based task category detection.

Evaluates a request against a fixed table of category patterns. A request
may match several categories; ties are broken by ``CATEGORY_PRIORITY``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Final

from .models import CATEGORY_PRIORITY, TaskCategory, TriggerMatch

# ═══════════════════════════════════════════════════════════════════════════
# TRIGGER PATTERNS
# ═══════════════════════════════════════════════════════════════════════════

TRIGGER_PATTERNS: Final[dict[TaskCategory, list[str]]] = {
    TaskCategory.CODE_GENERATION: [
        r"\bimplement\b.{0,40}\b(complete|full|entire|working)\b",
        r"\b(write|generate|build|create|scaffold)\b.{0,40}"
        r"\b(function|class|module|script|library|api|endpoint|service|cli|parser)\b",
        r"\bimplement\b.{0,40}\b(function|class|module|algorithm|feature|api|endpoint)\b",
        r"\brefactor\b.{0,40}\b(code|module|class|codebase)\b",
        r"\bport\b.{0,30}\bto\b.{0,20}\b(python|rust|go|typescript|java)\b",
        r"\bunit tests? for\b",
    ],
    TaskCategory.DEBUGGING: [
        r"\bdebug\b.{0,60}\b(error|exception|failure|crash|issue)\b",
        r"\b(fix|diagnose|troubleshoot)\b.{0,40}\b(bug|error|crash|exception|failure|regression)\b",
        r"\bstack ?trace\b",
        r"\btraceback\b",
        r"\b(is|are|keeps?) (not working|failing|crashing)\b",
        r"\bwhy does\b.{0,60}\b(fail|crash|hang|throw)\b",
        r"\broot cause\b",
    ],
    TaskCategory.RESEARCH: [
        r"\bsurvey\b",
        r"\bliterature review\b",
        r"\brecent (papers|research|work|advances|publications)\b",
        r"\bstate[- ]of[- ]the[- ]art\b",
        r"\bresearch\b.{0,20}\b(on|into|about|the landscape)\b",
        r"\b(find|collect|gather)\b.{0,30}\b(papers|studies|sources|citations)\b",
        r"\bcompare\b.{0,40}\b(approaches|methods|frameworks|techniques)\b",
    ],
    TaskCategory.REPORTING: [
        r"\b(write|draft|prepare|produce)\b.{0,30}\b(report|write-?up|brief|memo)\b",
        r"\bexecutive summary\b",
        r"\bsummari[sz]e\b.{0,40}\b(findings|results|metrics|incident|quarter)\b",
        r"\b(document|documentation)\b.{0,30}\b(for|of)\b",
        r"\bpost-?mortem\b",
        r"\bstatus report\b",
    ],
    TaskCategory.GENERIC: [],
}

_COMPILED: Final[dict[TaskCategory, list[tuple[str, re.Pattern[str]]]]] = {
    category: [(p, re.compile(p, re.IGNORECASE | re.DOTALL)) for p in patterns]
    for category, patterns in TRIGGER_PATTERNS.items()
}


# ═══════════════════════════════════════════════════════════════════════════
# MATCHING
# ═══════════════════════════════════════════════════════════════════════════


class TriggerMatcher:
    """Matches request text against the category pattern table."""

    def __init__(
        self, patterns: dict[TaskCategory, list[str]] | None = None
    ) -> None:
        if patterns is None:
            self._compiled = _COMPILED
        else:
            self._compiled = {
                category: [(p, re.compile(p, re.IGNORECASE | re.DOTALL)) for p in plist]
                for category, plist in patterns.items()
            }

    def classify(self, text: str) -> frozenset[TriggerMatch]:
        """Return every (category, pattern) pair that matches ``text``."""
        if not text or not text.strip():
            return frozenset()

        matches: set[TriggerMatch] = set()
        for category, patterns in self._compiled.items():
            for source, compiled in patterns:
                if compiled.search(text):
                    matches.add(TriggerMatch(category=category, pattern=source))
        return frozenset(matches)

    @staticmethod
    def primary(matches: Iterable[TriggerMatch]) -> TaskCategory:
        """Highest-priority matched category, or generic when nothing matched."""
        matched = {m.category for m in matches}
        for category in CATEGORY_PRIORITY:
            if category in matched:
                return category
        return TaskCategory.GENERIC


def classify(text: str) -> frozenset[TriggerMatch]:
    """Classify ``text`` with the default pattern table."""
    return TriggerMatcher().classify(text)
