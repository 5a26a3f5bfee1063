#!/usr/bin/env python3
"""Enhancement Engine - deterministic local repairs for failing criteria.

Repairs are additive or reformatting only: they insert explicit placeholder
sections, normalize citations, reflow headings, close fences, tag Python
code blocks and tidy whitespace. The worker is never called. Repairs run in
a fixed order until nothing changes, so ``enhance`` is idempotent.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Final

from .evaluators import (
    ANY_NUMERIC_CITATION,
    PLACEHOLDER_MARKER,
    SECTION_SPECS,
    SectionSpec,
    code_blocks,
    headings,
    looks_like_python,
    python_parses,
    section_score,
)

logger = logging.getLogger(__name__)

Repair = Callable[[str], str]

MAX_PASSES: Final[int] = 5

# Residual issue prefix for sections that were filled with a placeholder
PLACEHOLDER_ISSUE: Final[str] = "placeholder_inserted"


@dataclass(frozen=True)
class EnhancementResult:
    """Repaired artifact plus which criteria were repaired and which remain.

    ``residual`` lists failing criteria no repair fixed, followed by one
    ``placeholder_inserted:<criterion>`` entry per section that was only
    filled with a placeholder.
    """

    artifact: str
    applied: tuple[str, ...]
    residual: tuple[str, ...]

    @property
    def changed(self) -> bool:
        return bool(self.applied)


# ═══════════════════════════════════════════════════════════════════════════
# REPAIRS
# ═══════════════════════════════════════════════════════════════════════════


def _keep_trailing_newline(original: str, repaired: str) -> str:
    if original.endswith("\n") and not repaired.endswith("\n"):
        return repaired + "\n"
    return repaired


def close_fences(text: str) -> str:
    blocks = code_blocks(text)
    if blocks and not blocks[-1].closed:
        return text.rstrip("\n") + "\n```\n"
    return text


def tag_python_blocks(text: str) -> str:
    lines = text.splitlines()
    index = 0
    while index < len(lines):
        stripped = lines[index].strip()
        if not stripped.startswith("```"):
            index += 1
            continue
        end = index + 1
        while end < len(lines) and not lines[end].strip().startswith("```"):
            end += 1
        if stripped == "```" and end < len(lines):
            body = "\n".join(lines[index + 1 : end])
            if looks_like_python(body) and python_parses(body):
                lines[index] = lines[index].replace("```", "```python", 1)
        index = end + 1
    return _keep_trailing_newline(text, "\n".join(lines))


def normalize_citations(text: str) -> str:
    out: list[str] = []
    in_fence = False
    for line in text.splitlines():
        if line.strip().startswith("```"):
            in_fence = not in_fence
            out.append(line)
            continue
        out.append(line if in_fence else ANY_NUMERIC_CITATION.sub(r"[\1]", line))
    return _keep_trailing_newline(text, "\n".join(out))


def reflow_headings(text: str) -> str:
    """Pull up headings that skip a level below the heading before them."""
    lines = text.splitlines()
    previous: int | None = None
    for heading in headings(text):
        level = heading.level if previous is None else min(heading.level, previous + 1)
        if level != heading.level:
            line = lines[heading.line_index]
            lines[heading.line_index] = "#" * level + line.lstrip()[heading.level :]
        previous = level
    return _keep_trailing_newline(text, "\n".join(lines))


def normalize_whitespace(text: str) -> str:
    """Strip trailing spaces and collapse runs of 3+ blank lines to one."""
    stripped = "\n".join(line.rstrip() for line in text.splitlines())
    collapsed = re.sub(r"\n{4,}", "\n\n", stripped)
    return _keep_trailing_newline(text, collapsed)


def insert_section(spec: SectionSpec) -> Repair:
    def repair(text: str) -> str:
        if section_score(text, spec.aliases) > 0.0:
            return text
        # An open fence would swallow the new heading
        text = close_fences(text)
        found = headings(text)
        level = 2 if not found else max(2, min(h.level for h in found))
        note = f"{PLACEHOLDER_MARKER} {spec.title.lower()} not provided in the response._"
        return text.rstrip("\n") + f"\n\n{'#' * level} {spec.title}\n\n{note}\n"

    return repair


# Fixed application order: fences first so later scans see balanced blocks,
# whitespace last so every earlier repair's output gets tidied.
REPAIRS: Final[dict[str, Repair]] = {
    "fenced_blocks_closed": close_fences,
    "code_language_tagged": tag_python_blocks,
    "citation_format": normalize_citations,
    "heading_hierarchy": reflow_headings,
    **{name: insert_section(spec) for name, spec in SECTION_SPECS.items()},
    "clean_whitespace": normalize_whitespace,
}


# ═══════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════


class EnhancementEngine:
    """Applies the repairs registered for a set of failing criteria."""

    def __init__(self, repairs: dict[str, Repair] | None = None) -> None:
        self.repairs = repairs if repairs is not None else REPAIRS

    def can_repair(self, criterion: str) -> bool:
        return criterion in self.repairs

    def enhance(self, artifact: str, failing_criteria: Iterable[str]) -> EnhancementResult:
        failing = set(failing_criteria)
        selected = [(name, fn) for name, fn in self.repairs.items() if name in failing]

        current = artifact
        applied: set[str] = set()
        for _ in range(MAX_PASSES):
            before = current
            for name, repair in selected:
                repaired = repair(current)
                if repaired != current:
                    applied.add(name)
                    current = repaired
            if current == before:
                break
        else:
            logger.warning("Enhancement did not converge after %d passes", MAX_PASSES)

        # Inserted sections still lack content; keep them visible to callers
        placeholders = [
            f"{PLACEHOLDER_ISSUE}:{name}"
            for name, _ in selected
            if name in applied and name in SECTION_SPECS
        ]
        residual = tuple(sorted(failing - applied)) + tuple(placeholders)
        if applied:
            logger.info(
                "Enhanced artifact: applied=%s residual=%s", sorted(applied), list(residual)
            )
        return EnhancementResult(
            artifact=current,
            applied=tuple(name for name, _ in selected if name in applied),
            residual=residual,
        )
