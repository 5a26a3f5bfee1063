"""
Routing Data Models

Core dataclasses shared by the trigger matcher, complexity estimator and
delegation policy.
"""

import datetime
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Tuple


class TaskCategory(str, Enum):
    """Task categories a request can be routed to."""

    RESEARCH = "research"
    CODE_GENERATION = "code-generation"
    DEBUGGING = "debugging"
    REPORTING = "reporting"
    GENERIC = "generic"


# Tie-break order when a request matches several categories (highest first)
CATEGORY_PRIORITY: Tuple[TaskCategory, ...] = (
    TaskCategory.CODE_GENERATION,
    TaskCategory.DEBUGGING,
    TaskCategory.RESEARCH,
    TaskCategory.REPORTING,
    TaskCategory.GENERIC,
)


def parse_category(value: "str | TaskCategory") -> TaskCategory:
    """Resolve a category from its value or a loose alias ("code", "debug")."""
    if isinstance(value, TaskCategory):
        return value
    key = value.strip().lower().replace("_", "-")
    aliases = {
        "code": TaskCategory.CODE_GENERATION,
        "codegen": TaskCategory.CODE_GENERATION,
        "debug": TaskCategory.DEBUGGING,
        "report": TaskCategory.REPORTING,
        "documentation": TaskCategory.REPORTING,
    }
    if key in aliases:
        return aliases[key]
    try:
        return TaskCategory(key)
    except ValueError:
        valid = ", ".join(c.value for c in TaskCategory)
        raise ValueError(f"Unknown task category {value!r} (expected one of: {valid})") from None


@dataclass(frozen=True)
class Request:
    """
    A unit of work handed to the supervisor.

    ``as_of_year`` is captured once at entry so that downstream validation
    never reads the clock.
    """

    text: str
    context: Mapping[str, str] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    as_of_year: int = field(default_factory=lambda: datetime.date.today().year)

    def validation_context(self) -> Dict[str, object]:
        """Context handed to criterion evaluators."""
        return {
            "request": self.text,
            "as_of_year": self.as_of_year,
            **{f"context:{name}": blob for name, blob in self.context.items()},
        }


@dataclass(frozen=True)
class TriggerMatch:
    """A category pattern that matched a request."""

    category: TaskCategory
    pattern: str


@dataclass(frozen=True)
class DelegationDecision:
    """Outcome of the delegation policy for one request."""

    should_delegate: bool
    category: TaskCategory
    estimated_cost: int
    triggered_factors: FrozenSet[str] = frozenset()
    matches: FrozenSet[TriggerMatch] = frozenset()
    reasoning: str = ""

    def __post_init__(self) -> None:
        if self.estimated_cost < 0:
            raise ValueError(f"estimated_cost must be >= 0, got {self.estimated_cost}")

    def to_dict(self) -> Dict[str, object]:
        return {
            "should_delegate": self.should_delegate,
            "category": self.category.value,
            "estimated_cost": self.estimated_cost,
            "triggered_factors": sorted(self.triggered_factors),
            "matches": sorted(
                [m.category.value, m.pattern] for m in self.matches
            ),
            "reasoning": self.reasoning,
        }


def context_length(context: Optional[Mapping[str, str]]) -> int:
    """Total character length of all context blobs."""
    if not context:
        return 0
    return sum(len(blob) for blob in context.values() if blob)
