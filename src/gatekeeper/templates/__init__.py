"""Per-category worker prompt templates."""

from __future__ import annotations

from collections.abc import Mapping

from gatekeeper.routing.models import TaskCategory
from gatekeeper.templates.base import BaseTemplate, RenderedPrompt
from gatekeeper.templates.code import CodeTemplate
from gatekeeper.templates.debugging import DebuggingTemplate
from gatekeeper.templates.generic import GenericTemplate
from gatekeeper.templates.reporting import ReportingTemplate
from gatekeeper.templates.research import ResearchTemplate
from gatekeeper.validation.evaluators import SECTION_SPECS
from gatekeeper.validation.registry import CriteriaRegistry

TEMPLATES: dict[TaskCategory, BaseTemplate] = {
    template.category: template
    for template in (
        ResearchTemplate(),
        CodeTemplate(),
        DebuggingTemplate(),
        ReportingTemplate(),
        GenericTemplate(),
    )
}


def required_sections(registry: CriteriaRegistry, category: TaskCategory) -> list[str]:
    """Section titles the registry checks for ``category``, in criterion order."""
    return [
        SECTION_SPECS[c.name].title
        for c in registry.entry(category).criteria
        if c.name in SECTION_SPECS
    ]


def render_prompt(
    category: TaskCategory,
    task: str,
    context: Mapping[str, str] | None = None,
    registry: CriteriaRegistry | None = None,
    json_output: bool = False,
) -> RenderedPrompt:
    """Render the worker prompt for ``task`` under ``category``."""
    registry = registry or CriteriaRegistry.default()
    return TEMPLATES[category].render(
        task,
        context=context,
        required_sections=required_sections(registry, category),
        json_output=json_output,
    )


__all__ = [
    "BaseTemplate",
    "CodeTemplate",
    "DebuggingTemplate",
    "GenericTemplate",
    "RenderedPrompt",
    "ReportingTemplate",
    "ResearchTemplate",
    "TEMPLATES",
    "render_prompt",
    "required_sections",
]
