"""Code-generation template."""

from __future__ import annotations

from gatekeeper.routing.models import TaskCategory
from gatekeeper.templates.base import BaseTemplate


class CodeTemplate(BaseTemplate):
    """Prompt for complete, runnable implementations."""

    category = TaskCategory.CODE_GENERATION
    description = "Complete implementation in language-tagged code blocks"

    def instructions(self) -> list[str]:
        return [
            "Provide a complete implementation with no stubs, `pass` bodies or TODO markers.",
            "Put all code in fenced blocks tagged with their language.",
            "Document public functions and classes.",
            "Keep lines under 100 characters.",
            "Show how to use the code.",
        ]
