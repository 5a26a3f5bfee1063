"""Research template: cited, sectioned literature synthesis."""

from __future__ import annotations

from gatekeeper.routing.models import TaskCategory
from gatekeeper.templates.base import BaseTemplate


class ResearchTemplate(BaseTemplate):
    """Prompt for research and survey tasks.

    The validator checks citation presence, plausibility and format, so the
    prompt asks for numbered citations that resolve to a reference list.
    """

    category = TaskCategory.RESEARCH
    description = "Literature survey with numbered citations and a reference list"

    def instructions(self) -> list[str]:
        return [
            "Open with a short summary of the main conclusions.",
            "Support every substantive claim with a numbered citation like [1].",
            "Every citation number must appear in the References list.",
            "Only cite sources you can name precisely; never invent papers, years or identifiers.",
            "Organize the body under descriptive headings.",
        ]
