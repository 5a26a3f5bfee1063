"""Reporting template."""

from __future__ import annotations

from gatekeeper.routing.models import TaskCategory
from gatekeeper.templates.base import BaseTemplate


class ReportingTemplate(BaseTemplate):
    category = TaskCategory.REPORTING
    description = "Structured report with summary, findings and recommendations"

    def instructions(self) -> list[str]:
        return [
            "Write for a reader who has not seen the underlying data.",
            "Lead with the summary, then findings, then recommendations.",
            "Do not leave placeholders such as TBD or [insert ...].",
        ]
