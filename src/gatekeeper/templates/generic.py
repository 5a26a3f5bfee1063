"""Generic template for requests with no specialised category."""

from __future__ import annotations

from gatekeeper.routing.models import TaskCategory
from gatekeeper.templates.base import BaseTemplate


class GenericTemplate(BaseTemplate):
    category = TaskCategory.GENERIC
    description = "Direct answer to the request"

    def instructions(self) -> list[str]:
        return [
            "Answer the request directly and completely.",
            "Use short, clear sentences.",
        ]
