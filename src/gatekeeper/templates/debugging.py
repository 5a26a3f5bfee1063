"""Debugging template."""

from __future__ import annotations

from gatekeeper.routing.models import TaskCategory
from gatekeeper.templates.base import BaseTemplate


class DebuggingTemplate(BaseTemplate):
    """Prompt for diagnosing a failure and proposing a safe fix."""

    category = TaskCategory.DEBUGGING
    description = "Root cause, safe fix and verification steps"

    def instructions(self) -> list[str]:
        return [
            "Name the error you are diagnosing and explain why it happens.",
            "Propose the smallest fix that resolves the root cause.",
            "Never propose destructive or security-weakening commands "
            "(force pushes, recursive deletes, disabling TLS verification, dropping tables).",
            "Explain how to verify the fix.",
        ]
