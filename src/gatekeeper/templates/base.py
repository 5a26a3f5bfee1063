"""Base prompt template and rendered-prompt type."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from gatekeeper.routing.models import TaskCategory

# Context blobs longer than this are truncated in the prompt
MAX_CONTEXT_CHARS = 20_000


@dataclass(frozen=True)
class RenderedPrompt:
    """A worker prompt ready to send."""

    category: TaskCategory
    text: str
    required_sections: tuple[str, ...] = ()


class BaseTemplate(ABC):
    """Base class for per-category worker prompt templates."""

    category: TaskCategory
    description: str

    @abstractmethod
    def instructions(self) -> list[str]:
        """Category-specific instructions, one per line."""
        ...

    def render(
        self,
        task: str,
        context: Mapping[str, str] | None = None,
        required_sections: Sequence[str] = (),
        json_output: bool = False,
    ) -> RenderedPrompt:
        """Build the worker prompt for ``task``.

        Args:
            task: The user's request text
            context: Named context blobs attached to the request
            required_sections: Section titles the validator will look for
            json_output: Ask for a single JSON document

        Returns:
            RenderedPrompt carrying the final prompt text

        """
        parts = [f"Task ({self.category.value}): {task.strip()}", ""]
        parts.extend(f"- {line}" for line in self.instructions())
        if required_sections:
            parts.append(
                "- Include these markdown sections: " + ", ".join(required_sections)
            )
        if json_output:
            parts.append("- Respond with a single valid JSON document and nothing else.")

        for name, blob in (context or {}).items():
            body = blob if len(blob) <= MAX_CONTEXT_CHARS else blob[:MAX_CONTEXT_CHARS] + "\n[truncated]"
            parts.extend(["", f"<context name=\"{name}\">", body, "</context>"])

        return RenderedPrompt(
            category=self.category,
            text="\n".join(parts),
            required_sections=tuple(required_sections),
        )
