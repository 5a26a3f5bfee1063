"""
Worker Adapters — the black-box generation engine behind the gate

The pipeline only needs ``invoke(prompt, output_mode, timeout)``. Two
adapters are provided:

- CallableWorker: wraps an async callable (tests, in-process engines)
- CommandWorker: runs an external command with the prompt on stdin

Usage:
    from gatekeeper.engine.worker import CommandWorker, OutputMode

    worker = CommandWorker(["claude", "-p"])
    response = await worker.invoke(prompt, OutputMode.TEXT, timeout=300)
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)

# Maximum prompt length to prevent DoS via extremely long prompts
MAX_PROMPT_LENGTH = 200_000


class OutputMode(str, Enum):
    """Shape of output requested from the worker."""

    TEXT = "text"
    JSON = "json"


@dataclass(frozen=True)
class WorkerResponse:
    """Raw result of one worker invocation."""

    artifact: str
    success: bool
    error_detail: str | None = None
    duration_seconds: float = 0.0
    timed_out: bool = False


class Worker(Protocol):
    async def invoke(
        self, prompt: str, output_mode: OutputMode, timeout: float
    ) -> WorkerResponse: ...


def sanitize_prompt(prompt: str) -> str:
    """Validate prompt length and strip non-printable control characters."""
    if not prompt or not prompt.strip():
        raise ValueError("Prompt cannot be empty")
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValueError(f"Prompt exceeds maximum length ({MAX_PROMPT_LENGTH} chars)")
    return "".join(c for c in prompt if c == "\n" or c == "\t" or ord(c) >= 32)


def check_output(artifact: str, output_mode: OutputMode) -> str | None:
    """Return an error description when output is unusable for ``output_mode``."""
    if not artifact.strip():
        return "Worker returned empty output"
    if output_mode is OutputMode.JSON:
        try:
            json.loads(artifact)
        except json.JSONDecodeError as exc:
            return f"Worker output is not valid JSON: {exc.msg} at position {exc.pos}"
    return None


class CallableWorker:
    """
    Adapts an async ``(prompt, output_mode) -> str`` callable to the Worker
    protocol. Exceptions and timeouts become unsuccessful responses.
    """

    def __init__(self, fn: Callable[[str, OutputMode], Awaitable[str]]) -> None:
        self._fn = fn

    async def invoke(
        self, prompt: str, output_mode: OutputMode, timeout: float
    ) -> WorkerResponse:
        start = time.monotonic()
        try:
            artifact = await asyncio.wait_for(self._fn(prompt, output_mode), timeout=timeout)
        except asyncio.TimeoutError:
            return WorkerResponse(
                artifact="",
                success=False,
                error_detail=f"Worker timed out after {timeout}s",
                duration_seconds=time.monotonic() - start,
                timed_out=True,
            )
        except Exception as exc:
            return WorkerResponse(
                artifact="",
                success=False,
                error_detail=f"{type(exc).__name__}: {exc}",
                duration_seconds=time.monotonic() - start,
            )

        artifact = artifact if isinstance(artifact, str) else str(artifact)
        problem = check_output(artifact, output_mode)
        return WorkerResponse(
            artifact=artifact,
            success=problem is None,
            error_detail=problem,
            duration_seconds=time.monotonic() - start,
        )


class CommandWorker:
    """Runs an external command per invocation; the prompt is written to stdin."""

    def __init__(
        self,
        command: Sequence[str],
        json_flag: Sequence[str] = (),
        env: dict[str, str] | None = None,
    ) -> None:
        if not command:
            raise ValueError("Worker command cannot be empty")
        self.command = list(command)
        self.json_flag = list(json_flag)
        self.env = env

    def _argv(self, output_mode: OutputMode) -> list[str]:
        if output_mode is OutputMode.JSON:
            return self.command + self.json_flag
        return list(self.command)

    async def invoke(
        self, prompt: str, output_mode: OutputMode, timeout: float
    ) -> WorkerResponse:
        start = time.monotonic()
        try:
            payload = sanitize_prompt(prompt).encode()
            proc = await asyncio.create_subprocess_exec(
                *self._argv(output_mode),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except (OSError, ValueError) as exc:
            return WorkerResponse(
                artifact="",
                success=False,
                error_detail=f"{type(exc).__name__}: {exc}",
                duration_seconds=time.monotonic() - start,
            )

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(payload), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning("Worker command timed out after %ss: %s", timeout, self.command[0])
            return WorkerResponse(
                artifact="",
                success=False,
                error_detail=f"Worker timed out after {timeout}s",
                duration_seconds=time.monotonic() - start,
                timed_out=True,
            )

        artifact = stdout.decode(errors="replace")
        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[:500]
            return WorkerResponse(
                artifact=artifact,
                success=False,
                error_detail=f"Worker exited with code {proc.returncode}: {detail}",
                duration_seconds=time.monotonic() - start,
            )

        problem = check_output(artifact, output_mode)
        return WorkerResponse(
            artifact=artifact,
            success=problem is None,
            error_detail=problem,
            duration_seconds=time.monotonic() - start,
        )
