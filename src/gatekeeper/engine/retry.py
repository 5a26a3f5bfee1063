"""
Retry Coordinator — bounded regenerate loop around the worker

State machine for one request:

    ATTEMPTING(n) --PASS--------------------------------> DONE(PASS)
    ATTEMPTING(n) --ENHANCE--> enhance once, re-validate -> DONE(PASS | ENHANCE)
    ATTEMPTING(n) --REGENERATE / worker failure, n <= max_retries--> ATTEMPTING(n+1)
    ATTEMPTING(n) --REGENERATE / worker failure, n == max_retries + 1--> FAILED

Attempt 1 sends the templated prompt. Later attempts append the full
validation report of the previous attempt (or the worker error) to it.
Every attempt is written to the feedback ledger when one is attached.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from gatekeeper.errors import RequestCancelled, WorkerExecutionFailure
from gatekeeper.feedback.ledger import FeedbackLedger, LedgerEntry
from gatekeeper.routing.models import TaskCategory
from gatekeeper.validation.engine import ValidationEngine
from gatekeeper.validation.enhancer import PLACEHOLDER_ISSUE, EnhancementEngine
from gatekeeper.validation.gate import QualityGate
from gatekeeper.validation.models import Disposition, ValidationResult
from gatekeeper.validation.registry import CriteriaRegistry

from .worker import OutputMode, Worker

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_TIMEOUT = 300.0

# Extra time the coordinator allows over the worker's own timeout
TIMEOUT_GRACE = 1.0


class AttemptKind(str, Enum):
    QUALITY = "quality"
    WORKER_FAILURE = "worker_failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Attempt:
    """One worker invocation and what the gate made of it."""

    index: int
    artifact: str
    validation: ValidationResult | None
    disposition: Disposition
    kind: AttemptKind = AttemptKind.QUALITY
    error_detail: str | None = None
    timed_out: bool = False
    enhanced: bool = False
    applied_repairs: tuple[str, ...] = ()
    initial_issues: tuple[str, ...] = ()
    placeholders: tuple[str, ...] = ()

    @property
    def aggregate(self) -> float:
        return self.validation.aggregate if self.validation else 0.0

    @property
    def issues(self) -> list[str]:
        """Issues still open after this attempt."""
        if self.validation is not None:
            return self.validation.issues
        if self.kind is AttemptKind.CANCELLED:
            return ["cancelled"]
        if self.timed_out:
            return ["worker_timeout"]
        return ["worker_failure"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "kind": self.kind.value,
            "disposition": self.disposition.value,
            "aggregate": self.aggregate,
            "issues": self.issues,
            "error_detail": self.error_detail,
            "timed_out": self.timed_out,
            "enhanced": self.enhanced,
            "applied_repairs": list(self.applied_repairs),
        }


@dataclass(frozen=True)
class RetryOutcome:
    """Every attempt made for one request, in order."""

    attempts: tuple[Attempt, ...] = field(default_factory=tuple)

    @property
    def final(self) -> Attempt:
        return self.attempts[-1]

    @property
    def succeeded(self) -> bool:
        return bool(self.attempts) and self.final.disposition in (
            Disposition.PASS,
            Disposition.ENHANCE,
        )

    @property
    def issue_history(self) -> list[str]:
        """``attempt N: issue`` lines for every attempt, oldest first."""
        return [f"attempt {a.index}: {issue}" for a in self.attempts for issue in a.issues]


def augment_prompt(prompt: str, previous: Attempt) -> str:
    """Append feedback from ``previous`` to the original prompt."""
    if previous.validation is not None:
        feedback = (
            f"Your previous response (attempt {previous.index}) was rejected by the "
            "quality gate.\n"
            "Validation report:\n"
            f"{previous.validation.report()}\n"
            "Fix every failing criterion listed above and return the complete "
            "response again."
        )
    else:
        feedback = (
            f"The previous attempt ({previous.index}) failed: "
            f"{previous.error_detail or 'no output'}.\n"
            "Return the complete response."
        )
    return f"{prompt}\n\n---\n{feedback}"


class RetryCoordinator:
    """Runs the worker until the gate accepts an artifact or retries run out."""

    def __init__(
        self,
        worker: Worker,
        registry: CriteriaRegistry | None = None,
        ledger: FeedbackLedger | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = DEFAULT_TIMEOUT,
        auto_enhance: bool = True,
        output_mode: OutputMode = OutputMode.TEXT,
        enhancer: EnhancementEngine | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        if timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {timeout}")
        self.worker = worker
        self.registry = registry or CriteriaRegistry.default()
        self.engine = ValidationEngine(self.registry)
        self.gate = QualityGate(self.registry)
        self.enhancer = enhancer or EnhancementEngine()
        self.ledger = ledger
        self.max_retries = max_retries
        self.timeout = timeout
        self.auto_enhance = auto_enhance
        self.output_mode = output_mode

    async def run(
        self,
        prompt: str,
        category: TaskCategory,
        request_context: Mapping[str, Any] | None = None,
        *,
        request_id: str = "",
        estimated_cost: int = 0,
        cancel_event: asyncio.Event | None = None,
    ) -> RetryOutcome:
        """Drive the loop for one request.

        Raises:
            RequestCancelled: ``cancel_event`` was set at a phase boundary.
                The cancelled attempt is recorded before raising.

        """
        attempts: list[Attempt] = []
        for index in range(1, self.max_retries + 2):
            current_prompt = prompt if not attempts else augment_prompt(prompt, attempts[-1])
            attempt = await self._attempt(
                index, current_prompt, category, request_context,
                request_id=request_id,
                estimated_cost=estimated_cost,
                cancel_event=cancel_event,
            )
            attempts.append(attempt)
            if attempt.disposition is not Disposition.REGENERATE:
                break
            logger.info(
                "Request %s attempt %d/%d regenerating (%s)",
                request_id, index, self.max_retries + 1, ", ".join(attempt.issues),
            )
        return RetryOutcome(tuple(attempts))

    async def _attempt(
        self,
        index: int,
        prompt: str,
        category: TaskCategory,
        request_context: Mapping[str, Any] | None,
        *,
        request_id: str,
        estimated_cost: int,
        cancel_event: asyncio.Event | None,
    ) -> Attempt:
        async def checkpoint(artifact: str = "") -> None:
            if cancel_event is not None and cancel_event.is_set():
                await self._cancelled(index, artifact, category, request_id, estimated_cost)
                raise RequestCancelled(request_id, index)

        await checkpoint()
        try:
            artifact = await self._invoke(prompt)
        except WorkerExecutionFailure as exc:
            logger.warning("Request %s attempt %d worker failure: %s", request_id, index, exc)
            attempt = Attempt(
                index=index,
                artifact="",
                validation=None,
                disposition=Disposition.REGENERATE,
                kind=AttemptKind.WORKER_FAILURE,
                error_detail=str(exc),
                timed_out=exc.timed_out,
            )
            await self._record(attempt, category, request_id, estimated_cost)
            return attempt
        except asyncio.CancelledError:
            await self._cancelled(index, "", category, request_id, estimated_cost)
            raise

        await checkpoint(artifact)
        validation = self.engine.validate(artifact, category, request_context)
        await checkpoint(artifact)

        disposition = self.gate.decide(validation, category)
        attempt = Attempt(
            index=index,
            artifact=artifact,
            validation=validation,
            disposition=disposition,
            initial_issues=tuple(validation.issues),
        )
        if disposition is Disposition.ENHANCE and self.auto_enhance:
            attempt = self._enhance(attempt, category, request_context)

        await self._record(attempt, category, request_id, estimated_cost)
        return attempt

    def _enhance(
        self,
        attempt: Attempt,
        category: TaskCategory,
        request_context: Mapping[str, Any] | None,
    ) -> Attempt:
        """Repair once and re-validate; never loops."""
        assert attempt.validation is not None
        repaired = self.enhancer.enhance(attempt.artifact, attempt.validation.failing_criteria)
        if not repaired.changed:
            return attempt

        revalidated = self.engine.validate(repaired.artifact, category, request_context)
        after = self.gate.decide(revalidated, category)
        if revalidated.critical_flag:
            # A repair exposed a critical failure; the artifact cannot be shown
            disposition = Disposition.REGENERATE
        elif after is Disposition.PASS:
            disposition = Disposition.PASS
        else:
            disposition = Disposition.ENHANCE
        logger.debug(
            "Enhanced attempt %d: %.3f -> %.3f (%s)",
            attempt.index, attempt.validation.aggregate, revalidated.aggregate, disposition.value,
        )
        return Attempt(
            index=attempt.index,
            artifact=repaired.artifact,
            validation=revalidated,
            disposition=disposition,
            enhanced=True,
            applied_repairs=repaired.applied,
            initial_issues=attempt.initial_issues,
            placeholders=tuple(
                issue for issue in repaired.residual if issue.startswith(PLACEHOLDER_ISSUE)
            ),
        )

    async def _invoke(self, prompt: str) -> str:
        """Call the worker once, converting every failure mode to WorkerExecutionFailure."""
        try:
            response = await asyncio.wait_for(
                self.worker.invoke(prompt, self.output_mode, self.timeout),
                timeout=self.timeout + TIMEOUT_GRACE,
            )
        except asyncio.TimeoutError as exc:
            raise WorkerExecutionFailure(
                f"Worker timed out after {self.timeout}s", timed_out=True
            ) from exc
        except WorkerExecutionFailure:
            raise
        except Exception as exc:
            logger.debug("Worker raised", exc_info=True)
            raise WorkerExecutionFailure(f"{type(exc).__name__}: {exc}") from exc

        if not response.success:
            raise WorkerExecutionFailure(
                response.error_detail or "Worker reported failure",
                timed_out=response.timed_out,
            )
        if not response.artifact.strip():
            raise WorkerExecutionFailure("Worker returned empty output")
        return response.artifact

    async def _cancelled(
        self,
        index: int,
        artifact: str,
        category: TaskCategory,
        request_id: str,
        estimated_cost: int,
    ) -> None:
        logger.info("Request %s cancelled during attempt %d", request_id, index)
        attempt = Attempt(
            index=index,
            artifact=artifact,
            validation=None,
            disposition=Disposition.REGENERATE,
            kind=AttemptKind.CANCELLED,
            error_detail="cancelled",
        )
        await self._record(attempt, category, request_id, estimated_cost)

    async def _record(
        self,
        attempt: Attempt,
        category: TaskCategory,
        request_id: str,
        estimated_cost: int,
    ) -> None:
        if self.ledger is None:
            return
        await self.ledger.record(
            LedgerEntry(
                category=category.value,
                aggregate_score=attempt.aggregate,
                disposition=attempt.disposition.value,
                # Raw failures before repair; these drive weight tuning
                issues=attempt.initial_issues or tuple(attempt.issues),
                kind=attempt.kind.value,
                request_id=request_id,
                attempt_index=attempt.index,
                estimated_cost=estimated_cost,
                details={
                    "enhanced": attempt.enhanced,
                    "applied_repairs": list(attempt.applied_repairs),
                    "residual": (
                        [*attempt.issues, *attempt.placeholders] if attempt.enhanced else []
                    ),
                    "error_detail": attempt.error_detail,
                    "registry_version": self.registry.version,
                },
            )
        )
