"""Request pipeline: policy -> template -> worker/retry loop -> verdict.

The pipeline owns the current criteria registry. Each request captures the
registry reference at entry, so swapping in a retuned registry never
affects a request that is already running.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from gatekeeper.feedback.ledger import FeedbackLedger
from gatekeeper.feedback.tuner import WeightProposal, WeightTuner
from gatekeeper.routing.models import DelegationDecision, Request, TaskCategory
from gatekeeper.routing.policy import DelegationPolicy
from gatekeeper.templates import render_prompt
from gatekeeper.validation.models import Disposition
from gatekeeper.validation.registry import CriteriaRegistry

from .retry import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT, Attempt, RetryCoordinator
from .worker import OutputMode, Worker

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    """User-facing outcome of a request."""

    PASS = "pass"
    ENHANCE = "enhance"
    FAILED = "failed"
    DIRECT = "direct"


@dataclass(frozen=True)
class PipelineResult:
    """What the caller gets back. FAILED and DIRECT carry no artifact."""

    final_artifact: str | None
    verdict: Verdict
    aggregate_score: float
    issues: list[str]
    attempt_count: int
    decision: DelegationDecision
    attempts: tuple[Attempt, ...] = field(default_factory=tuple)
    request_id: str = ""
    registry_version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "verdict": self.verdict.value,
            "final_artifact": self.final_artifact,
            "aggregate_score": round(self.aggregate_score, 4),
            "issues": self.issues,
            "attempt_count": self.attempt_count,
            "decision": self.decision.to_dict(),
            "attempts": [a.to_dict() for a in self.attempts],
            "registry_version": self.registry_version,
        }


class GatePipeline:
    """
    End-to-end supervisor for one worker.

    Usage:
        pipeline = GatePipeline(CallableWorker(generate), ledger=ledger)
        result = await pipeline.process("Survey recent papers on ...")
        if result.verdict is Verdict.FAILED:
            print(result.issues)
    """

    def __init__(
        self,
        worker: Worker,
        registry: CriteriaRegistry | None = None,
        ledger: FeedbackLedger | None = None,
        policy: DelegationPolicy | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = DEFAULT_TIMEOUT,
        auto_enhance: bool = True,
        output_mode: OutputMode = OutputMode.TEXT,
    ) -> None:
        self.worker = worker
        self._registry = registry or CriteriaRegistry.default()
        self.ledger = ledger
        self.policy = policy or DelegationPolicy()
        self.max_retries = max_retries
        self.timeout = timeout
        self.auto_enhance = auto_enhance
        self.output_mode = output_mode

    @property
    def registry(self) -> CriteriaRegistry:
        return self._registry

    def retune(self, registry: CriteriaRegistry) -> None:
        """Swap in a new registry for subsequent requests."""
        logger.info("Registry swapped v%d -> v%d", self._registry.version, registry.version)
        self._registry = registry

    async def tune(self, apply: bool = True) -> list[WeightProposal]:
        """Propose (and by default apply) ledger-driven weight adjustments."""
        if self.ledger is None:
            return []
        tuner = WeightTuner(self.ledger)
        proposals = await tuner.propose(self._registry)
        if apply and proposals:
            self.retune(await tuner.apply(self._registry, proposals))
        return proposals

    async def process(
        self,
        request: Request | str,
        context: Mapping[str, str] | None = None,
        *,
        force: bool = False,
        category: TaskCategory | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineResult:
        """Route, generate and gate one request.

        Args:
            request: A Request, or plain text combined with ``context``
            context: Named context blobs when ``request`` is plain text
            force: Delegate even when the policy would answer directly
            category: Override the classified category
            cancel_event: Set to cancel at the next phase boundary

        Returns:
            PipelineResult with the verdict, final artifact and issue list

        Raises:
            RequestCancelled: ``cancel_event`` was set mid-request

        """
        if isinstance(request, str):
            request = Request(text=request, context=dict(context or {}))
        registry = self._registry

        decision = self.policy.decide(request.text, request.context)
        if category is not None and category is not decision.category:
            decision = DelegationDecision(
                should_delegate=decision.should_delegate,
                category=category,
                estimated_cost=decision.estimated_cost,
                triggered_factors=decision.triggered_factors,
                matches=decision.matches,
                reasoning=f"{decision.reasoning} | category overridden to {category.value}",
            )

        if not (decision.should_delegate or force):
            logger.info("Request %s handled directly: %s", request.request_id, decision.reasoning)
            return PipelineResult(
                final_artifact=None,
                verdict=Verdict.DIRECT,
                aggregate_score=0.0,
                issues=[],
                attempt_count=0,
                decision=decision,
                request_id=request.request_id,
                registry_version=registry.version,
            )

        prompt = render_prompt(
            decision.category,
            request.text,
            context=request.context,
            registry=registry,
            json_output=self.output_mode is OutputMode.JSON,
        )
        coordinator = RetryCoordinator(
            self.worker,
            registry=registry,
            ledger=self.ledger,
            max_retries=self.max_retries,
            timeout=self.timeout,
            auto_enhance=self.auto_enhance,
            output_mode=self.output_mode,
        )
        outcome = await coordinator.run(
            prompt.text,
            decision.category,
            request.validation_context(),
            request_id=request.request_id,
            estimated_cost=decision.estimated_cost,
            cancel_event=cancel_event,
        )

        final = outcome.final
        if outcome.succeeded:
            verdict = Verdict.PASS if final.disposition is Disposition.PASS else Verdict.ENHANCE
            result = PipelineResult(
                final_artifact=final.artifact,
                verdict=verdict,
                aggregate_score=final.aggregate,
                issues=final.issues,
                attempt_count=len(outcome.attempts),
                decision=decision,
                attempts=outcome.attempts,
                request_id=request.request_id,
                registry_version=registry.version,
            )
        else:
            result = PipelineResult(
                final_artifact=None,
                verdict=Verdict.FAILED,
                aggregate_score=final.aggregate,
                issues=outcome.issue_history,
                attempt_count=len(outcome.attempts),
                decision=decision,
                attempts=outcome.attempts,
                request_id=request.request_id,
                registry_version=registry.version,
            )
        logger.info(
            "Request %s: %s after %d attempt(s), score %.3f",
            request.request_id, result.verdict.value, result.attempt_count, result.aggregate_score,
        )
        return result
