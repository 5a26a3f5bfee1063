"""Tests for worker adapters, the retry coordinator and the request pipeline."""

from __future__ import annotations

import asyncio
import sys

import pytest

from gatekeeper.engine import (
    Attempt,
    AttemptKind,
    CallableWorker,
    CommandWorker,
    GatePipeline,
    OutputMode,
    RetryCoordinator,
    Verdict,
    WorkerResponse,
    augment_prompt,
)
from gatekeeper.engine.worker import MAX_PROMPT_LENGTH, check_output, sanitize_prompt
from gatekeeper.errors import RequestCancelled
from gatekeeper.feedback import FeedbackLedger
from gatekeeper.routing.models import TaskCategory
from gatekeeper.validation import CriteriaRegistry, Disposition
from samples import GENERIC_ANSWER, GENERIC_REQUEST, SURVEY_REQUEST

pytestmark = pytest.mark.anyio

CTX = {"request": GENERIC_REQUEST, "as_of_year": 2026}


class ScriptedWorker:
    """Returns queued artifacts in order; records every prompt it sees."""

    def __init__(self, *outputs: str) -> None:
        self.outputs = list(outputs)
        self.prompts: list[str] = []

    async def __call__(self, prompt: str, output_mode: OutputMode) -> str:
        self.prompts.append(prompt)
        index = min(len(self.prompts), len(self.outputs)) - 1
        return self.outputs[index]

    @property
    def calls(self) -> int:
        return len(self.prompts)


@pytest.fixture
async def ledger():
    async with FeedbackLedger(":memory:") as ledger:
        yield ledger


# ═══════════════════════════════════════════════════════════════════════════
# WORKERS
# ═══════════════════════════════════════════════════════════════════════════


class TestWorkers:
    def test_sanitize_prompt(self):
        assert sanitize_prompt("hello\x00 world\n") == "hello world\n"
        with pytest.raises(ValueError, match="empty"):
            sanitize_prompt("   ")
        with pytest.raises(ValueError, match="maximum length"):
            sanitize_prompt("x" * (MAX_PROMPT_LENGTH + 1))

    def test_check_output(self):
        assert check_output("", OutputMode.TEXT) == "Worker returned empty output"
        assert check_output("plain", OutputMode.TEXT) is None
        assert check_output('{"a": 1}', OutputMode.JSON) is None
        assert "not valid JSON" in check_output("plain", OutputMode.JSON)

    async def test_callable_worker_success(self):
        worker = CallableWorker(ScriptedWorker("answer"))
        response = await worker.invoke("prompt", OutputMode.TEXT, timeout=1)
        assert response.success
        assert response.artifact == "answer"

    async def test_callable_worker_exception(self):
        async def boom(prompt, mode):
            raise RuntimeError("engine down")

        response = await CallableWorker(boom).invoke("prompt", OutputMode.TEXT, timeout=1)
        assert not response.success
        assert response.error_detail == "RuntimeError: engine down"

    async def test_callable_worker_timeout(self):
        async def slow(prompt, mode):
            await asyncio.sleep(5)
            return "late"

        response = await CallableWorker(slow).invoke("prompt", OutputMode.TEXT, timeout=0.05)
        assert response.timed_out
        assert not response.success

    def test_command_worker_requires_command(self):
        with pytest.raises(ValueError):
            CommandWorker([])

    async def test_command_worker_reads_stdin(self):
        worker = CommandWorker([sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"])
        response = await worker.invoke("hello", OutputMode.TEXT, timeout=10)
        assert response.success
        assert response.artifact.strip() == "HELLO"

    async def test_command_worker_nonzero_exit(self):
        worker = CommandWorker([sys.executable, "-c", "import sys; sys.exit(3)"])
        response = await worker.invoke("hello", OutputMode.TEXT, timeout=10)
        assert not response.success
        assert "code 3" in response.error_detail

    async def test_command_worker_json_flag(self):
        worker = CommandWorker(
            [sys.executable, "-c", "import sys; print(sys.argv[1:])"], json_flag=["--json"]
        )
        response = await worker.invoke("hello", OutputMode.JSON, timeout=10)
        # "['--json']" is not JSON
        assert not response.success
        assert "--json" in response.artifact


# ═══════════════════════════════════════════════════════════════════════════
# RETRY COORDINATOR
# ═══════════════════════════════════════════════════════════════════════════


class TestRetryCoordinator:
    async def test_pass_first_attempt(self, ledger):
        script = ScriptedWorker(GENERIC_ANSWER)
        coordinator = RetryCoordinator(CallableWorker(script), ledger=ledger)
        outcome = await coordinator.run("prompt", TaskCategory.GENERIC, CTX, request_id="r1")

        assert outcome.succeeded
        assert outcome.final.disposition is Disposition.PASS
        assert script.calls == 1
        entries = await ledger.entries()
        assert [(e.kind, e.disposition) for e in entries] == [("quality", "pass")]

    async def test_timeouts_then_pass(self, ledger):
        calls = 0

        async def flaky(prompt, mode):
            nonlocal calls
            calls += 1
            if calls < 3:
                await asyncio.sleep(5)
            return GENERIC_ANSWER

        coordinator = RetryCoordinator(
            CallableWorker(flaky), ledger=ledger, max_retries=2, timeout=0.05
        )
        outcome = await coordinator.run("prompt", TaskCategory.GENERIC, CTX, request_id="r2")

        assert calls == 3
        assert outcome.succeeded
        assert [a.kind for a in outcome.attempts] == [
            AttemptKind.WORKER_FAILURE,
            AttemptKind.WORKER_FAILURE,
            AttemptKind.QUALITY,
        ]
        entries = await ledger.entries()
        assert [e.kind for e in entries] == ["worker_failure", "worker_failure", "quality"]
        assert entries[0].issues == ("worker_timeout",)
        assert [e.attempt_index for e in entries] == [1, 2, 3]

    async def test_hung_worker_bounded_by_grace(self):
        class Hung:
            async def invoke(self, prompt, output_mode, timeout):
                await asyncio.sleep(30)
                return WorkerResponse("late", True)

        coordinator = RetryCoordinator(Hung(), max_retries=0, timeout=0.05)
        outcome = await coordinator.run("prompt", TaskCategory.GENERIC, CTX)
        assert not outcome.succeeded
        assert outcome.final.issues == ["worker_timeout"]

    async def test_timeout_flag_from_worker_response(self, ledger):
        class Expired:
            async def invoke(self, prompt, output_mode, timeout):
                return WorkerResponse(
                    artifact="", success=False, error_detail="deadline exceeded", timed_out=True
                )

        coordinator = RetryCoordinator(Expired(), ledger=ledger, max_retries=0)
        outcome = await coordinator.run("prompt", TaskCategory.GENERIC, CTX)
        assert outcome.final.timed_out
        assert outcome.final.issues == ["worker_timeout"]
        assert (await ledger.entries())[0].issues == ("worker_timeout",)

    def test_failure_kind_ignores_message_text(self):
        failure = Attempt(
            index=1,
            artifact="",
            validation=None,
            disposition=Disposition.REGENERATE,
            kind=AttemptKind.WORKER_FAILURE,
            error_detail="upstream said: request timed out",
        )
        assert failure.issues == ["worker_failure"]
        assert failure.to_dict()["timed_out"] is False

    async def test_invocations_bounded(self, ledger):
        script = ScriptedWorker("too short")
        coordinator = RetryCoordinator(CallableWorker(script), ledger=ledger, max_retries=2)
        outcome = await coordinator.run("prompt", TaskCategory.GENERIC, CTX)

        assert script.calls == 3
        assert not outcome.succeeded
        assert outcome.issue_history == [
            "attempt 1: empty_artifact",
            "attempt 2: empty_artifact",
            "attempt 3: empty_artifact",
        ]
        assert await ledger.count() == 3

    async def test_zero_retries(self):
        script = ScriptedWorker("too short")
        outcome = await RetryCoordinator(CallableWorker(script), max_retries=0).run(
            "prompt", TaskCategory.GENERIC, CTX
        )
        assert script.calls == 1
        assert len(outcome.attempts) == 1

    async def test_retry_prompt_carries_report(self):
        script = ScriptedWorker("too short", GENERIC_ANSWER)
        outcome = await RetryCoordinator(CallableWorker(script)).run(
            "ORIGINAL", TaskCategory.GENERIC, CTX
        )
        assert outcome.succeeded
        assert script.prompts[0] == "ORIGINAL"
        assert script.prompts[1].startswith("ORIGINAL\n\n---\n")
        assert "Aggregate score: 0.000" in script.prompts[1]

    async def test_enhance_then_pass(self, ledger, enhanceable_research_artifact):
        script = ScriptedWorker(enhanceable_research_artifact)
        coordinator = RetryCoordinator(CallableWorker(script), ledger=ledger)
        outcome = await coordinator.run(
            "prompt", TaskCategory.RESEARCH, {"request": SURVEY_REQUEST, "as_of_year": 2026}
        )

        final = outcome.final
        assert script.calls == 1
        assert final.enhanced
        assert final.disposition is Disposition.PASS
        assert "## References" in final.artifact
        entry = (await ledger.entries())[0]
        assert "has_references" in entry.issues
        assert entry.details["enhanced"] is True
        assert entry.aggregate_score == pytest.approx(0.952)
        assert final.placeholders == ("placeholder_inserted:has_references",)
        assert entry.details["residual"] == ["placeholder_inserted:has_references"]

    async def test_auto_enhance_disabled(self, ledger, enhanceable_research_artifact):
        script = ScriptedWorker(enhanceable_research_artifact)
        coordinator = RetryCoordinator(CallableWorker(script), ledger=ledger, auto_enhance=False)
        outcome = await coordinator.run(
            "prompt", TaskCategory.RESEARCH, {"request": SURVEY_REQUEST, "as_of_year": 2026}
        )
        assert outcome.final.disposition is Disposition.ENHANCE
        assert outcome.final.artifact == enhanceable_research_artifact
        assert not outcome.final.enhanced

    async def test_critical_failure_regenerates(self, research_artifact):
        fabricated = research_artifact.replace(
            "Benchmarks support the trend [4].",
            "Benchmarks support the trend [4] (Smith et al., 2091).",
        )
        script = ScriptedWorker(fabricated, research_artifact)
        outcome = await RetryCoordinator(CallableWorker(script)).run(
            "prompt", TaskCategory.RESEARCH, {"request": SURVEY_REQUEST, "as_of_year": 2026}
        )
        assert [a.disposition for a in outcome.attempts] == [
            Disposition.REGENERATE,
            Disposition.PASS,
        ]
        assert "fabricated_citation" in script.prompts[1]

    async def test_cancel_before_invoke(self, ledger):
        script = ScriptedWorker(GENERIC_ANSWER)
        event = asyncio.Event()
        event.set()
        coordinator = RetryCoordinator(CallableWorker(script), ledger=ledger)
        with pytest.raises(RequestCancelled):
            await coordinator.run("prompt", TaskCategory.GENERIC, CTX, cancel_event=event)
        assert script.calls == 0
        entries = await ledger.entries()
        assert [e.kind for e in entries] == ["cancelled"]

    async def test_cancel_during_invoke(self, ledger):
        event = asyncio.Event()

        async def cancelling(prompt, mode):
            event.set()
            return GENERIC_ANSWER

        coordinator = RetryCoordinator(CallableWorker(cancelling), ledger=ledger)
        with pytest.raises(RequestCancelled) as info:
            await coordinator.run(
                "prompt", TaskCategory.GENERIC, CTX, request_id="r9", cancel_event=event
            )
        assert info.value.attempt_index == 1
        entry = (await ledger.entries())[0]
        assert entry.kind == "cancelled"
        assert entry.request_id == "r9"

    def test_invalid_arguments(self):
        worker = CallableWorker(ScriptedWorker("x"))
        with pytest.raises(ValueError):
            RetryCoordinator(worker, max_retries=-1)
        with pytest.raises(ValueError):
            RetryCoordinator(worker, timeout=0)

    async def test_augment_prompt_for_worker_failure(self):
        async def boom(prompt, mode):
            raise RuntimeError("engine down")

        outcome = await RetryCoordinator(CallableWorker(boom), max_retries=0).run(
            "prompt", TaskCategory.GENERIC, CTX
        )
        augmented = augment_prompt("prompt", outcome.final)
        assert "engine down" in augmented
        assert outcome.final.issues == ["worker_failure"]


# ═══════════════════════════════════════════════════════════════════════════
# PIPELINE
# ═══════════════════════════════════════════════════════════════════════════


class TestGatePipeline:
    async def test_direct_when_not_delegated(self):
        script = ScriptedWorker(GENERIC_ANSWER)
        pipeline = GatePipeline(CallableWorker(script))
        result = await pipeline.process("What's the difference between BFS and DFS?")

        assert result.verdict is Verdict.DIRECT
        assert result.final_artifact is None
        assert result.attempt_count == 0
        assert script.calls == 0

    async def test_forced_generic_passes(self):
        script = ScriptedWorker(GENERIC_ANSWER)
        pipeline = GatePipeline(CallableWorker(script))
        result = await pipeline.process(GENERIC_REQUEST, force=True)

        assert result.verdict is Verdict.PASS
        assert result.final_artifact == GENERIC_ANSWER
        assert result.aggregate_score == pytest.approx(1.0)
        assert result.issues == []
        assert result.attempt_count == 1
        assert script.prompts[0].startswith("Task (generic):")

    async def test_research_enhanced_verdict(self, enhanceable_research_artifact):
        script = ScriptedWorker(enhanceable_research_artifact)
        pipeline = GatePipeline(CallableWorker(script), auto_enhance=False)
        result = await pipeline.process(SURVEY_REQUEST)

        assert result.decision.category is TaskCategory.RESEARCH
        assert result.verdict is Verdict.ENHANCE
        assert result.final_artifact == enhanceable_research_artifact
        assert "has_references" in result.issues
        assert "References" in script.prompts[0]

    async def test_failed_has_no_artifact(self, ledger):
        script = ScriptedWorker("too short")
        pipeline = GatePipeline(CallableWorker(script), ledger=ledger, max_retries=1)
        result = await pipeline.process(GENERIC_REQUEST, force=True)

        assert result.verdict is Verdict.FAILED
        assert result.final_artifact is None
        assert result.attempt_count == 2
        assert result.issues == ["attempt 1: empty_artifact", "attempt 2: empty_artifact"]
        entries = await ledger.entries()
        assert {e.request_id for e in entries} == {result.request_id}

    async def test_category_override(self):
        script = ScriptedWorker(GENERIC_ANSWER)
        pipeline = GatePipeline(CallableWorker(script))
        result = await pipeline.process(
            GENERIC_REQUEST, force=True, category=TaskCategory.REPORTING
        )
        assert result.decision.category is TaskCategory.REPORTING
        assert script.prompts[0].startswith("Task (reporting):")

    async def test_registry_snapshot_survives_retune(self):
        pipeline: GatePipeline

        async def retuning(prompt, mode):
            pipeline.retune(
                pipeline.registry.adjusted(TaskCategory.GENERIC, "min_length", 1.1)
            )
            return GENERIC_ANSWER

        pipeline = GatePipeline(CallableWorker(retuning))
        result = await pipeline.process(GENERIC_REQUEST, force=True)

        assert result.registry_version == 1
        assert result.attempts[0].validation.registry_version == 1
        assert pipeline.registry.version == 2

    async def test_tune_from_ledger(self, ledger, enhanceable_research_artifact):
        script = ScriptedWorker(enhanceable_research_artifact)
        pipeline = GatePipeline(CallableWorker(script), ledger=ledger)
        for _ in range(3):
            await pipeline.process(SURVEY_REQUEST)

        proposals = await pipeline.tune()
        names = {p.criterion for p in proposals}
        assert "has_references" in names
        assert pipeline.registry.version == CriteriaRegistry.default().version + len(proposals)
        adjustments = await ledger.entries(kinds=["weight_adjustment"])
        assert len(adjustments) == len(proposals)

        tuned = pipeline.registry
        assert await pipeline.tune() == []
        assert pipeline.registry is tuned

    async def test_tune_without_ledger(self):
        pipeline = GatePipeline(CallableWorker(ScriptedWorker("x")))
        assert await pipeline.tune() == []

    async def test_to_dict(self):
        pipeline = GatePipeline(CallableWorker(ScriptedWorker(GENERIC_ANSWER)))
        data = (await pipeline.process(GENERIC_REQUEST, force=True)).to_dict()
        assert data["verdict"] == "pass"
        assert data["attempts"][0]["disposition"] == "pass"
