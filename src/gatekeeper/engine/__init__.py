"""Worker adapters, the bounded retry loop and the request pipeline."""

from .pipeline import GatePipeline, PipelineResult, Verdict
from .retry import Attempt, AttemptKind, RetryCoordinator, RetryOutcome, augment_prompt
from .worker import CallableWorker, CommandWorker, OutputMode, Worker, WorkerResponse

__all__ = [
    "Attempt",
    "AttemptKind",
    "CallableWorker",
    "CommandWorker",
    "GatePipeline",
    "OutputMode",
    "PipelineResult",
    "RetryCoordinator",
    "RetryOutcome",
    "Verdict",
    "Worker",
    "WorkerResponse",
    "augment_prompt",
]
