"""Error taxonomy for the routing and quality-gate engine."""

from __future__ import annotations


class GatekeeperError(Exception):
    """Base class for all gatekeeper errors."""


class ConfigurationError(GatekeeperError, ValueError):
    """Malformed criteria weights, thresholds or settings. Fatal at load time."""


class WorkerExecutionFailure(GatekeeperError):
    """The worker collaborator failed, timed out or returned nothing."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


class RequestCancelled(GatekeeperError):
    """A request was cancelled by its caller at a phase boundary."""

    def __init__(self, request_id: str, attempt_index: int) -> None:
        super().__init__(f"Request {request_id} cancelled during attempt {attempt_index}")
        self.request_id = request_id
        self.attempt_index = attempt_index
