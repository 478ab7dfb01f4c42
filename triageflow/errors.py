"""Error taxonomy for the triage workflow engine."""

from __future__ import annotations


class TriageFlowError(Exception):
    """Base class for all triageflow errors."""


class StepExecutionError(TriageFlowError):
    """A step body raised or exceeded its timeout.

    Always handled by the step's recovery policy and never surfaced to the
    caller of ``start``.
    """

    def __init__(self, step: str, message: str, *, timed_out: bool = False) -> None:
        super().__init__(f"step {step} failed: {message}")
        self.step = step
        self.reason = message
        self.timed_out = timed_out


class RecoveryExhausted(TriageFlowError):
    """Retries are consumed and the failover cannot make further progress."""

    def __init__(self, step: str, attempts: int) -> None:
        super().__init__(f"recovery exhausted for step {step} after {attempts} attempts")
        self.step = step
        self.attempts = attempts


class TerminalStateViolation(TriageFlowError):
    """A command arrived for a workflow that already reached a terminal state."""

    def __init__(self, workflow_id: str, status: str) -> None:
        super().__init__(
            f"workflow {workflow_id} is already {status}; use a new workflow id"
        )
        self.workflow_id = workflow_id
        self.status = status


class WorkflowAlreadyActive(TriageFlowError):
    """``start`` was called for a workflow id that is still running."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"workflow {workflow_id} is already active")
        self.workflow_id = workflow_id


class PersistenceUnavailable(TriageFlowError):
    """The durable store could not accept a read or write."""


class StaleStateError(TriageFlowError):
    """A compare-and-swap write lost against a newer persisted version."""


class ParseError(TriageFlowError):
    """A stage output could not be decoded into its typed form."""


class UnknownStepError(TriageFlowError, KeyError):
    """A step identifier has no definition in the registry."""
