"""Step identifiers, recovery policies and the step registry."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Iterable, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field

from .constants import DEFAULT_MAX_RETRIES, DEFAULT_STEP_TIMEOUT
from .errors import RecoveryExhausted, UnknownStepError
from .models import WorkflowState

if TYPE_CHECKING:
    from .agents import AgentInvoker


class StepId(str, Enum):
    """Closed set of steps the triage pipeline knows about, in pipeline order."""

    CLASSIFY = "classify"
    GATHER_EVIDENCE = "gather_evidence"
    TRIAGE = "triage"
    QUERY_KNOWLEDGE_BASE = "query_knowledge_base"
    REMEDIATE = "remediate"
    SUMMARIZE = "summarize"
    FINALIZE = "finalize"
    INTERRUPT = "interrupt"

    @property
    def position(self) -> int:
        return list(StepId).index(self)


class RecoveryPolicy(BaseModel):
    """Retry a failing step up to ``max_retries`` times, then fail over."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    failover_step: StepId = StepId.INTERRUPT

    def next_step(self, failing: StepId, attempts: int) -> StepId:
        """Return the step to run after ``failing`` has failed ``attempts`` times.

        Raises:
            RecoveryExhausted: If retries are used up and the failover target
                is the failing step itself, so no further progress is possible.
        """
        if attempts <= self.max_retries:
            return failing
        if self.failover_step == failing:
            raise RecoveryExhausted(failing.value, attempts)
        return self.failover_step


@dataclass(frozen=True)
class StepOutcome:
    """Result of running a step body: the new state and where to go next.

    ``next_step`` is ``None`` when the step ends the workflow.
    """

    state: WorkflowState
    next_step: Optional[StepId]


StepHandler = Callable[[WorkflowState, "AgentInvoker"], Awaitable[StepOutcome]]


@dataclass(frozen=True)
class StepDefinition:
    """A named unit of work in the pipeline."""

    step_id: StepId
    handler: StepHandler
    recovery: Optional[RecoveryPolicy] = None
    timeout: Optional[float] = None
    terminal: bool = False


class StepRegistry:
    """Fixed table mapping each ``StepId`` to its definition.

    Per-step recovery and timeout overrides fall back to the registry-wide
    defaults.
    """

    def __init__(
        self,
        definitions: Iterable[StepDefinition],
        *,
        first_step: StepId = StepId.CLASSIFY,
        default_recovery: Optional[RecoveryPolicy] = None,
        default_timeout: float = DEFAULT_STEP_TIMEOUT,
    ) -> None:
        self._table: Dict[StepId, StepDefinition] = {}
        for definition in definitions:
            if definition.step_id in self._table:
                raise ValueError(f"step {definition.step_id.value} defined twice")
            self._table[definition.step_id] = definition

        self.first_step = first_step
        self.default_recovery = default_recovery or RecoveryPolicy()
        self.default_timeout = default_timeout

        if first_step not in self._table:
            raise UnknownStepError(first_step.value)
        for step_id in self._table:
            failover = self.recovery_for(step_id).failover_step
            if failover not in self._table:
                raise UnknownStepError(
                    f"{step_id.value} fails over to undefined step {failover.value}"
                )

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._table

    def __iter__(self) -> Iterator[StepDefinition]:
        return iter(sorted(self._table.values(), key=lambda d: d.step_id.position))

    def __len__(self) -> int:
        return len(self._table)

    def resolve(self, step_id: StepId) -> StepDefinition:
        try:
            return self._table[step_id]
        except KeyError:
            raise UnknownStepError(step_id) from None

    def recovery_for(self, step_id: StepId) -> RecoveryPolicy:
        return self.resolve(step_id).recovery or self.default_recovery

    def timeout_for(self, step_id: StepId) -> float:
        timeout = self.resolve(step_id).timeout
        return self.default_timeout if timeout is None else timeout

    def is_terminal(self, step_id: StepId) -> bool:
        return self.resolve(step_id).terminal

    def allows_transition(self, current: StepId, target: StepId) -> bool:
        """Transitions only move forward along the pipeline or into a terminal step."""
        if target not in self._table:
            return False
        if self.is_terminal(target):
            return True
        return target.position > current.position
