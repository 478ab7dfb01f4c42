"""Durable step-orchestration engine for triage workflows."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .agents import AgentInvoker
from .config import EngineSettings
from .constants import DEMO_NOTE, SESSION_STARTED_MESSAGE
from .errors import (
    RecoveryExhausted,
    StaleStateError,
    StepExecutionError,
    TerminalStateViolation,
    WorkflowAlreadyActive,
)
from .models import ConversationEntry, StateView, WorkflowState, WorkflowStatus
from .persistence import WorkflowRecord, WorkflowRepository, get_repository
from .pipeline import build_triage_registry
from .steps import StepDefinition, StepId, StepOutcome, StepRegistry
from .utils.retry import schedule_retry

logger = logging.getLogger(__name__)


def _clock() -> str:
    return datetime.now().time().isoformat(timespec="seconds")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowEngine:
    """Run triage workflows one step at a time, persisting every transition.

    Each workflow id has at most one driver task per engine. The driver
    loads the persisted record, runs the current step under its timeout and
    commits the outcome with a compare-and-swap on the record version, so a
    write based on an outdated read is discarded and the driver re-reads.
    Several engines may share one repository. A driver claims its workflow
    (``owner``/``lease_until`` on the record) before running a step and
    renews the claim with every commit, so only one engine runs steps of a
    given workflow while its claim is valid; the version fence keeps the
    transitions of each workflow totally ordered.
    """

    def __init__(
        self,
        agents: AgentInvoker,
        repository: WorkflowRepository | None = None,
        registry: StepRegistry | None = None,
        settings: EngineSettings | None = None,
        engine_id: str | None = None,
    ) -> None:
        self.engine_id = engine_id or uuid.uuid4().hex
        self._settings = settings or EngineSettings()
        self._agents = agents
        self._repository = repository or get_repository()
        self._registry = registry or build_triage_registry(self._settings)
        self._drivers: Dict[str, asyncio.Task] = {}

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    @property
    def registry(self) -> StepRegistry:
        return self._registry

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Commands
    async def start(self, workflow_id: str, incident: str) -> str:
        """Create a workflow and schedule its first step.

        Returns as soon as the initial state is durable; the pipeline runs in
        the background and its progress is observed through ``get_state``.

        Raises:
            WorkflowAlreadyActive: If ``workflow_id`` is still running.
            TerminalStateViolation: If ``workflow_id`` already finished.
        """
        existing = await self._repository.get(workflow_id)
        if existing is not None:
            self._reject_existing(existing)

        state = (
            WorkflowState.empty(workflow_id)
            .add_conversation("system", SESSION_STARTED_MESSAGE)
            .add_conversation("user", incident)
            .with_incident(incident)
            .with_status(WorkflowStatus.PREPARED)
        )
        record = WorkflowRecord(
            workflow_id=workflow_id,
            state=state,
            current_step=self._registry.first_step,
            **self._claim(self._registry.first_step),
        )
        if not await self._repository.create(record):
            # another start for the same id won the insert
            raced = await self._repository.get(workflow_id)
            if raced is not None:
                self._reject_existing(raced)
            raise WorkflowAlreadyActive(workflow_id)

        logger.info(f"Starting triage workflow {workflow_id}: {incident[:100]}")
        self._spawn(workflow_id)
        return "started"

    async def repeat(self, workflow_id: str, message: str, times: int) -> str:
        """Append demo notes to the conversation and pause the workflow.

        The pipeline does not advance until ``resume`` is called.
        """
        count = min(self._settings.max_repeat, max(times, 1))
        text = message if message and message.strip() else DEMO_NOTE

        await self._stop_driver(workflow_id)
        while True:
            record = await self._repository.get(workflow_id)
            if record is None:
                return "no-state"
            if record.is_terminal:
                raise TerminalStateViolation(workflow_id, record.status.value)

            state = record.state
            for i in range(1, count + 1):
                state = state.add_conversation("system", f"[DEMO] {text} ({i}/{count})")
            try:
                await self._commit(
                    record, record.advance(state=state, paused=True, **self._claim(None))
                )
            except StaleStateError:
                continue
            logger.info(f"Workflow {workflow_id} paused after {count} demo notes")
            return "ok"

    async def resume(self, workflow_id: str, unpause: bool = True) -> bool:
        """Re-attach a driver to a persisted, non-terminal workflow.

        Safe to call repeatedly: an already running driver is reused. Returns
        ``False`` when there is nothing to resume, when another engine holds
        a valid claim on the workflow, or when it is paused and ``unpause``
        is false.
        """
        while True:
            record = await self._repository.get(workflow_id)
            if record is None or record.is_terminal:
                return False
            if record.claimed_by_other(self.engine_id):
                logger.info(
                    f"Workflow {workflow_id} is claimed by engine {record.owner} "
                    f"until {record.lease_until.isoformat()}"
                )
                return False
            if not record.paused:
                break
            if not unpause:
                return False
            try:
                await self._commit(record, record.advance(paused=False))
            except StaleStateError:
                continue
            break

        if self.is_running(workflow_id):
            return True
        logger.info(f"Resuming workflow {workflow_id} at step {record.current_step.value}")
        self._spawn(workflow_id)
        return True

    async def resume_all(self) -> List[str]:
        """Resume every active workflow that is neither paused nor claimed elsewhere."""
        resumed = []
        for record in await self._repository.list_active():
            if record.paused:
                continue
            if await self.resume(record.workflow_id, unpause=False):
                resumed.append(record.workflow_id)
        return resumed

    # ------------------------------------------------------------------
    # Queries
    async def get_state(self, workflow_id: str) -> StateView:
        """Return the latest persisted snapshot, or the EMPTY view if unknown."""
        record = await self._repository.get(workflow_id)
        if record is None:
            return StateView.empty()
        return self._view(record)

    async def get_conversations(self, workflow_id: str) -> List[ConversationEntry]:
        """Return every conversation entry except the bootstrap system entry."""
        record = await self._repository.get(workflow_id)
        if record is None:
            return []
        return list(record.state.conversation[1:])

    async def list_workflows(self) -> List[StateView]:
        return [self._view(r) for r in await self._repository.list_workflows()]

    def is_running(self, workflow_id: str) -> bool:
        task = self._drivers.get(workflow_id)
        return task is not None and not task.done()

    async def wait(self, workflow_id: str, timeout: Optional[float] = None) -> StateView:
        """Wait for this engine's driver of ``workflow_id`` to stop.

        Re-raises the driver's failure, e.g. ``PersistenceUnavailable``.
        """
        task = self._drivers.get(workflow_id)
        if task is not None:
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                raise asyncio.TimeoutError(
                    f"workflow {workflow_id} still running after {timeout}s"
                )
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        return await self.get_state(workflow_id)

    async def shutdown(self) -> None:
        """Stop all drivers and give up their claims; steps stay where they are."""
        for workflow_id in list(self._drivers):
            await self._stop_driver(workflow_id)
            await self._release(workflow_id)

    # ------------------------------------------------------------------
    # Driver loop
    def _spawn(self, workflow_id: str) -> asyncio.Task:
        existing = self._drivers.get(workflow_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(
            self._drive(workflow_id), name=f"triageflow:{workflow_id}"
        )
        task.add_done_callback(lambda t: self._on_driver_done(workflow_id, t))
        self._drivers[workflow_id] = task
        return task

    async def _stop_driver(self, workflow_id: str) -> None:
        task = self._drivers.get(workflow_id)
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait({task})

    def _on_driver_done(self, workflow_id: str, task: asyncio.Task) -> None:
        if self._drivers.get(workflow_id) is task:
            del self._drivers[workflow_id]
        if task.cancelled():
            logger.info(f"Driver for workflow {workflow_id} stopped")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Driver for workflow {workflow_id} failed: {exc!r}")

    async def _drive(self, workflow_id: str) -> None:
        while True:
            record = await self._repository.get(workflow_id)
            if record is None:
                logger.warning(f"Workflow {workflow_id} vanished from the repository")
                return
            if record.is_terminal or record.current_step is None:
                logger.info(f"Workflow {workflow_id} finished with status {record.status.value}")
                self._agents.end_session(workflow_id)
                return
            if record.paused:
                logger.info(f"Workflow {workflow_id} is paused at {record.current_step.value}")
                return
            if record.claimed_by_other(self.engine_id):
                logger.info(f"Workflow {workflow_id} is driven by engine {record.owner}")
                return
            try:
                record = await self._renew_claim(record)
                await self._run_step(record)
            except StaleStateError as exc:
                logger.warning(f"Discarded stale write for workflow {workflow_id}: {exc}")

    async def _run_step(self, record: WorkflowRecord) -> None:
        step_id = record.current_step
        definition = self._registry.resolve(step_id)
        timeout = self._registry.timeout_for(step_id)
        logger.info(
            f"[{record.workflow_id}] running step {step_id.value} "
            f"(attempt {record.attempts_for(step_id) + 1}, timeout {timeout}s)"
        )
        try:
            outcome = await self._invoke(definition, record.state, timeout)
            self._check_outcome(record, definition, outcome)
        except StepExecutionError as exc:
            await self._recover(record, step_id, exc)
            return

        await self._commit(
            record,
            record.advance(
                state=outcome.state,
                current_step=outcome.next_step,
                last_error=None,
                **self._claim(outcome.next_step),
            ),
        )
        next_name = outcome.next_step.value if outcome.next_step else "end"
        logger.info(f"[{record.workflow_id}] step {step_id.value} completed -> {next_name}")

    async def _invoke(
        self, definition: StepDefinition, state: WorkflowState, timeout: float
    ) -> StepOutcome:
        step = definition.step_id.value
        task = asyncio.create_task(definition.handler(state, self._agents))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not done:
            # stop waiting; whatever the call returns later is dropped
            task.cancel()
            task.add_done_callback(lambda t: self._discard_late(state.workflow_id, step, t))
            raise StepExecutionError(step, f"timed out after {timeout}s", timed_out=True)

        if task.cancelled():
            raise StepExecutionError(step, "step body was cancelled")
        exc = task.exception()
        if exc is not None:
            if isinstance(exc, StepExecutionError):
                raise exc
            raise StepExecutionError(step, f"{type(exc).__name__}: {exc}") from exc
        return task.result()

    def _discard_late(self, workflow_id: str, step: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        if task.exception() is None:
            logger.warning(f"[{workflow_id}] late result of abandoned step {step} discarded")

    def _check_outcome(
        self, record: WorkflowRecord, definition: StepDefinition, outcome: StepOutcome
    ) -> None:
        step = definition.step_id.value
        before, after = record.state, outcome.state
        if after.workflow_id != before.workflow_id:
            raise StepExecutionError(step, "returned state for a different workflow")
        if after.conversation[: len(before.conversation)] != before.conversation:
            raise StepExecutionError(step, "rewrote earlier conversation entries")
        if after.status != before.status and not before.status.can_advance_to(after.status):
            raise StepExecutionError(
                step, f"status cannot move from {before.status.value} to {after.status.value}"
            )
        if definition.terminal:
            if outcome.next_step is not None or not after.status.is_terminal:
                raise StepExecutionError(step, "terminal step must end the workflow")
            return
        if outcome.next_step is None or after.status.is_terminal:
            raise StepExecutionError(step, "only terminal steps may end the workflow")
        if not self._registry.allows_transition(definition.step_id, outcome.next_step):
            raise StepExecutionError(
                step, f"transition to {outcome.next_step.value} is not allowed"
            )

    async def _recover(
        self, record: WorkflowRecord, step_id: StepId, error: StepExecutionError
    ) -> None:
        attempts = record.attempts_for(step_id) + 1
        counters = {**record.attempts, step_id.value: attempts}
        policy = self._registry.recovery_for(step_id)
        logger.warning(
            f"[{record.workflow_id}] step {step_id.value} failed "
            f"(attempt {attempts}/{policy.max_retries + 1}): {error.reason}"
        )

        try:
            target = policy.next_step(step_id, attempts)
        except RecoveryExhausted as exhausted:
            await self._abort(record, counters, exhausted, error)
            return

        if target == step_id:
            await self._commit(
                record,
                record.advance(
                    attempts=counters, last_error=str(error), **self._claim(step_id)
                ),
            )
            await schedule_retry(
                attempts,
                base=self._settings.retry_backoff_base,
                jitter=self._settings.retry_jitter,
            )
            return

        note = (
            f"[{_clock()}] Step {step_id.value} failed after {attempts} attempt(s): "
            f"{error.reason}. Failing over to {target.value}"
        )
        logger.warning(f"[{record.workflow_id}] failing over from {step_id.value} to {target.value}")
        await self._commit(
            record,
            record.advance(
                state=record.state.add_conversation("system", note),
                current_step=target,
                attempts=counters,
                last_error=str(error),
                **self._claim(target),
            ),
        )

    async def _abort(
        self,
        record: WorkflowRecord,
        counters: Dict[str, int],
        exhausted: RecoveryExhausted,
        error: StepExecutionError,
    ) -> None:
        logger.error(f"[{record.workflow_id}] {exhausted}; interrupting workflow")
        note = f"[{_clock()}] Workflow interrupted: {exhausted} ({error.reason})"
        state = record.state.add_conversation("system", note).with_status(
            WorkflowStatus.INTERRUPTED
        )
        await self._commit(
            record,
            record.advance(
                state=state,
                current_step=None,
                attempts=counters,
                last_error=str(error),
                **self._claim(None),
            ),
        )

    def _claim(self, step_id: Optional[StepId]) -> Dict[str, Any]:
        """Claim fields for a record whose next step is ``step_id``.

        The lease covers the step's whole timeout plus the configured grace;
        ``None`` releases the workflow.
        """
        if step_id is None:
            return {"owner": None, "lease_until": None}
        lease = self._registry.timeout_for(step_id) + self._settings.lease_grace
        return {
            "owner": self.engine_id,
            "lease_until": _utcnow() + timedelta(seconds=lease),
        }

    async def _renew_claim(self, record: WorkflowRecord) -> WorkflowRecord:
        timeout = timedelta(seconds=self._registry.timeout_for(record.current_step))
        if (
            record.owner == self.engine_id
            and record.lease_until is not None
            and record.lease_until - _utcnow() >= timeout
        ):
            return record
        claimed = record.advance(**self._claim(record.current_step))
        await self._commit(record, claimed)
        logger.debug(f"[{record.workflow_id}] claimed until {claimed.lease_until.isoformat()}")
        return claimed

    async def _release(self, workflow_id: str) -> None:
        record = await self._repository.get(workflow_id)
        if record is None or record.owner != self.engine_id:
            return
        try:
            await self._commit(record, record.advance(**self._claim(None)))
        except StaleStateError as exc:
            logger.info(f"Claim on workflow {workflow_id} already changed hands: {exc}")

    async def _commit(self, expected: WorkflowRecord, record: WorkflowRecord) -> None:
        if not await self._repository.compare_and_set(record, expected.version):
            raise StaleStateError(
                f"workflow {expected.workflow_id} moved past version {expected.version}"
            )

    # ------------------------------------------------------------------
    @staticmethod
    def _reject_existing(record: WorkflowRecord) -> None:
        if record.is_terminal:
            raise TerminalStateViolation(record.workflow_id, record.status.value)
        raise WorkflowAlreadyActive(record.workflow_id)

    @staticmethod
    def _view(record: WorkflowRecord) -> StateView:
        return StateView.from_state(
            record.state,
            current_step=record.current_step.value if record.current_step else None,
            attempts=record.attempts,
        )
