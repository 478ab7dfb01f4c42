"""Worker that feeds transport commands into a workflow engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .contracts import COMMAND_TOPIC, WorkflowCommand
from .engine import WorkflowEngine
from .errors import PersistenceUnavailable, TerminalStateViolation, WorkflowAlreadyActive
from .transports import BaseTransport
from .utils.retry import schedule_retry

logger = logging.getLogger(__name__)


class WorkflowWorker:
    """Consume ``WorkflowCommand`` messages and apply them to an engine.

    Commands are acknowledged once the engine accepted or rejected them. A
    command that fails because the store is unavailable is handed back to
    the transport for redelivery. While consuming, the worker sweeps the
    repository every ``sweep_interval`` seconds and re-attaches drivers to
    workflows whose driver died or whose previous owner's claim ran out.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        transport: BaseTransport,
        topic: str = COMMAND_TOPIC,
        sweep_interval: float = 5.0,
    ) -> None:
        self._engine = engine
        self._transport = transport
        self._topic = topic
        self._sweep_interval = sweep_interval

    async def handle(self, command: WorkflowCommand) -> str:
        """Apply one command; duplicate deliveries are reported, not raised."""
        try:
            if command.kind == "start":
                return await self._engine.start(command.workflow_id, command.incident or "")
            if command.kind == "resume":
                resumed = await self._engine.resume(command.workflow_id)
                return "resumed" if resumed else "noop"
            return await self._engine.repeat(
                command.workflow_id, command.message or "", command.times
            )
        except (WorkflowAlreadyActive, TerminalStateViolation) as e:
            logger.warning(f"Rejected {command.kind} command {command.command_id}: {e}")
            return "rejected"

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Resume unfinished workflows, then process commands until ``lifespan`` ends.

        Commands a previous worker received but never acknowledged are put
        back on the queue first.
        """
        requeued = await self._transport.recover(self._topic)
        if requeued:
            logger.warning(f"Requeued {requeued} unacknowledged commands on {self._topic}")
        resumed = await self._engine.resume_all()
        if resumed:
            logger.info(f"Resumed {len(resumed)} unfinished workflows: {resumed}")

        sweeper = asyncio.create_task(self._sweep(), name="triageflow:sweep")
        try:
            async for raw_message, command in self._transport.subscribe(
                self._topic, lifespan=lifespan
            ):
                try:
                    outcome = await self.handle(command)
                except PersistenceUnavailable as e:
                    logger.error(f"Store unavailable for command {command.command_id}: {e}")
                    await self._transport.nack(raw_message, requeue=True)
                    await schedule_retry(1)
                    continue
                await self._transport.ack(raw_message)
                logger.info(
                    f"Handled {command.kind} for workflow {command.workflow_id}: {outcome}"
                )
        finally:
            sweeper.cancel()
            await asyncio.gather(sweeper, return_exceptions=True)

    async def _sweep(self) -> None:
        """Periodically resume active workflows that have no live driver."""
        settings = self._engine.settings
        failures = 0
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                resumed = await self._engine.resume_all()
            except PersistenceUnavailable as e:
                failures += 1
                logger.error(f"Sweep failed, store unavailable (attempt {failures}): {e}")
                await schedule_retry(
                    failures, base=settings.retry_backoff_base, jitter=settings.retry_jitter
                )
                continue
            failures = 0
            if resumed:
                logger.debug(f"Sweep found {len(resumed)} resumable workflows: {resumed}")
