"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict

from .models import WorkflowRecord
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow records in local memory.

    Useful for tests or when no database is configured. Records are kept as
    serialized JSON so readers never share objects with writers. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, str] = {}

    # ------------------------------------------------------------------
    async def create(self, record: WorkflowRecord) -> bool:
        if record.workflow_id in self._workflows:
            return False
        self._workflows[record.workflow_id] = record.to_json()
        return True

    async def get(self, workflow_id: str) -> WorkflowRecord | None:
        raw = self._workflows.get(workflow_id)
        return WorkflowRecord.from_json(raw) if raw is not None else None

    async def compare_and_set(
        self, record: WorkflowRecord, expected_version: int
    ) -> bool:
        raw = self._workflows.get(record.workflow_id)
        if raw is None:
            return False
        if WorkflowRecord.from_json(raw).version != expected_version:
            return False
        self._workflows[record.workflow_id] = record.to_json()
        return True

    async def list_workflows(self) -> list[WorkflowRecord]:
        return [WorkflowRecord.from_json(raw) for raw in self._workflows.values()]

    async def list_active(self) -> list[WorkflowRecord]:
        return [wf for wf in await self.list_workflows() if not wf.is_terminal]
