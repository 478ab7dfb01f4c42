"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Protocol

from .models import WorkflowRecord


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Backends are partitioned by workflow id and must make ``create`` and
    ``compare_and_set`` atomic per id. Any failure to reach the store is
    raised as ``PersistenceUnavailable``.
    """

    async def create(self, record: WorkflowRecord) -> bool:
        """Insert ``record`` unless the id exists. Return ``True`` if inserted."""

    async def get(self, workflow_id: str) -> WorkflowRecord | None:
        """Retrieve the latest record for ``workflow_id``."""

    async def compare_and_set(
        self, record: WorkflowRecord, expected_version: int
    ) -> bool:
        """Replace the stored record only if its version is ``expected_version``.

        Returns ``False`` when the stored record has moved on; the caller must
        discard its write and re-read.
        """

    async def list_workflows(self) -> list[WorkflowRecord]:
        """Return all persisted workflows."""

    async def list_active(self) -> list[WorkflowRecord]:
        """Return workflows that have not reached a terminal status."""
