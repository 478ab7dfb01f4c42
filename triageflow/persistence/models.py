"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models import WorkflowState, WorkflowStatus
from ..steps import StepId


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowRecord(BaseModel):
    """Durable record for one workflow id.

    Holds the domain state plus the engine's bookkeeping: the step to run
    next, per-step attempt counters, the fencing ``version`` and the claim
    (``owner`` until ``lease_until``) of the engine currently driving it. The
    record is overwritten on every transition; ``version`` increases by one
    each time.
    """

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    state: WorkflowState
    current_step: Optional[StepId] = None
    attempts: Dict[str, int] = Field(default_factory=dict)
    last_error: Optional[str] = None
    paused: bool = False
    owner: Optional[str] = None
    lease_until: Optional[datetime] = None
    version: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def status(self) -> WorkflowStatus:
        return self.state.status

    @property
    def is_terminal(self) -> bool:
        return self.state.status.is_terminal

    def attempts_for(self, step: StepId) -> int:
        return self.attempts.get(step.value, 0)

    def claimed_by_other(self, engine_id: str, now: Optional[datetime] = None) -> bool:
        """True while an engine other than ``engine_id`` holds an unexpired claim."""
        if self.owner is None or self.owner == engine_id or self.lease_until is None:
            return False
        return self.lease_until > (now or _utcnow())

    def advance(self, **changes) -> "WorkflowRecord":
        """Return the successor record with ``version`` bumped."""
        changes.setdefault("updated_at", _utcnow())
        return self.model_copy(update={**changes, "version": self.version + 1})

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowRecord":
        return cls.model_validate_json(data)
