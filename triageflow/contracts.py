"""Command envelope delivered to workflow workers over a transport."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

COMMAND_TOPIC = "commands"


class WorkflowCommand(BaseModel):
    """A request for the engine, delivered at least once.

    Workers must tolerate duplicates: a repeated ``start`` is rejected by the
    engine and a repeated ``resume`` reuses the running driver.
    """

    command_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: Literal["start", "resume", "repeat"]
    workflow_id: str
    incident: Optional[str] = None
    message: Optional[str] = None
    times: int = 1
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def start(cls, workflow_id: str, incident: str) -> "WorkflowCommand":
        return cls(kind="start", workflow_id=workflow_id, incident=incident)

    @classmethod
    def resume(cls, workflow_id: str) -> "WorkflowCommand":
        return cls(kind="resume", workflow_id=workflow_id)

    @classmethod
    def repeat(cls, workflow_id: str, message: str, times: int) -> "WorkflowCommand":
        return cls(kind="repeat", workflow_id=workflow_id, message=message, times=times)

    def to_json(self) -> str:
        """Serialize command to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowCommand":
        """Deserialize command from JSON."""
        return cls.model_validate_json(data)
