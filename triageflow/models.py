"""Workflow state documents and typed views over stage outputs."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .constants import MEMORY_MODE
from .errors import ParseError

Role = Literal["system", "user", "assistant"]
Severity = Literal["P1", "P2", "P3", "P4"]


class WorkflowStatus(str, Enum):
    """Lifecycle of a triage workflow instance, in pipeline order."""

    INITIATED = "INITIATED"
    PREPARED = "PREPARED"
    CLASSIFIED = "CLASSIFIED"
    EVIDENCE_COLLECTED = "EVIDENCE_COLLECTED"
    TRIAGED = "TRIAGED"
    KNOWLEDGE_BASE_SEARCHED = "KNOWLEDGE_BASE_SEARCHED"
    REMEDIATION_PROPOSED = "REMEDIATION_PROPOSED"
    SUMMARY_READY = "SUMMARY_READY"
    COMPLETED = "COMPLETED"
    INTERRUPTED = "INTERRUPTED"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.INTERRUPTED)

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def can_advance_to(self, other: "WorkflowStatus") -> bool:
        """Return ``True`` if moving from this status to ``other`` is allowed."""
        if self.is_terminal:
            return False
        if other.is_terminal:
            return True
        return other.rank >= self.rank


_STATUS_ORDER: List[WorkflowStatus] = list(WorkflowStatus)


class ConversationEntry(BaseModel):
    """One entry of the append-only workflow conversation."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class WorkflowState(BaseModel):
    """Versioned state document for one triage workflow instance.

    Instances are immutable: every ``with_*`` helper returns a new state and
    leaves all fields it does not name untouched.
    """

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    status: WorkflowStatus = WorkflowStatus.INITIATED
    incident: Optional[str] = None
    classification_json: Optional[str] = None
    evidence_logs: Optional[str] = None
    evidence_metrics: Optional[str] = None
    triage_text: Optional[str] = None
    knowledge_base_result: Optional[str] = None
    remediation_text: Optional[str] = None
    summary_text: Optional[str] = None
    conversation: Tuple[ConversationEntry, ...] = ()

    @classmethod
    def empty(cls, workflow_id: str) -> "WorkflowState":
        return cls(workflow_id=workflow_id)

    def _with(self, **changes: Any) -> "WorkflowState":
        return self.model_copy(update=changes)

    def with_status(self, status: WorkflowStatus) -> "WorkflowState":
        return self._with(status=status)

    def with_incident(self, incident: str) -> "WorkflowState":
        if self.incident is not None and self.incident != incident:
            raise ValueError("incident is set once per workflow")
        return self._with(incident=incident)

    def with_classification(self, classification_json: Optional[str]) -> "WorkflowState":
        return self._with(classification_json=classification_json)

    def with_evidence(
        self, logs: Optional[str], metrics: Optional[str]
    ) -> "WorkflowState":
        return self._with(evidence_logs=logs, evidence_metrics=metrics)

    def with_triage(self, text: Optional[str]) -> "WorkflowState":
        return self._with(triage_text=text)

    def with_knowledge_base_result(self, result: Optional[str]) -> "WorkflowState":
        return self._with(knowledge_base_result=result)

    def with_remediation(self, text: Optional[str]) -> "WorkflowState":
        return self._with(remediation_text=text)

    def with_summary(self, text: Optional[str]) -> "WorkflowState":
        return self._with(summary_text=text)

    def add_conversation(self, role: Role, content: str) -> "WorkflowState":
        entry = ConversationEntry(role=role, content=content)
        return self._with(conversation=self.conversation + (entry,))

    def approx_chars(self) -> int:
        """Rough size of the state in characters, used for memory visibility."""
        total = 0
        for value in (
            self.incident,
            self.classification_json,
            self.evidence_logs,
            self.evidence_metrics,
            self.triage_text,
            self.knowledge_base_result,
            self.remediation_text,
            self.summary_text,
        ):
            if value:
                total += len(value)
        for entry in self.conversation:
            total += len(entry.role) + len(entry.content)
        return total


class StateView(BaseModel):
    """Read-only snapshot returned by ``WorkflowEngine.get_state``."""

    status: str
    workflow_id: Optional[str] = None
    incident: Optional[str] = None
    classification_json: Optional[str] = None
    evidence_logs: Optional[str] = None
    evidence_metrics: Optional[str] = None
    triage_text: Optional[str] = None
    knowledge_base_result: Optional[str] = None
    remediation_text: Optional[str] = None
    summary_text: Optional[str] = None
    agent_session_id: Optional[str] = None
    current_step: Optional[str] = None
    attempts: Dict[str, int] = Field(default_factory=dict)
    context_entries: int = 0
    approx_state_chars: int = 0
    memory_mode: str = MEMORY_MODE

    EMPTY_STATUS: ClassVar[str] = "EMPTY"

    @classmethod
    def empty(cls) -> "StateView":
        return cls(status=cls.EMPTY_STATUS)

    @property
    def is_empty(self) -> bool:
        return self.status == self.EMPTY_STATUS

    @classmethod
    def from_state(
        cls,
        state: WorkflowState,
        current_step: Optional[str] = None,
        attempts: Optional[Dict[str, int]] = None,
    ) -> "StateView":
        return cls(
            status=state.status.value,
            workflow_id=state.workflow_id,
            incident=state.incident,
            classification_json=state.classification_json,
            evidence_logs=state.evidence_logs,
            evidence_metrics=state.evidence_metrics,
            triage_text=state.triage_text,
            knowledge_base_result=state.knowledge_base_result,
            remediation_text=state.remediation_text,
            summary_text=state.summary_text,
            agent_session_id=state.workflow_id,
            current_step=current_step,
            attempts=dict(attempts or {}),
            context_entries=len(state.conversation),
            approx_state_chars=state.approx_chars(),
        )


def _load_json_object(raw: Optional[str], what: str) -> dict:
    if raw is None or not raw.strip():
        raise ParseError(f"{what} output is empty")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ParseError(f"{what} output is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ParseError(f"{what} output must be a JSON object")
    return data


class Classification(BaseModel):
    """Typed view of the classifier agent's JSON output."""

    model_config = ConfigDict(extra="ignore")

    service: str = "unknown"
    severity: Severity = "P3"
    domain: Optional[str] = None
    rationale: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _unwrap_nested(cls, data: Any) -> Any:
        # {"classification": {"service": ..., "severity": ...}} is accepted too
        if isinstance(data, dict) and isinstance(data.get("classification"), dict):
            return {**data, **data["classification"]}
        return data

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @classmethod
    def parse(cls, raw: Optional[str]) -> "Classification":
        """Decode classifier output, raising ``ParseError`` when malformed."""
        data = _load_json_object(raw, "classification")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ParseError(
                f"classification output failed validation: {exc.error_count()} error(s)"
            ) from exc

    @property
    def metrics_expr(self) -> str:
        return "errors:rate1m" if self.severity == "P1" else "errors:rate5m"

    @property
    def time_range(self) -> str:
        return "30m" if self.severity == "P1" else "1h"


class EvidenceReport(BaseModel):
    """Typed view of the evidence agent's output."""

    model_config = ConfigDict(extra="ignore")

    logs: Optional[str] = None
    metrics: Optional[str] = None
    key_findings: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _lift_findings(cls, data: Any) -> Any:
        if isinstance(data, dict) and "key_findings" not in data:
            analysis = data.get("analysis")
            if isinstance(analysis, dict) and "key_findings" in analysis:
                return {**data, "key_findings": analysis["key_findings"]}
        return data

    @field_validator("logs", "metrics", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value)

    @classmethod
    def parse(cls, raw: Optional[str]) -> "EvidenceReport":
        """Decode evidence output, raising ``ParseError`` when malformed."""
        data = _load_json_object(raw, "evidence")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ParseError(
                f"evidence output failed validation: {exc.error_count()} error(s)"
            ) from exc

    def to_json(self) -> str:
        """Serialize logs and metrics the way downstream agents expect them."""
        if self.logs is None and self.metrics is None:
            return "{}"
        return json.dumps({"logs": self.logs, "metrics": self.metrics})
