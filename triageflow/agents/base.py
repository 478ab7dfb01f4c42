"""Collaborator contract used by step bodies to reach agents."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Protocol, Union

from pydantic import BaseModel


class AgentName(str, Enum):
    """Agents the triage pipeline delegates to."""

    CLASSIFIER = "classifier"
    EVIDENCE = "evidence"
    TRIAGE = "triage"
    KNOWLEDGE_BASE = "knowledge_base"
    REMEDIATION = "remediation"
    SUMMARY = "summary"


def agent_key(agent_name: Union[AgentName, str]) -> str:
    """Return the plain string name for ``agent_name``."""
    return agent_name.value if isinstance(agent_name, AgentName) else agent_name


class ClassifyRequest(BaseModel):
    incident: str


class EvidenceRequest(BaseModel):
    service: str
    metrics_expr: str
    time_range: str


class TriageRequest(BaseModel):
    context: str


class KnowledgeBaseRequest(BaseModel):
    service: str


class RemediationRequest(BaseModel):
    incident: Optional[str] = None
    classification_json: Optional[str] = None
    evidence_json: str = "{}"
    triage_text: Optional[str] = None
    knowledge_base_result: Optional[str] = None


class SummaryRequest(BaseModel):
    incident: Optional[str] = None
    classification_json: Optional[str] = None
    triage_text: Optional[str] = None
    remediation_text: Optional[str] = None


class AgentInvoker(Protocol):
    """Session-scoped call into an external agent.

    ``session_id`` is always the id of the owning workflow, so every stage of
    one workflow instance shares a single logical agent session. Calls may
    raise or hang; the engine bounds them with the step timeout.
    """

    async def invoke(
        self, session_id: str, agent_name: Union[AgentName, str], request: BaseModel
    ) -> str:
        """Send ``request`` to ``agent_name`` and return its text response."""

    def end_session(self, session_id: str) -> None:
        """Forget whatever the invoker keeps for a finished workflow."""
