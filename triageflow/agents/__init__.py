"""Agent collaborators reached by the triage pipeline."""

from .base import (
    AgentInvoker,
    AgentName,
    ClassifyRequest,
    EvidenceRequest,
    KnowledgeBaseRequest,
    RemediationRequest,
    SummaryRequest,
    TriageRequest,
)
from .callable import CallableInvoker
from .llm import PydanticAIInvoker, build_agents

__all__ = [
    "AgentInvoker",
    "AgentName",
    "CallableInvoker",
    "ClassifyRequest",
    "EvidenceRequest",
    "KnowledgeBaseRequest",
    "PydanticAIInvoker",
    "RemediationRequest",
    "SummaryRequest",
    "TriageRequest",
    "build_agents",
]
