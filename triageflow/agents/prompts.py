"""Default instructions for the pydantic-ai backed triage agents."""

from __future__ import annotations

from typing import Dict

from .base import AgentName

DEFAULT_PROMPTS: Dict[AgentName, str] = {
    AgentName.CLASSIFIER: (
        "You classify production incidents. The request is JSON with an "
        "'incident' field. Reply with a single JSON object containing "
        "'service', 'severity' (one of P1, P2, P3, P4), 'domain' and 'rationale'."
    ),
    AgentName.EVIDENCE: (
        "You gather evidence for an incident. The request names a service, a "
        "metrics expression and a time range. Reply with a JSON object holding "
        "'logs' and 'metrics' summaries and an 'analysis.key_findings' list."
    ),
    AgentName.TRIAGE: (
        "You triage incidents. Given the enriched incident context, state the "
        "most likely hypotheses and the checks that would confirm them."
    ),
    AgentName.KNOWLEDGE_BASE: (
        "You search the runbook knowledge base for the named service and list "
        "the relevant runbooks and past incidents."
    ),
    AgentName.REMEDIATION: (
        "You propose a remediation plan from the incident, classification, "
        "evidence, triage notes and runbooks. Call out the risk level of each action."
    ),
    AgentName.SUMMARY: (
        "You write short incident summaries for engineers, managers and "
        "customers from the incident, triage and remediation notes."
    ),
}
