"""Incident-triage pipeline: the step bodies and their recovery table.

Each step receives the current ``WorkflowState`` and the ``AgentInvoker``
explicitly and returns a ``StepOutcome``; nothing reads ambient state.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from .agents import (
    AgentInvoker,
    AgentName,
    ClassifyRequest,
    EvidenceRequest,
    KnowledgeBaseRequest,
    RemediationRequest,
    SummaryRequest,
    TriageRequest,
)
from .config import EngineSettings
from .errors import ParseError
from .models import Classification, EvidenceReport, WorkflowState, WorkflowStatus
from .steps import RecoveryPolicy, StepDefinition, StepId, StepOutcome, StepRegistry

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Workflow interrupted due to error"


def _clock() -> str:
    return datetime.now().time().isoformat(timespec="seconds")


def _preview(text: Optional[str], limit: int = 200) -> str:
    if text is None:
        return "null"
    return text if len(text) <= limit else text[:limit] + "..."


async def classify(state: WorkflowState, agents: AgentInvoker) -> StepOutcome:
    logger.info(f"[{state.workflow_id}] classify: calling classifier agent")
    result = await agents.invoke(
        state.workflow_id,
        AgentName.CLASSIFIER,
        ClassifyRequest(incident=state.incident or ""),
    )
    classification = Classification.parse(result)
    logger.info(
        f"[{state.workflow_id}] classification complete - service={classification.service}, "
        f"severity={classification.severity}"
    )
    logger.debug(f"Classifier output: {_preview(result, 300)}")

    entry = (
        f"[{_clock()}] Classification completed - Service: {classification.service}, "
        f"Severity: {classification.severity}"
    )
    new_state = (
        state.with_classification(result)
        .add_conversation("assistant", entry)
        .with_status(WorkflowStatus.CLASSIFIED)
    )
    return StepOutcome(new_state, StepId.GATHER_EVIDENCE)


async def gather_evidence(state: WorkflowState, agents: AgentInvoker) -> StepOutcome:
    classification = Classification.parse(state.classification_json)
    logger.info(
        f"[{state.workflow_id}] gather_evidence: service={classification.service} "
        f"({classification.severity}), metrics={classification.metrics_expr}, "
        f"range={classification.time_range}"
    )
    result = await agents.invoke(
        state.workflow_id,
        AgentName.EVIDENCE,
        EvidenceRequest(
            service=classification.service,
            metrics_expr=classification.metrics_expr,
            time_range=classification.time_range,
        ),
    )
    try:
        report = EvidenceReport.parse(result)
    except ParseError:
        logger.debug("Evidence output is not structured; keeping it verbatim as logs")
        report = EvidenceReport(logs=result)
    if report.logs is None and report.metrics is None:
        report = report.model_copy(update={"logs": result})

    entry = (
        f"[{_clock()}] Evidence analysis completed - "
        f"{len(report.key_findings)} key findings identified"
    )
    new_state = (
        state.with_evidence(report.logs, report.metrics)
        .add_conversation("assistant", entry)
        .with_status(WorkflowStatus.EVIDENCE_COLLECTED)
    )
    return StepOutcome(new_state, StepId.TRIAGE)


async def triage(state: WorkflowState, agents: AgentInvoker) -> StepOutcome:
    context = (
        "INCIDENT CONTEXT FOR TRIAGE\n"
        "===========================\n"
        f"Original Incident: {state.incident}\n\n"
        f"Classification Results: {state.classification_json}\n\n"
        f"Evidence Analysis: {state.evidence_logs or 'No evidence collected'}\n\n"
        f"Timestamp: {datetime.now().isoformat(timespec='seconds')}"
    )
    logger.info(f"[{state.workflow_id}] triage: calling triage agent")
    logger.debug(f"Triage context length: {len(context)} characters")
    result = await agents.invoke(
        state.workflow_id, AgentName.TRIAGE, TriageRequest(context=context)
    )
    new_state = (
        state.with_triage(result)
        .add_conversation("assistant", f"[{_clock()}] Triage analysis completed")
        .with_status(WorkflowStatus.TRIAGED)
    )
    return StepOutcome(new_state, StepId.QUERY_KNOWLEDGE_BASE)


async def query_knowledge_base(
    state: WorkflowState, agents: AgentInvoker
) -> StepOutcome:
    service = Classification.parse(state.classification_json).service
    logger.info(f"[{state.workflow_id}] query_knowledge_base: service={service}")
    result = await agents.invoke(
        state.workflow_id,
        AgentName.KNOWLEDGE_BASE,
        KnowledgeBaseRequest(service=service),
    )
    new_state = (
        state.with_knowledge_base_result(result)
        .add_conversation("assistant", "Knowledge base search completed.")
        .with_status(WorkflowStatus.KNOWLEDGE_BASE_SEARCHED)
    )
    return StepOutcome(new_state, StepId.REMEDIATE)


async def remediate(state: WorkflowState, agents: AgentInvoker) -> StepOutcome:
    evidence = EvidenceReport(logs=state.evidence_logs, metrics=state.evidence_metrics)
    logger.info(f"[{state.workflow_id}] remediate: calling remediation agent")
    result = await agents.invoke(
        state.workflow_id,
        AgentName.REMEDIATION,
        RemediationRequest(
            incident=state.incident,
            classification_json=state.classification_json,
            evidence_json=evidence.to_json(),
            triage_text=state.triage_text,
            knowledge_base_result=state.knowledge_base_result,
        ),
    )
    high_risk = "high" in result.lower()
    logger.info(
        f"[{state.workflow_id}] remediation plan ready - risk={'HIGH' if high_risk else 'STANDARD'}"
    )
    entry = f"[{_clock()}] Remediation plan completed - Ready for execution"
    if high_risk:
        entry += " - HIGH RISK ACTIONS IDENTIFIED"
    new_state = (
        state.with_remediation(result)
        .add_conversation("assistant", entry)
        .with_status(WorkflowStatus.REMEDIATION_PROPOSED)
    )
    return StepOutcome(new_state, StepId.SUMMARIZE)


async def summarize(state: WorkflowState, agents: AgentInvoker) -> StepOutcome:
    logger.info(f"[{state.workflow_id}] summarize: calling summary agent")
    result = await agents.invoke(
        state.workflow_id,
        AgentName.SUMMARY,
        SummaryRequest(
            incident=state.incident,
            classification_json=state.classification_json,
            triage_text=state.triage_text,
            remediation_text=state.remediation_text,
        ),
    )
    entry = (
        f"[{_clock()}] Multi-audience summaries completed - "
        "Ready for stakeholder communication"
    )
    new_state = (
        state.with_summary(result)
        .add_conversation("assistant", entry)
        .with_status(WorkflowStatus.SUMMARY_READY)
    )
    return StepOutcome(new_state, StepId.FINALIZE)


async def finalize(state: WorkflowState, agents: AgentInvoker) -> StepOutcome:
    try:
        classification = Classification.parse(state.classification_json)
        service, severity = classification.service, classification.severity
    except ParseError as exc:
        logger.warning(f"[{state.workflow_id}] finalize without classification: {exc}")
        service, severity = "unknown", "unknown"

    logger.info(
        f"[{state.workflow_id}] triage workflow completed - service={service}, severity={severity}"
    )
    entry = (
        f"[{_clock()}] Incident triage workflow completed successfully. "
        f"Service: {service}, Severity: {severity}, Status: READY FOR ACTION"
    )
    new_state = state.add_conversation("system", entry).with_status(
        WorkflowStatus.COMPLETED
    )
    return StepOutcome(new_state, None)


async def interrupt(state: WorkflowState, agents: AgentInvoker) -> StepOutcome:
    logger.warning(f"[{state.workflow_id}] interrupting workflow due to step failure")
    note = f"[{_clock()}] {INTERRUPTED_MESSAGE}"
    new_state = state.add_conversation("system", note).with_status(
        WorkflowStatus.INTERRUPTED
    )
    return StepOutcome(new_state, None)


def build_triage_registry(settings: Optional[EngineSettings] = None) -> StepRegistry:
    """Build the incident-triage step table.

    Every step retries ``default_max_retries`` times and then fails over to
    ``interrupt``, except evidence gathering (continues with triage) and
    remediation (continues with the summary).
    """
    settings = settings or EngineSettings()
    retries = settings.default_max_retries
    return StepRegistry(
        [
            StepDefinition(StepId.CLASSIFY, classify),
            StepDefinition(
                StepId.GATHER_EVIDENCE,
                gather_evidence,
                recovery=RecoveryPolicy(max_retries=retries, failover_step=StepId.TRIAGE),
            ),
            StepDefinition(StepId.TRIAGE, triage),
            StepDefinition(StepId.QUERY_KNOWLEDGE_BASE, query_knowledge_base),
            StepDefinition(
                StepId.REMEDIATE,
                remediate,
                recovery=RecoveryPolicy(
                    max_retries=retries, failover_step=StepId.SUMMARIZE
                ),
            ),
            StepDefinition(StepId.SUMMARIZE, summarize),
            StepDefinition(StepId.FINALIZE, finalize, terminal=True),
            StepDefinition(StepId.INTERRUPT, interrupt, terminal=True),
        ],
        first_step=StepId.CLASSIFY,
        default_recovery=RecoveryPolicy(
            max_retries=retries, failover_step=StepId.INTERRUPT
        ),
        default_timeout=settings.default_step_timeout,
    )
