import pytest

from triageflow import pipeline
from triageflow.errors import ParseError
from triageflow.models import WorkflowState, WorkflowStatus
from triageflow.steps import StepId


def _prepared(classification=None) -> WorkflowState:
    state = (
        WorkflowState.empty("wf-7")
        .add_conversation("system", "Service triage session started")
        .add_conversation("user", "Checkout 5xx spike")
        .with_incident("Checkout 5xx spike")
        .with_status(WorkflowStatus.PREPARED)
    )
    if classification is not None:
        state = state.with_classification(classification).with_status(
            WorkflowStatus.CLASSIFIED
        )
    return state


@pytest.mark.asyncio
async def test_classify_stores_raw_output(make_invoker):
    invoker = make_invoker()

    outcome = await pipeline.classify(_prepared(), invoker)

    assert outcome.next_step == StepId.GATHER_EVIDENCE
    assert outcome.state.status == WorkflowStatus.CLASSIFIED
    assert '"service": "db"' in outcome.state.classification_json
    assert outcome.state.conversation[-1].role == "assistant"
    session, name, request = invoker.calls[0]
    assert (session, name) == ("wf-7", "classifier")
    assert request.incident == "Checkout 5xx spike"


@pytest.mark.asyncio
async def test_classify_rejects_malformed_output(make_invoker):
    with pytest.raises(ParseError):
        await pipeline.classify(_prepared(), make_invoker(classifier="P1 database"))


@pytest.mark.asyncio
async def test_gather_evidence_keeps_plain_text_as_logs(make_invoker):
    invoker = make_invoker(evidence="no structured output, just a log dump")
    state = _prepared('{"service": "checkout", "severity": "P2"}')

    outcome = await pipeline.gather_evidence(state, invoker)

    assert outcome.next_step == StepId.TRIAGE
    assert outcome.state.evidence_logs == "no structured output, just a log dump"
    assert outcome.state.evidence_metrics is None
    assert "0 key findings" in outcome.state.conversation[-1].content
    request = invoker.calls[0][2]
    assert request.service == "checkout"
    assert request.metrics_expr == "errors:rate5m"


@pytest.mark.asyncio
async def test_triage_context_mentions_missing_evidence(make_invoker):
    invoker = make_invoker()
    state = _prepared('{"service": "db", "severity": "P1"}')

    outcome = await pipeline.triage(state, invoker)

    assert outcome.state.status == WorkflowStatus.TRIAGED
    context = invoker.calls[0][2].context
    assert "Original Incident: Checkout 5xx spike" in context
    assert "No evidence collected" in context


@pytest.mark.asyncio
async def test_remediation_flags_high_risk(make_invoker):
    invoker = make_invoker(remediation="Rollback deploy. HIGH risk: data loss possible")
    state = _prepared('{"service": "db", "severity": "P1"}').with_evidence("logs", None)

    outcome = await pipeline.remediate(state, invoker)

    assert outcome.next_step == StepId.SUMMARIZE
    assert "HIGH RISK ACTIONS IDENTIFIED" in outcome.state.conversation[-1].content
    assert invoker.calls[0][2].evidence_json == '{"logs": "logs", "metrics": null}'


@pytest.mark.asyncio
async def test_finalize_tolerates_missing_classification(make_invoker):
    outcome = await pipeline.finalize(_prepared(), make_invoker())

    assert outcome.next_step is None
    assert outcome.state.status == WorkflowStatus.COMPLETED
    assert "Service: unknown, Severity: unknown" in outcome.state.conversation[-1].content


@pytest.mark.asyncio
async def test_interrupt_ends_workflow(make_invoker):
    invoker = make_invoker()
    outcome = await pipeline.interrupt(_prepared(), invoker)

    assert outcome.next_step is None
    assert outcome.state.status == WorkflowStatus.INTERRUPTED
    assert outcome.state.conversation[-1].content.endswith(pipeline.INTERRUPTED_MESSAGE)
    assert invoker.calls == []
