import pytest
from pydantic import ValidationError

from triageflow.errors import ParseError
from triageflow.models import (
    Classification,
    EvidenceReport,
    StateView,
    WorkflowState,
    WorkflowStatus,
)


def _filled_state() -> WorkflowState:
    return (
        WorkflowState.empty("wf-1")
        .with_incident("DB outage")
        .with_classification('{"service": "db"}')
        .with_evidence("logs", "metrics")
        .with_triage("triage")
        .with_knowledge_base_result("kb")
        .with_remediation("plan")
        .with_summary("summary")
        .add_conversation("user", "DB outage")
    )


def test_with_helpers_preserve_other_fields():
    state = _filled_state()

    updated = state.with_triage("new triage")

    assert updated.triage_text == "new triage"
    for field in (
        "workflow_id",
        "status",
        "incident",
        "classification_json",
        "evidence_logs",
        "evidence_metrics",
        "knowledge_base_result",
        "remediation_text",
        "summary_text",
        "conversation",
    ):
        assert getattr(updated, field) == getattr(state, field)
    assert state.triage_text == "triage"


def test_state_is_immutable():
    state = WorkflowState.empty("wf-1")
    with pytest.raises(ValidationError):
        state.status = WorkflowStatus.COMPLETED


def test_add_conversation_appends():
    state = WorkflowState.empty("wf-1").add_conversation("system", "started")

    longer = state.add_conversation("user", "hello")

    assert len(state.conversation) == 1
    assert longer.conversation[:1] == state.conversation
    assert longer.conversation[-1].role == "user"
    assert longer.conversation[-1].content == "hello"


def test_incident_is_set_once():
    state = WorkflowState.empty("wf-1").with_incident("DB outage")

    assert state.with_incident("DB outage").incident == "DB outage"
    with pytest.raises(ValueError):
        state.with_incident("something else")


def test_status_order():
    assert WorkflowStatus.PREPARED.can_advance_to(WorkflowStatus.CLASSIFIED)
    assert WorkflowStatus.TRIAGED.can_advance_to(WorkflowStatus.INTERRUPTED)
    assert WorkflowStatus.PREPARED.can_advance_to(WorkflowStatus.COMPLETED)
    assert not WorkflowStatus.TRIAGED.can_advance_to(WorkflowStatus.CLASSIFIED)
    assert not WorkflowStatus.COMPLETED.can_advance_to(WorkflowStatus.INTERRUPTED)
    assert WorkflowStatus.COMPLETED.is_terminal
    assert WorkflowStatus.INTERRUPTED.is_terminal
    assert not WorkflowStatus.SUMMARY_READY.is_terminal


def test_state_view_snapshot():
    state = _filled_state().with_status(WorkflowStatus.TRIAGED)

    view = StateView.from_state(state, current_step="query_knowledge_base", attempts={"triage": 1})

    assert view.status == "TRIAGED"
    assert view.agent_session_id == "wf-1"
    assert view.current_step == "query_knowledge_base"
    assert view.attempts == {"triage": 1}
    assert view.context_entries == 1
    assert view.approx_state_chars == state.approx_chars()
    assert view.memory_mode == "LIMITED_WINDOW"
    assert not view.is_empty


def test_empty_state_view():
    view = StateView.empty()
    assert view.status == "EMPTY"
    assert view.is_empty
    assert view.context_entries == 0


def test_classification_parse():
    c = Classification.parse('{"service": "db", "severity": "p1", "extra": 1}')
    assert c.service == "db"
    assert c.severity == "P1"
    assert c.metrics_expr == "errors:rate1m"
    assert c.time_range == "30m"


def test_classification_nested_and_defaults():
    nested = Classification.parse('{"classification": {"service": "api", "severity": "P2"}}')
    assert nested.service == "api"
    assert nested.severity == "P2"

    defaults = Classification.parse("{}")
    assert defaults.service == "unknown"
    assert defaults.severity == "P3"
    assert defaults.metrics_expr == "errors:rate5m"
    assert defaults.time_range == "1h"


@pytest.mark.parametrize(
    "raw",
    [None, "", "not json", "[1, 2]", '{"severity": "P9"}'],
)
def test_classification_parse_errors(raw):
    with pytest.raises(ParseError):
        Classification.parse(raw)


def test_evidence_report_parse():
    report = EvidenceReport.parse(
        '{"logs": "timeouts", "metrics": {"p99": 1.2}, "analysis": {"key_findings": ["a", "b"]}}'
    )
    assert report.logs == "timeouts"
    assert report.metrics == '{"p99": 1.2}'
    assert report.key_findings == ["a", "b"]


def test_evidence_report_to_json():
    assert EvidenceReport().to_json() == "{}"
    assert EvidenceReport(logs="x").to_json() == '{"logs": "x", "metrics": null}'
    with pytest.raises(ParseError):
        EvidenceReport.parse("plain text")
