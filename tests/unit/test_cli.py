import asyncio
import json

import pytest
from typer.testing import CliRunner

import triageflow.cli as cli
import triageflow.persistence as persistence
from triageflow.cli import app
from triageflow.persistence import InMemoryWorkflowRepository, WorkflowRecord
from triageflow.models import WorkflowState, WorkflowStatus
from triageflow.steps import StepId
from triageflow.transports import InMemoryTransport

runner = CliRunner()


@pytest.fixture
def repo(monkeypatch, tmp_path):
    repo = InMemoryWorkflowRepository()
    monkeypatch.setattr(persistence, "_repository_instance", repo)
    monkeypatch.setenv("TRIAGEFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    return repo


@pytest.fixture
def fake_agents(monkeypatch, make_invoker):
    invoker = make_invoker()
    monkeypatch.setattr(cli, "_build_invoker", lambda config: invoker)
    return invoker


def _seed(repo, workflow_id: str, status: WorkflowStatus, step=StepId.TRIAGE):
    state = (
        WorkflowState.empty(workflow_id)
        .add_conversation("system", "Service triage session started")
        .add_conversation("user", "DB outage")
        .with_incident("DB outage")
        .with_status(status)
    )
    record = WorkflowRecord(
        workflow_id=workflow_id,
        state=state,
        current_step=None if status.is_terminal else step,
    )
    asyncio.run(repo.create(record))


def test_list_command(repo):
    _seed(repo, "wf-running", WorkflowStatus.EVIDENCE_COLLECTED)
    _seed(repo, "wf-done", WorkflowStatus.COMPLETED)

    result = runner.invoke(app, ["list"])

    assert result.exit_code == 0, result.output
    assert "wf-running\tEVIDENCE_COLLECTED\ttriage" in result.output
    assert "wf-done\tCOMPLETED\t-" in result.output


def test_list_command_empty(repo):
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No workflows found" in result.output


def test_state_command_shows_details_and_missing(repo):
    _seed(repo, "wf-1", WorkflowStatus.TRIAGED)

    result = runner.invoke(app, ["state", "wf-1"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["status"] == "TRIAGED"
    assert data["incident"] == "DB outage"
    assert data["agent_session_id"] == "wf-1"

    missing = runner.invoke(app, ["state", "nope"])
    assert json.loads(missing.output)["status"] == "EMPTY"


def test_conversations_command(repo):
    _seed(repo, "wf-1", WorkflowStatus.PREPARED)

    result = runner.invoke(app, ["conversations", "wf-1"])
    assert result.exit_code == 0
    assert result.output.strip() == "user: DB outage"

    missing = runner.invoke(app, ["conversations", "nope"])
    assert "No conversation found" in missing.output


def test_start_runs_pipeline(repo, fake_agents):
    result = runner.invoke(app, ["start", "wf-cli", "DB outage in eu-west"])

    assert result.exit_code == 0, result.output
    assert "Workflow wf-cli: COMPLETED" in result.output
    assert len(fake_agents.calls) == 6

    again = runner.invoke(app, ["start", "wf-cli", "another"])
    assert again.exit_code == 1
    assert "already COMPLETED" in again.output


def test_start_detached_publishes_command(repo, monkeypatch):
    transport = InMemoryTransport()
    monkeypatch.setattr(cli, "get_transport", lambda config=None: transport)

    result = runner.invoke(app, ["start", "wf-queued", "DB outage", "--detach"])

    assert result.exit_code == 0, result.output
    assert "Queued workflow wf-queued" in result.output
    assert transport.pending("commands") == 1
    assert asyncio.run(repo.get("wf-queued")) is None


def test_repeat_and_resume(repo, fake_agents):
    _seed(repo, "wf-paused", WorkflowStatus.PREPARED, step=StepId.CLASSIFY)

    result = runner.invoke(app, ["repeat", "wf-paused", "check in", "--times", "3"])
    assert result.exit_code == 0, result.output
    assert "ok" in result.output
    record = asyncio.run(repo.get("wf-paused"))
    assert record.paused
    assert record.state.conversation[-1].content == "[DEMO] check in (3/3)"

    resumed = runner.invoke(app, ["resume", "wf-paused", "--timeout", "5"])
    assert resumed.exit_code == 0, resumed.output
    assert "Workflow wf-paused: COMPLETED" in resumed.output


def test_repeat_missing_workflow(repo, fake_agents):
    result = runner.invoke(app, ["repeat", "nope", "hello"])
    assert result.exit_code == 1
    assert "Workflow not found" in result.output


def test_resume_nothing(repo, fake_agents):
    result = runner.invoke(app, ["resume"])
    assert result.exit_code == 0
    assert "Nothing to resume" in result.output
