import pytest

import triageflow.persistence as persistence
from triageflow.config import TriageFlowConfig
from triageflow.errors import PersistenceUnavailable
from triageflow.models import WorkflowState, WorkflowStatus
from triageflow.persistence import (
    InMemoryWorkflowRepository,
    SQLiteWorkflowRepository,
    WorkflowRecord,
    get_repository,
)
from triageflow.steps import StepId


def _record(workflow_id: str) -> WorkflowRecord:
    state = (
        WorkflowState.empty(workflow_id)
        .add_conversation("user", "DB outage")
        .with_status(WorkflowStatus.PREPARED)
    )
    return WorkflowRecord(workflow_id=workflow_id, state=state, current_step=StepId.CLASSIFY)


@pytest.fixture(params=["inmemory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "sqlite":
        repo = SQLiteWorkflowRepository(tmp_path / "wf.db")
        yield repo
        repo.close()
    else:
        yield InMemoryWorkflowRepository()


@pytest.mark.asyncio
async def test_repository_crud(repository):
    record = _record("wf-1")

    assert await repository.create(record)
    assert not await repository.create(record)

    loaded = await repository.get("wf-1")
    assert loaded == record
    assert await repository.get("missing") is None


@pytest.mark.asyncio
async def test_compare_and_set_fences_stale_writers(repository):
    record = _record("wf-cas")
    await repository.create(record)

    first = record.advance(attempts={"classify": 1})
    stale = record.advance(last_error="late writer")

    assert await repository.compare_and_set(first, record.version)
    assert not await repository.compare_and_set(stale, record.version)

    loaded = await repository.get("wf-cas")
    assert loaded.version == record.version + 1
    assert loaded.attempts == {"classify": 1}
    assert loaded.last_error is None


@pytest.mark.asyncio
async def test_compare_and_set_requires_existing_record(repository):
    record = _record("wf-ghost")
    assert not await repository.compare_and_set(record.advance(), record.version)


@pytest.mark.asyncio
async def test_list_active_skips_terminal(repository):
    running = _record("wf-running")
    done = _record("wf-done")
    await repository.create(running)
    await repository.create(done)
    finished = done.advance(
        state=done.state.with_status(WorkflowStatus.COMPLETED), current_step=None
    )
    await repository.compare_and_set(finished, done.version)

    all_ids = sorted(r.workflow_id for r in await repository.list_workflows())
    active_ids = [r.workflow_id for r in await repository.list_active()]

    assert all_ids == ["wf-done", "wf-running"]
    assert active_ids == ["wf-running"]


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(tmp_path):
    db_path = tmp_path / "wf.db"
    repo = SQLiteWorkflowRepository(db_path)
    await repo.create(_record("wf-durable"))
    repo.close()

    reopened = SQLiteWorkflowRepository(db_path)
    loaded = await reopened.get("wf-durable")
    reopened.close()

    assert loaded is not None
    assert loaded.current_step == StepId.CLASSIFY
    assert loaded.state.conversation[0].content == "DB outage"


def test_sqlite_unavailable(tmp_path):
    with pytest.raises(PersistenceUnavailable):
        SQLiteWorkflowRepository(tmp_path / "missing" / "dir" / "wf.db")


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("TRIAGEFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr(persistence, "_repository_instance", None)

    repo = get_repository(f"sqlite://{tmp_path / 'wf.db'}")
    assert isinstance(repo, SQLiteWorkflowRepository)
    assert get_repository() is repo
    repo.close()

    with pytest.raises(ValueError):
        get_repository("mysql://localhost/db")


def test_get_repository_from_environment(tmp_path, monkeypatch):
    monkeypatch.setattr(persistence, "_repository_instance", None)
    monkeypatch.setenv("TRIAGEFLOW_DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")

    repo = get_repository(config=TriageFlowConfig())

    assert isinstance(repo, SQLiteWorkflowRepository)
    assert repo.db_path.endswith("env.db")
    repo.close()
