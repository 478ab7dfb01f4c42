"""Shared fixtures: fake agents and engines over an in-memory repository."""

import pytest

from triageflow import CallableInvoker, WorkflowEngine
from triageflow.config import EngineSettings
from triageflow.persistence import InMemoryWorkflowRepository

HAPPY_RESPONSES = {
    "classifier": '{"service": "db", "severity": "P1", "rationale": "writes failing"}',
    "evidence": '{"logs": "connection refused x42", "metrics": "error_rate=0.31", "analysis": {"key_findings": ["primary down", "replica lag"]}}',
    "triage": "Hypothesis: primary database lost its storage volume",
    "knowledge_base": "Runbooks found: db-failover.md, storage-incident-2023.md",
    "remediation": "Plan: 1) promote replica 2) validate writes 3) communicate",
    "summary": "Incident: DB outage. Impact: checkout writes failing. Next update: 30m",
}

FAST_SETTINGS = EngineSettings(
    default_step_timeout=1.0, retry_backoff_base=0, retry_jitter=0
)


def _as_agent(value):
    if isinstance(value, BaseException):
        async def _fail(request):
            raise value

        return _fail
    if isinstance(value, str):
        async def _reply(request):
            return value

        return _reply
    return value


@pytest.fixture
def repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def fast_settings():
    return FAST_SETTINGS


@pytest.fixture
def make_invoker():
    """Build a CallableInvoker answering every agent with a happy-path reply.

    Keyword overrides replace single agents: a string is returned verbatim,
    an exception instance is raised on every call and a callable is used
    as-is.
    """

    def _make(**overrides):
        agents = {name: _as_agent(text) for name, text in HAPPY_RESPONSES.items()}
        agents.update({name: _as_agent(value) for name, value in overrides.items()})
        return CallableInvoker(agents)

    return _make


@pytest.fixture
def make_engine(repo, make_invoker):
    def _make(invoker=None, repository=None, settings=FAST_SETTINGS, registry=None):
        return WorkflowEngine(
            invoker or make_invoker(),
            repository=repository or repo,
            registry=registry,
            settings=settings,
        )

    return _make
