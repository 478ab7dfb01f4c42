"""Durable storage for workflow records."""

from __future__ import annotations

import os
from typing import Optional

from ..config import TriageFlowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import WorkflowRecord
from .postgres import PostgresWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

_repository_instance: WorkflowRepository | None = None


def _open_repository(database_url: Optional[str]) -> WorkflowRepository:
    if not database_url:
        return InMemoryWorkflowRepository()
    scheme, sep, location = database_url.partition("://")
    if not sep:
        raise ValueError(f"Unsupported database backend: {database_url}")
    if scheme == "sqlite":
        return SQLiteWorkflowRepository(location)
    if scheme in ("postgres", "postgresql"):
        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[TriageFlowConfig] = None
) -> WorkflowRepository:
    """Return the process-wide workflow repository.

    Called without arguments it reuses the repository opened last. Otherwise
    the backend follows ``database_url``, then ``TRIAGEFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, then ``database_url`` in the configuration:
    ``sqlite://<path>`` or ``postgres(ql)://...``. Without any URL the
    records live in memory for the life of the process.
    """
    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    _repository_instance = _open_repository(
        database_url
        or os.getenv("TRIAGEFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )
    return _repository_instance


__all__ = [
    "InMemoryWorkflowRepository",
    "PostgresWorkflowRepository",
    "SQLiteWorkflowRepository",
    "WorkflowRecord",
    "WorkflowRepository",
    "get_repository",
]
