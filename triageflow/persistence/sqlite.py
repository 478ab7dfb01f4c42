"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ..errors import PersistenceUnavailable
from ..models import WorkflowStatus
from .models import WorkflowRecord
from .repository import WorkflowRepository

_SCHEMA = """
CREATE TABLE IF NOT EXISTS workflows (
    workflow_id TEXT PRIMARY KEY,
    record TEXT NOT NULL,
    status TEXT NOT NULL,
    version INTEGER NOT NULL,
    updated_at TEXT NOT NULL
)
"""

_TERMINAL = (WorkflowStatus.COMPLETED.value, WorkflowStatus.INTERRUPTED.value)


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow records in a single SQLite table.

    Calls run in a worker thread over one shared connection guarded by a
    lock. Updates carry the expected ``version`` in their ``WHERE`` clause,
    so a writer holding an outdated record changes nothing.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            with self._conn:
                self._conn.execute(_SCHEMA)
        except sqlite3.Error as exc:
            raise PersistenceUnavailable(f"cannot open {self.db_path}: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                raise PersistenceUnavailable(str(exc)) from exc

    # ------------------------------------------------------------------
    def _insert(self, record: WorkflowRecord) -> bool:
        try:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT INTO workflows (workflow_id, record, status, version, updated_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        record.workflow_id,
                        record.to_json(),
                        record.status.value,
                        record.version,
                        record.updated_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def _swap(self, record: WorkflowRecord, expected_version: int) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE workflows SET record = ?, status = ?, version = ?, updated_at = ? "
                "WHERE workflow_id = ? AND version = ?",
                (
                    record.to_json(),
                    record.status.value,
                    record.version,
                    record.updated_at.isoformat(),
                    record.workflow_id,
                    expected_version,
                ),
            )
            return cur.rowcount == 1

    def _select(self, where: str = "", params: tuple = ()) -> list[WorkflowRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT record FROM workflows {where} ORDER BY updated_at", params
            ).fetchall()
        return [WorkflowRecord.from_json(row[0]) for row in rows]

    # ------------------------------------------------------------------
    async def create(self, record: WorkflowRecord) -> bool:
        return await asyncio.to_thread(self._insert, record)

    async def get(self, workflow_id: str) -> Optional[WorkflowRecord]:
        found = await asyncio.to_thread(
            self._select, "WHERE workflow_id = ?", (workflow_id,)
        )
        return found[0] if found else None

    async def compare_and_set(
        self, record: WorkflowRecord, expected_version: int
    ) -> bool:
        return await asyncio.to_thread(self._swap, record, expected_version)

    async def list_workflows(self) -> list[WorkflowRecord]:
        return await asyncio.to_thread(self._select)

    async def list_active(self) -> list[WorkflowRecord]:
        return await asyncio.to_thread(
            self._select, "WHERE status NOT IN (?, ?)", _TERMINAL
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()
