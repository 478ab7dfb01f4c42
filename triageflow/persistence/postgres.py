"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from typing import Any

import asyncpg

from ..errors import PersistenceUnavailable
from ..models import WorkflowStatus
from .models import WorkflowRecord
from .repository import WorkflowRepository

_TERMINAL = [WorkflowStatus.COMPLETED.value, WorkflowStatus.INTERRUPTED.value]


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow records using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
            if not self._initialized:
                await self._ensure_schema(conn)
                self._initialized = True
        except (OSError, asyncpg.PostgresError) as exc:
            raise PersistenceUnavailable(f"cannot reach postgres: {exc}") from exc
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                workflow_id TEXT PRIMARY KEY,
                record JSONB NOT NULL,
                status TEXT NOT NULL,
                version BIGINT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    async def _run(self, method: str, query: str, *params: Any) -> Any:
        conn = await self._connect()
        try:
            return await getattr(conn, method)(query, *params)
        except (OSError, asyncpg.PostgresError) as exc:
            raise PersistenceUnavailable(str(exc)) from exc
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def create(self, record: WorkflowRecord) -> bool:
        status = await self._run(
            "execute",
            """
            INSERT INTO workflows (workflow_id, record, status, version, updated_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (workflow_id) DO NOTHING
            """,
            record.workflow_id,
            record.to_json(),
            record.status.value,
            record.version,
            record.updated_at,
        )
        return status.endswith(" 1")

    async def get(self, workflow_id: str) -> WorkflowRecord | None:
        row = await self._run(
            "fetchrow",
            "SELECT record::text AS record FROM workflows WHERE workflow_id = $1",
            workflow_id,
        )
        return WorkflowRecord.from_json(row["record"]) if row else None

    async def compare_and_set(
        self, record: WorkflowRecord, expected_version: int
    ) -> bool:
        status = await self._run(
            "execute",
            """
            UPDATE workflows
            SET record = $1, status = $2, version = $3, updated_at = $4
            WHERE workflow_id = $5 AND version = $6
            """,
            record.to_json(),
            record.status.value,
            record.version,
            record.updated_at,
            record.workflow_id,
            expected_version,
        )
        return status == "UPDATE 1"

    async def list_workflows(self) -> list[WorkflowRecord]:
        rows = await self._run(
            "fetch",
            "SELECT record::text AS record FROM workflows ORDER BY updated_at",
        )
        return [WorkflowRecord.from_json(r["record"]) for r in rows]

    async def list_active(self) -> list[WorkflowRecord]:
        rows = await self._run(
            "fetch",
            "SELECT record::text AS record FROM workflows WHERE NOT (status = ANY($1::text[])) ORDER BY updated_at",
            _TERMINAL,
        )
        return [WorkflowRecord.from_json(r["record"]) for r in rows]
