"""Discovery run persistence: queue, claim, complete, and log runs.

Two implementations share the RunStore protocol:

  PostgresRunStore -- psycopg2 against the discovery_runs /
      discovery_run_logs tables. Claiming uses FOR UPDATE SKIP LOCKED so
      any number of workers can poll the same queue.
  MemoryRunStore -- in-process, for tests and single-process use.

A claim moves the oldest queued run (by started_at) to running and merges
the caller's stats over the queued ones. Only a running run can be
completed, and only into a terminal status.
"""

from __future__ import annotations

import copy
import itertools
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol

from rollerhoops.models.discovery import (
    DiscoveryRun,
    DiscoveryRunLog,
    LogLevel,
    RunStatus,
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS discovery_runs (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  status text NOT NULL CHECK (status IN ('queued', 'running', 'succeeded', 'failed')),
  scope text NULL,
  stats jsonb NOT NULL DEFAULT '{}'::jsonb,
  started_at timestamptz NOT NULL DEFAULT now(),
  completed_at timestamptz NULL,
  last_error text NULL
);

CREATE INDEX IF NOT EXISTS discovery_runs_started_at_idx ON discovery_runs (started_at DESC);

CREATE TABLE IF NOT EXISTS discovery_run_logs (
  id bigserial PRIMARY KEY,
  run_id uuid NOT NULL REFERENCES discovery_runs(id) ON DELETE CASCADE,
  level text NOT NULL DEFAULT 'info',
  message text NOT NULL,
  created_at timestamptz NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS discovery_run_logs_run_id_created_at_idx
  ON discovery_run_logs (run_id, created_at);
"""

_RUN_COLUMNS = "id, status, scope, stats, started_at, completed_at, last_error"

INSERT_RUN_SQL = f"""
INSERT INTO discovery_runs (status, scope, stats)
VALUES ('queued', %s, COALESCE(%s, '{{}}'::jsonb))
RETURNING {_RUN_COLUMNS}
"""

CLAIM_NEXT_RUN_SQL = f"""
WITH next AS (
  SELECT id FROM discovery_runs
  WHERE status = 'queued'
  ORDER BY started_at ASC
  LIMIT 1
  FOR UPDATE SKIP LOCKED
)
UPDATE discovery_runs dr
SET status = 'running',
    stats = dr.stats || COALESCE(%s, '{{}}'::jsonb),
    completed_at = NULL,
    last_error = NULL
FROM next
WHERE dr.id = next.id
RETURNING dr.id, dr.status, dr.scope, dr.stats, dr.started_at, dr.completed_at, dr.last_error
"""

COMPLETE_RUN_SQL = f"""
UPDATE discovery_runs
SET status = %s,
    stats = COALESCE(%s, stats),
    completed_at = %s,
    last_error = %s
WHERE id = %s AND status = 'running'
RETURNING {_RUN_COLUMNS}
"""

GET_RUN_SQL = f"SELECT {_RUN_COLUMNS} FROM discovery_runs WHERE id = %s"

INSERT_LOG_SQL = """
INSERT INTO discovery_run_logs (run_id, level, message)
VALUES (%s, %s, %s)
"""

LIST_LOGS_SQL = """
SELECT run_id, level, message, created_at
FROM discovery_run_logs
WHERE run_id = %s
ORDER BY created_at, id
"""


class RunStore(Protocol):
    """Storage contract used by the discovery worker and CLI."""

    def create_run(self, scope: str | None, stats: dict | None = None) -> DiscoveryRun: ...

    def claim_next_run(self, stats: dict | None = None) -> DiscoveryRun | None: ...

    def complete_run(
        self,
        run_id: str,
        status: RunStatus,
        stats: dict | None,
        completed_at: datetime,
        last_error: str | None,
    ) -> DiscoveryRun | None: ...

    def append_log(self, run_id: str, level: LogLevel, message: str) -> None: ...

    def get_run(self, run_id: str) -> DiscoveryRun | None: ...

    def list_logs(self, run_id: str) -> list[DiscoveryRunLog]: ...


def _require_terminal(status: RunStatus) -> None:
    if not status.is_terminal:
        msg = f"cannot complete a run with non-terminal status {status.value!r}"
        raise ValueError(msg)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _detached(run: DiscoveryRun) -> DiscoveryRun:
    """A copy of run whose stats share nothing with the stored run."""
    return replace(run, stats=copy.deepcopy(run.stats))


class MemoryRunStore:
    """Thread-safe in-process RunStore.

    A single lock serialises claims, standing in for the row lock the
    Postgres store takes, so concurrent claimers never share a run.
    Runs are copied in and out, like rows read back from a database.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._runs: dict[str, DiscoveryRun] = {}
        self._order: dict[str, int] = {}
        self._logs: list[DiscoveryRunLog] = []
        self._counter = itertools.count()

    def create_run(self, scope: str | None, stats: dict | None = None) -> DiscoveryRun:
        run = DiscoveryRun(
            id=str(uuid.uuid4()),
            status=RunStatus.QUEUED,
            scope=scope,
            stats=copy.deepcopy(stats or {}),
            started_at=_now(),
        )
        with self._lock:
            self._runs[run.id] = run
            self._order[run.id] = next(self._counter)
        return _detached(run)

    def claim_next_run(self, stats: dict | None = None) -> DiscoveryRun | None:
        with self._lock:
            queued = [r for r in self._runs.values() if r.status == RunStatus.QUEUED]
            if not queued:
                return None
            run = min(queued, key=lambda r: (r.started_at, self._order[r.id]))
            claimed = replace(
                run,
                status=RunStatus.RUNNING,
                stats={**run.stats, **copy.deepcopy(stats or {})},
                completed_at=None,
                last_error=None,
            )
            self._runs[run.id] = claimed
            return _detached(claimed)

    def complete_run(
        self,
        run_id: str,
        status: RunStatus,
        stats: dict | None,
        completed_at: datetime,
        last_error: str | None,
    ) -> DiscoveryRun | None:
        _require_terminal(status)
        with self._lock:
            run = self._runs.get(run_id)
            if run is None or run.status != RunStatus.RUNNING:
                return None
            completed = replace(
                run,
                status=status,
                stats=copy.deepcopy(stats) if stats is not None else run.stats,
                completed_at=completed_at,
                last_error=last_error,
            )
            self._runs[run_id] = completed
            return _detached(completed)

    def append_log(self, run_id: str, level: LogLevel, message: str) -> None:
        with self._lock:
            self._logs.append(DiscoveryRunLog(
                run_id=run_id, level=level, message=message, created_at=_now(),
            ))

    def get_run(self, run_id: str) -> DiscoveryRun | None:
        with self._lock:
            run = self._runs.get(run_id)
        return _detached(run) if run is not None else None

    def list_logs(self, run_id: str) -> list[DiscoveryRunLog]:
        with self._lock:
            return [log for log in self._logs if log.run_id == run_id]


def _run_from_row(row: dict) -> DiscoveryRun:
    return DiscoveryRun(
        id=str(row["id"]),
        status=RunStatus(row["status"]),
        scope=row["scope"],
        stats=row["stats"] or {},
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        last_error=row["last_error"],
    )


class PostgresRunStore:
    """RunStore backed by PostgreSQL via psycopg2.

    Each operation runs in its own short transaction on a fresh
    connection, so the store is safe to share between threads.

    Args:
        dsn: libpq connection string or postgresql:// URL.
    """

    def __init__(self, dsn: str):
        self.dsn = dsn

    def _connect(self):
        import psycopg2

        return psycopg2.connect(self.dsn)

    def _execute(self, query: str, params: tuple = ()) -> list[dict]:
        from psycopg2.extras import RealDictCursor

        conn = self._connect()
        try:
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    cursor.execute(query, params)
                    if cursor.description is None:
                        return []
                    return cursor.fetchall()
        finally:
            conn.close()

    @staticmethod
    def _json(value: dict | None):
        from psycopg2.extras import Json

        return Json(value) if value is not None else None

    def ensure_schema(self) -> None:
        """Create the run tables and indexes if they are missing."""
        self._execute(SCHEMA_SQL)

    def create_run(self, scope: str | None, stats: dict | None = None) -> DiscoveryRun:
        rows = self._execute(INSERT_RUN_SQL, (scope, self._json(stats)))
        return _run_from_row(rows[0])

    def claim_next_run(self, stats: dict | None = None) -> DiscoveryRun | None:
        rows = self._execute(CLAIM_NEXT_RUN_SQL, (self._json(stats),))
        if not rows:
            return None
        return _run_from_row(rows[0])

    def complete_run(
        self,
        run_id: str,
        status: RunStatus,
        stats: dict | None,
        completed_at: datetime,
        last_error: str | None,
    ) -> DiscoveryRun | None:
        _require_terminal(status)
        rows = self._execute(
            COMPLETE_RUN_SQL,
            (status.value, self._json(stats), completed_at, last_error, run_id),
        )
        if not rows:
            return None
        return _run_from_row(rows[0])

    def append_log(self, run_id: str, level: LogLevel, message: str) -> None:
        self._execute(INSERT_LOG_SQL, (run_id, level.value, message))

    def get_run(self, run_id: str) -> DiscoveryRun | None:
        rows = self._execute(GET_RUN_SQL, (run_id,))
        if not rows:
            return None
        return _run_from_row(rows[0])

    def list_logs(self, run_id: str) -> list[DiscoveryRunLog]:
        return [
            DiscoveryRunLog(
                run_id=str(row["run_id"]),
                level=LogLevel(row["level"]),
                message=row["message"],
                created_at=row["created_at"],
            )
            for row in self._execute(LIST_LOGS_SQL, (run_id,))
        ]


def open_store(database_url: str) -> RunStore:
    """Return a PostgresRunStore for a URL, or a MemoryRunStore if empty."""
    if database_url.strip():
        return PostgresRunStore(database_url.strip())
    return MemoryRunStore()
