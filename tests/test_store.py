from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import psycopg
import pytest

import src.api.db as db
import src.api.store as store
from src.api.db import StoreConfigurationError, StoreDataError, StoreUnavailableError
from src.api.store import PerformanceStore, RecordFilter
from src.types import AgentStatus, TaskStatus

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

ROWS_BY_TABLE: dict[str, list[tuple[Any, ...]]] = {
    "public.agents": [
        ("a1", "sentiment-analysis", "active", "Sentiment", "1.0.0", "https://a1.example/health", NOW - timedelta(days=2)),
        ("a2", "recommendation", "error", None, None, None, NOW - timedelta(days=1)),
    ],
    "public.agent_metrics": [
        (101, "a1", "response_time", "120.5", "ms", NOW - timedelta(minutes=5)),
        (102, None, "success_rate", 100, None, NOW - timedelta(minutes=4)),
    ],
    "public.agent_tasks": [
        ("t1", "a1", "completed", "analysis", NOW - timedelta(hours=1), NOW - timedelta(hours=1), NOW),
    ],
    "public.agent_logs": [
        (7, "a2", "error", "Timeout: upstream", NOW - timedelta(minutes=1)),
    ],
}


class _RecordingCursor:
    def __init__(self, log: list[tuple[str, Any]], rows: dict[str, list[tuple[Any, ...]]]):
        self._log = log
        self._rows = rows
        self._result: list[tuple[Any, ...]] = []

    def __enter__(self) -> "_RecordingCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False

    def execute(self, sql: str, params: Any = None) -> None:
        self._log.append((sql, params))
        if "count(*)" in sql:
            self._result = [(42,)]
            return
        self._result = []
        for table, rows in self._rows.items():
            if f"from {table}\n" in sql:
                self._result = list(rows)

    def executemany(self, sql: str, rows: Any) -> None:
        for row in rows:
            self._log.append((sql, row))

    def fetchall(self) -> list[tuple[Any, ...]]:
        return list(self._result)

    def fetchone(self) -> Any:
        return self._result[0] if self._result else None


class _RecordingConn:
    def __init__(self, cursor: _RecordingCursor):
        self._cursor = cursor

    def __enter__(self) -> "_RecordingConn":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False

    def cursor(self) -> _RecordingCursor:
        return self._cursor


@pytest.fixture
def executed(monkeypatch) -> list[tuple[str, Any]]:
    log: list[tuple[str, Any]] = []
    monkeypatch.setattr(store, "get_conn", lambda: _RecordingConn(_RecordingCursor(log, ROWS_BY_TABLE)))
    return log


def _statements(executed: list[tuple[str, Any]], table: str) -> list[tuple[str, Any]]:
    return [(sql, params) for sql, params in executed if table in sql]


def test_fetch_agents_maps_rows_and_filters_types(executed) -> None:
    agents = PerformanceStore().fetch_agents(RecordFilter(tenant_id="tenant-1", agent_types=["sentiment-analysis"]))

    assert [a.id for a in agents] == ["a1", "a2"]
    assert agents[0].status is AgentStatus.ACTIVE
    assert agents[0].health_check_url == "https://a1.example/health"
    assert agents[1].name == ""
    sql, params = executed[0]
    assert "status::text" in sql
    assert "tenant_id = %s and type = any(%s)" in sql
    assert params == ("tenant-1", ["sentiment-analysis"])


def test_fetch_samples_applies_window_and_order(executed) -> None:
    since = NOW - timedelta(hours=1)
    samples = PerformanceStore().fetch_samples(RecordFilter(tenant_id="tenant-1", since=since, limit=50))

    assert samples[0].id == "101"
    assert samples[0].value == pytest.approx(120.5)
    assert samples[0].type == "response_time"
    assert samples[1].agent_id is None
    assert samples[1].unit == ""
    sql, params = executed[0]
    assert "timestamp >= %s" in sql
    assert "order by timestamp asc limit %s" in sql
    assert params == ("tenant-1", since, 50)


def test_fetch_tasks_rejects_unknown_status(monkeypatch) -> None:
    rows = dict(ROWS_BY_TABLE)
    rows["public.agent_tasks"] = [("t9", "a1", "exploded", None, NOW, None, None)]
    monkeypatch.setattr(store, "get_conn", lambda: _RecordingConn(_RecordingCursor([], rows)))

    with pytest.raises(StoreDataError, match="t9"):
        PerformanceStore().fetch_tasks(RecordFilter(tenant_id="tenant-1"))


def test_fetch_error_logs_filters_level_without_mutating_filter(executed) -> None:
    filter_ = RecordFilter(tenant_id="tenant-1", limit=10, newest_first=True)
    logs = PerformanceStore().fetch_error_logs(filter_)

    assert logs[0].message == "Timeout: upstream"
    assert filter_.level is None
    sql, params = executed[0]
    assert "and level = %s" in sql
    assert "order by timestamp desc limit %s" in sql
    assert params == ("tenant-1", "error", 10)


def test_fetch_snapshot_collects_all_collections(executed) -> None:
    snapshot = PerformanceStore().fetch_snapshot(
        RecordFilter(tenant_id="tenant-1", since=NOW - timedelta(hours=24), agent_types=["recommendation"])
    )

    assert len(snapshot.agents) == 2
    assert len(snapshot.samples) == 2
    assert snapshot.tasks[0].status is TaskStatus.COMPLETED
    assert snapshot.tasks[0].duration_ms == pytest.approx(3_600_000)
    assert len(snapshot.logs) == 1
    # agents are never restricted by the time window
    agent_sql, agent_params = _statements(executed, "public.agents")[0]
    assert ">= %s" not in agent_sql
    assert agent_params == ("tenant-1", ["recommendation"])


def test_fetch_overview_reads_recent_windows(executed) -> None:
    overview = PerformanceStore().fetch_overview("tenant-1", NOW)

    assert overview["metrics_last_24h"] == 42
    assert len(overview["recent_errors"]) == 1
    task_params = _statements(executed, "public.agent_tasks")[0][1]
    assert task_params[1] == NOW - timedelta(days=1)
    count_params = [p for sql, p in executed if "count(*)" in sql][0]
    assert count_params == ("tenant-1", NOW - timedelta(days=1))


def test_record_metrics_writes_response_time_and_success(executed) -> None:
    PerformanceStore().record_metrics("a1", "tenant-1", 250.0, success=False)

    rows = [params for _sql, params in _statements(executed, "public.agent_metrics")]
    assert rows == [
        ("a1", "tenant-1", "response_time", 250.0, "ms"),
        ("a1", "tenant-1", "success_rate", 0.0, "percentage"),
    ]


def test_fail_task_truncates_message(executed) -> None:
    PerformanceStore().fail_task("t1", "x" * 5000)

    sql, params = executed[0]
    assert "status = 'failed'" in sql
    assert len(params[0]) == 2000
    assert params[1] == "t1"


def test_create_task_serializes_input(executed) -> None:
    PerformanceStore().create_task("t1", "a1", "tenant-1", "health_check", {"target_agents": ["a2"]})

    sql, params = executed[0]
    assert "'running'" in sql
    assert params[4] == '{"target_agents": ["a2"]}'


def test_ping_reports_connection_errors(monkeypatch) -> None:
    def _broken():
        raise StoreConfigurationError("DATABASE_URL or SUPABASE_DB_URL is required")

    monkeypatch.setattr(store, "get_conn", _broken)
    assert PerformanceStore().ping() == {"status": "error", "error": "DATABASE_URL or SUPABASE_DB_URL is required"}


def test_database_url_env_resolution(monkeypatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_DB_URL", raising=False)
    with pytest.raises(StoreConfigurationError):
        db._database_url()

    monkeypatch.setenv("SUPABASE_DB_URL", "postgresql://fallback")
    assert db._database_url() == "postgresql://fallback"
    monkeypatch.setenv("DATABASE_URL", "postgresql://primary")
    assert db._database_url() == "postgresql://primary"


def test_snapshot_workers_env_is_clamped(monkeypatch) -> None:
    monkeypatch.setenv("PERF_SNAPSHOT_MAX_WORKERS", "0")
    assert store._snapshot_max_workers() == 1
    monkeypatch.delenv("PERF_SNAPSHOT_MAX_WORKERS")
    assert store._snapshot_max_workers() == 4


class _DriverConn:
    def __init__(self) -> None:
        self.rolled_back = False
        self.closed = False

    def commit(self) -> None:
        return None

    def rollback(self) -> None:
        self.rolled_back = True

    def close(self) -> None:
        self.closed = True


def test_get_conn_translates_connect_failures(monkeypatch) -> None:
    def _refuse(*_args, **_kwargs):
        raise psycopg.OperationalError("connection refused")

    monkeypatch.setenv("DATABASE_URL", "postgresql://primary")
    monkeypatch.setattr(db.psycopg, "connect", _refuse)

    with pytest.raises(StoreUnavailableError, match="connection refused"):
        with db.get_conn():
            pass


def test_get_conn_translates_query_failures_and_rolls_back(monkeypatch) -> None:
    conn = _DriverConn()
    monkeypatch.setenv("DATABASE_URL", "postgresql://primary")
    monkeypatch.setattr(db.psycopg, "connect", lambda *_args, **_kwargs: conn)

    with pytest.raises(StoreUnavailableError, match="server closed"):
        with db.get_conn():
            raise psycopg.OperationalError("server closed the connection")

    assert conn.rolled_back
    assert conn.closed
