from __future__ import annotations

import concurrent.futures
import json
import os
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from src.api.db import StoreDataError, get_conn
from src.logger import logger
from src.types import (
    AgentRecord,
    LogEntry,
    MetricSample,
    Snapshot,
    TaskRecord,
    parse_agent_status,
    parse_task_status,
)


def _snapshot_max_workers() -> int:
    return max(1, int(os.getenv("PERF_SNAPSHOT_MAX_WORKERS", "4")))


@dataclass
class RecordFilter:
    tenant_id: str
    since: Optional[datetime] = None
    agent_id: Optional[str] = None
    agent_types: Optional[Sequence[str]] = None
    level: Optional[str] = None
    limit: Optional[int] = None
    newest_first: bool = False


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _agent_from_row(row: Sequence[Any]) -> AgentRecord:
    try:
        status = parse_agent_status(row[2])
    except ValueError as exc:
        raise StoreDataError(f"agent {row[0]}: {exc}") from exc
    return AgentRecord(
        id=str(row[0]),
        type=str(row[1]),
        status=status,
        name=row[3] or "",
        version=row[4],
        health_check_url=row[5],
        created_at=row[6],
    )


def _sample_from_row(row: Sequence[Any]) -> MetricSample:
    return MetricSample(
        id=_str_or_none(row[0]),
        agent_id=_str_or_none(row[1]),
        type=str(row[2]),
        value=float(row[3]),
        unit=row[4] or "",
        timestamp=row[5],
    )


def _task_from_row(row: Sequence[Any]) -> TaskRecord:
    try:
        status = parse_task_status(row[2])
    except ValueError as exc:
        raise StoreDataError(f"task {row[0]}: {exc}") from exc
    return TaskRecord(
        id=str(row[0]),
        agent_id=_str_or_none(row[1]),
        status=status,
        task_type=row[3],
        created_at=row[4],
        started_at=row[5],
        completed_at=row[6],
    )


def _log_from_row(row: Sequence[Any]) -> LogEntry:
    return LogEntry(
        id=_str_or_none(row[0]),
        agent_id=_str_or_none(row[1]),
        level=str(row[2]),
        message=row[3] or "",
        timestamp=row[4],
    )


def _where(filter_: RecordFilter, time_column: Optional[str]) -> Tuple[str, List[Any]]:
    where = ["tenant_id = %s"]
    params: List[Any] = [filter_.tenant_id]
    if filter_.agent_id is not None:
        where.append("agent_id = %s")
        params.append(filter_.agent_id)
    if filter_.since is not None and time_column:
        where.append(f"{time_column} >= %s")
        params.append(filter_.since)
    return " and ".join(where), params


def _tail(filter_: RecordFilter, time_column: str) -> Tuple[str, List[Any]]:
    direction = "desc" if filter_.newest_first else "asc"
    sql = f"order by {time_column} {direction}"
    params: List[Any] = []
    if filter_.limit is not None:
        sql += " limit %s"
        params.append(filter_.limit)
    return sql, params


class PerformanceStore:
    """Postgres-backed reads and writes for the performance monitor."""

    def fetch_agents(self, filter_: RecordFilter) -> List[AgentRecord]:
        where = ["tenant_id = %s"]
        params: List[Any] = [filter_.tenant_id]
        if filter_.agent_id is not None:
            where.append("id = %s")
            params.append(filter_.agent_id)
        if filter_.agent_types:
            where.append("type = any(%s)")
            params.append(list(filter_.agent_types))
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select id, type, status::text, name, version, health_check_url, created_at
                    from public.agents
                    where {' and '.join(where)}
                    order by created_at asc
                    """,
                    tuple(params),
                )
                rows = cur.fetchall()
        return [_agent_from_row(r) for r in rows]

    def fetch_samples(self, filter_: RecordFilter) -> List[MetricSample]:
        where_sql, params = _where(filter_, "timestamp")
        tail_sql, tail_params = _tail(filter_, "timestamp")
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select id, agent_id, metric_type, metric_value, unit, timestamp
                    from public.agent_metrics
                    where {where_sql}
                    {tail_sql}
                    """,
                    (*params, *tail_params),
                )
                rows = cur.fetchall()
        return [_sample_from_row(r) for r in rows]

    def count_samples(self, filter_: RecordFilter) -> int:
        where_sql, params = _where(filter_, "timestamp")
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(f"select count(*) from public.agent_metrics where {where_sql}", tuple(params))
                row = cur.fetchone()
        return int(row[0]) if row else 0

    def fetch_tasks(self, filter_: RecordFilter) -> List[TaskRecord]:
        where_sql, params = _where(filter_, "created_at")
        tail_sql, tail_params = _tail(filter_, "created_at")
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select id, agent_id, status::text, task_type, created_at, started_at, completed_at
                    from public.agent_tasks
                    where {where_sql}
                    {tail_sql}
                    """,
                    (*params, *tail_params),
                )
                rows = cur.fetchall()
        return [_task_from_row(r) for r in rows]

    def fetch_logs(self, filter_: RecordFilter) -> List[LogEntry]:
        where_sql, params = _where(filter_, "timestamp")
        if filter_.level is not None:
            where_sql += " and level = %s"
            params.append(filter_.level)
        tail_sql, tail_params = _tail(filter_, "timestamp")
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select id, agent_id, level, message, timestamp
                    from public.agent_logs
                    where {where_sql}
                    {tail_sql}
                    """,
                    (*params, *tail_params),
                )
                rows = cur.fetchall()
        return [_log_from_row(r) for r in rows]

    def fetch_error_logs(self, filter_: RecordFilter) -> List[LogEntry]:
        return self.fetch_logs(replace(filter_, level="error"))

    def fetch_snapshot(self, filter_: RecordFilter) -> Snapshot:
        """Issue the four window reads in parallel and return them together."""
        started = time.perf_counter()
        agent_filter = RecordFilter(tenant_id=filter_.tenant_id, agent_types=filter_.agent_types)
        with concurrent.futures.ThreadPoolExecutor(max_workers=_snapshot_max_workers()) as pool:
            agents = pool.submit(self.fetch_agents, agent_filter)
            samples = pool.submit(self.fetch_samples, filter_)
            tasks = pool.submit(self.fetch_tasks, filter_)
            logs = pool.submit(self.fetch_logs, filter_)
            snapshot = Snapshot(
                agents=agents.result(),
                samples=samples.result(),
                tasks=tasks.result(),
                logs=logs.result(),
            )
        logger.debug(
            "snapshot fetched",
            tenant_id=filter_.tenant_id,
            agents=len(snapshot.agents),
            samples=len(snapshot.samples),
            tasks=len(snapshot.tasks),
            logs=len(snapshot.logs),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return snapshot

    def fetch_overview(self, tenant_id: str, now: datetime) -> Dict[str, Any]:
        last_hour = now - timedelta(hours=1)
        last_day = now - timedelta(days=1)
        with concurrent.futures.ThreadPoolExecutor(max_workers=_snapshot_max_workers()) as pool:
            agents = pool.submit(self.fetch_agents, RecordFilter(tenant_id=tenant_id))
            samples = pool.submit(self.fetch_samples, RecordFilter(tenant_id=tenant_id, since=last_hour))
            tasks = pool.submit(self.fetch_tasks, RecordFilter(tenant_id=tenant_id, since=last_day))
            errors = pool.submit(
                self.fetch_error_logs,
                RecordFilter(tenant_id=tenant_id, since=last_hour, limit=10, newest_first=True),
            )
            daily_metrics = pool.submit(self.count_samples, RecordFilter(tenant_id=tenant_id, since=last_day))
            return {
                "agents": agents.result(),
                "recent_samples": samples.result(),
                "recent_tasks": tasks.result(),
                "recent_errors": errors.result(),
                "metrics_last_24h": daily_metrics.result(),
            }

    def get_agent(self, tenant_id: str, agent_id: str) -> Optional[AgentRecord]:
        agents = self.fetch_agents(RecordFilter(tenant_id=tenant_id, agent_id=agent_id))
        return agents[0] if agents else None

    def find_agent_by_type(self, tenant_id: str, agent_type: str) -> Optional[AgentRecord]:
        agents = self.fetch_agents(RecordFilter(tenant_id=tenant_id, agent_types=[agent_type]))
        return agents[0] if agents else None

    def create_task(
        self,
        task_id: str,
        agent_id: str,
        tenant_id: str,
        task_type: str,
        input_data: Dict[str, Any],
    ) -> None:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.agent_tasks (id, agent_id, tenant_id, task_type, input_data, status, started_at)
                    values (%s, %s, %s, %s, %s::jsonb, 'running', now())
                    """,
                    (task_id, agent_id, tenant_id, task_type, json.dumps(input_data)),
                )

    def complete_task(self, task_id: str, output_data: Dict[str, Any]) -> None:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    update public.agent_tasks
                    set output_data = %s::jsonb,
                        status = 'completed',
                        completed_at = now()
                    where id = %s
                      and status = 'running'
                    """,
                    (json.dumps(output_data, default=str), task_id),
                )

    def fail_task(self, task_id: str, error_message: str) -> None:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    update public.agent_tasks
                    set status = 'failed',
                        error_message = %s,
                        completed_at = now()
                    where id = %s
                      and status in ('pending', 'running')
                    """,
                    (error_message[:2000], task_id),
                )

    def record_metrics(self, agent_id: str, tenant_id: str, response_time_ms: float, success: Optional[bool] = None) -> None:
        rows: List[Tuple[Any, ...]] = [(agent_id, tenant_id, "response_time", response_time_ms, "ms")]
        if success is not None:
            rows.append((agent_id, tenant_id, "success_rate", 100.0 if success else 0.0, "percentage"))
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    """
                    insert into public.agent_metrics (agent_id, tenant_id, metric_type, metric_value, unit)
                    values (%s, %s, %s, %s, %s)
                    """,
                    rows,
                )

    def record_activity(
        self,
        agent_id: str,
        tenant_id: str,
        level: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.agent_logs (agent_id, tenant_id, level, message, context)
                    values (%s, %s, %s, %s, %s::jsonb)
                    """,
                    (agent_id, tenant_id, level, message, json.dumps(context or {})),
                )

    def touch_health_check(self, agent_id: str) -> None:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("update public.agents set last_health_check = now() where id = %s", (agent_id,))

    def ping(self) -> Dict[str, Any]:
        try:
            with get_conn() as conn:
                with conn.cursor() as cur:
                    cur.execute("select 1 from public.agents limit 1")
                    cur.fetchone()
        except Exception as exc:
            return {"status": "error", "error": str(exc)}
        return {"status": "ok"}


def get_store() -> PerformanceStore:
    return PerformanceStore()
