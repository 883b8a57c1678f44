from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from .aggregation import aggregate_metrics, summarize_tasks
from .health import score_health
from .types import AgentRecord, LogEntry, MetricSample, TaskRecord

RECENT_ERROR_LIMIT = 10
STORAGE_MB_PER_TASK = 0.1
STORAGE_MB_PER_METRIC = 0.05


def uptime_info(agents: Sequence[AgentRecord], now: datetime) -> Dict[str, Any]:
    created = [a.created_at for a in agents if a.created_at is not None]
    started = min(created) if created else now
    uptime_ms = int((now - started).total_seconds() * 1000)
    return {
        "system_start_time": started.isoformat(),
        "uptime_ms": uptime_ms,
        "uptime_days": uptime_ms // 86_400_000,
        "uptime_hours": (uptime_ms % 86_400_000) // 3_600_000,
    }


def resource_usage(agent_count: int, tasks_last_24h: int, metrics_last_24h: int) -> Dict[str, Any]:
    return {
        "active_agents": agent_count,
        "tasks_last_24h": tasks_last_24h,
        "metrics_last_24h": metrics_last_24h,
        "estimated_storage_mb": tasks_last_24h * STORAGE_MB_PER_TASK + metrics_last_24h * STORAGE_MB_PER_METRIC,
    }


def build_overview(
    agents: Sequence[AgentRecord],
    recent_samples: Sequence[MetricSample],
    recent_tasks: Sequence[TaskRecord],
    recent_errors: Sequence[LogEntry],
    now: datetime,
    metrics_last_24h: Optional[int] = None,
) -> Dict[str, Any]:
    status_summary: Dict[str, int] = {}
    for agent in agents:
        status_summary[agent.status.value] = status_summary.get(agent.status.value, 0) + 1

    newest_errors = sorted(recent_errors, key=lambda log: log.timestamp, reverse=True)[:RECENT_ERROR_LIMIT]
    return {
        "system_health": score_health(agents, recent_tasks, recent_samples).to_dict(),
        "agent_count": len(agents),
        "agent_status_summary": status_summary,
        "performance_summary": {k: v.to_dict() for k, v in aggregate_metrics(recent_samples).items()},
        "task_summary": summarize_tasks(recent_tasks),
        "recent_errors": [
            {
                "id": log.id,
                "agent_id": log.agent_id,
                "level": log.level,
                "message": log.message,
                "timestamp": log.timestamp.isoformat(),
            }
            for log in newest_errors
        ],
        "uptime_info": uptime_info(agents, now),
        "resource_usage": resource_usage(
            len(agents),
            len(recent_tasks),
            len(recent_samples) if metrics_last_24h is None else metrics_last_24h,
        ),
    }
