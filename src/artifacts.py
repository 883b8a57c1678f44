from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .types import AgentRecord, LogEntry, MetricSample, Snapshot, TaskRecord, parse_agent_status, parse_task_status


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def write_json(path: str, obj: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False, default=str)


def read_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _opt_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def snapshot_from_dict(obj: Dict[str, Any]) -> Snapshot:
    """
    Build a Snapshot from an export using the database column names, e.g.
    {"agents": [...], "metrics": [...], "tasks": [...], "logs": [...]}.
    """
    agents: List[AgentRecord] = [
        AgentRecord(
            id=str(a["id"]),
            type=str(a.get("type", "")),
            status=parse_agent_status(a["status"]),
            name=a.get("name") or "",
            version=a.get("version"),
            health_check_url=a.get("health_check_url"),
            created_at=parse_timestamp(a.get("created_at")),
        )
        for a in obj.get("agents", [])
    ]
    samples: List[MetricSample] = [
        MetricSample(
            id=_opt_str(m.get("id")),
            agent_id=_opt_str(m.get("agent_id")),
            type=str(m["metric_type"]),
            value=float(m["metric_value"]),
            unit=m.get("unit") or "",
            timestamp=parse_timestamp(m["timestamp"]),  # type: ignore[arg-type]
        )
        for m in obj.get("metrics", [])
    ]
    tasks: List[TaskRecord] = [
        TaskRecord(
            id=str(t["id"]),
            agent_id=_opt_str(t.get("agent_id")),
            status=parse_task_status(t["status"]),
            task_type=t.get("task_type"),
            created_at=parse_timestamp(t.get("created_at")),
            started_at=parse_timestamp(t.get("started_at")),
            completed_at=parse_timestamp(t.get("completed_at")),
        )
        for t in obj.get("tasks", [])
    ]
    logs: List[LogEntry] = [
        LogEntry(
            id=_opt_str(entry.get("id")),
            agent_id=_opt_str(entry.get("agent_id")),
            level=str(entry.get("level", "info")),
            message=entry.get("message") or "",
            timestamp=parse_timestamp(entry["timestamp"]),  # type: ignore[arg-type]
        )
        for entry in obj.get("logs", [])
    ]
    return Snapshot(agents=agents, samples=samples, tasks=tasks, logs=logs)


def restrict_to_window(snapshot: Snapshot, since: datetime) -> Snapshot:
    return Snapshot(
        agents=list(snapshot.agents),
        samples=[s for s in snapshot.samples if s.timestamp >= since],
        tasks=[t for t in snapshot.tasks if t.created_at is not None and t.created_at >= since],
        logs=[entry for entry in snapshot.logs if entry.timestamp >= since],
    )
