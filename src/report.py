from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from .aggregation import aggregate_metrics, average_response_time, count_by_status, success_rate
from .statistics import mean, median, round_int
from .timeframe import parse_timeframe
from .types import AgentRecord, AgentStatus, LogEntry, MetricSample, Snapshot, TaskRecord, TaskStatus

TREND_INTERVALS = 10
TOP_ERROR_TYPES = 5
SLOW_RESPONSE_THRESHOLD_MS = 1000
ERROR_RATE_THRESHOLD = 0.05
MESSAGE_KEY_LENGTH = 50


def _error_logs(logs: Sequence[LogEntry]) -> List[LogEntry]:
    return [log for log in logs if log.level == "error"]


def report_summary(snapshot: Snapshot) -> Dict[str, Any]:
    return {
        "total_agents": len(snapshot.agents),
        "active_agents": sum(1 for a in snapshot.agents if a.status is AgentStatus.ACTIVE),
        "total_metrics": len(snapshot.samples),
        "total_tasks": len(snapshot.tasks),
        "total_logs": len(snapshot.logs),
        "error_count": len(_error_logs(snapshot.logs)),
        "success_rate": success_rate(snapshot.tasks),
    }


def agent_performance(
    agents: Sequence[AgentRecord],
    samples: Sequence[MetricSample],
    tasks: Sequence[TaskRecord],
) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    for agent in agents:
        agent_samples = [s for s in samples if s.agent_id == agent.id]
        agent_tasks = [t for t in tasks if t.agent_id == agent.id]
        items.append(
            {
                "agent_id": agent.id,
                "agent_name": agent.name,
                "agent_type": agent.type,
                "status": agent.status.value,
                "metrics_count": len(agent_samples),
                "tasks_count": len(agent_tasks),
                "avg_response_time": average_response_time(agent_samples),
                "success_rate": success_rate(agent_tasks),
                "metrics": {k: v.to_dict() for k, v in aggregate_metrics(agent_samples).items()},
            }
        )
    return items


def _in_interval(ts: Optional[datetime], start: datetime, end: datetime) -> bool:
    return ts is not None and start <= ts < end


def system_trends(
    samples: Sequence[MetricSample],
    tasks: Sequence[TaskRecord],
    window: timedelta,
    now: datetime,
) -> List[Dict[str, Any]]:
    step = window / TREND_INTERVALS
    window_start = now - window
    trends: List[Dict[str, Any]] = []
    for i in range(TREND_INTERVALS):
        start = window_start + step * i
        end = start + step
        interval_samples = [s for s in samples if _in_interval(s.timestamp, start, end)]
        interval_tasks = [t for t in tasks if _in_interval(t.created_at, start, end)]
        trends.append(
            {
                "interval": i + 1,
                "start_time": start.isoformat(),
                "end_time": end.isoformat(),
                "metrics_count": len(interval_samples),
                "tasks_count": len(interval_tasks),
                "avg_response_time": average_response_time(interval_samples),
            }
        )
    return trends


def error_type(message: str) -> str:
    return message.split(":")[0] or "Unknown"


def error_analysis(logs: Sequence[LogEntry], tasks: Sequence[TaskRecord]) -> Dict[str, Any]:
    errors = _error_logs(logs)
    by_agent: Dict[str, int] = {}
    by_type: Dict[str, int] = {}
    for log in errors:
        agent_key = log.agent_id or "unknown"
        by_agent[agent_key] = by_agent.get(agent_key, 0) + 1
        kind = error_type(log.message)
        by_type[kind] = by_type.get(kind, 0) + 1

    common = sorted(by_type.items(), key=lambda item: item[1], reverse=True)[:TOP_ERROR_TYPES]
    return {
        "total_errors": len(errors),
        "failed_tasks": sum(1 for t in tasks if t.status is TaskStatus.FAILED),
        "errors_by_agent": by_agent,
        "common_error_types": [{"type": kind, "count": count} for kind, count in common],
    }


def performance_recommendations(snapshot: Snapshot) -> List[Dict[str, Any]]:
    recommendations: List[Dict[str, Any]] = []

    avg_response = average_response_time(snapshot.samples)
    if avg_response > SLOW_RESPONSE_THRESHOLD_MS:
        recommendations.append(
            {
                "priority": "high",
                "category": "performance",
                "title": "High Response Times Detected",
                "description": (
                    f"Average response time is {round_int(avg_response)}ms, "
                    f"which exceeds the recommended {SLOW_RESPONSE_THRESHOLD_MS}ms threshold."
                ),
                "actions": ["Optimize agent algorithms", "Scale infrastructure", "Review database queries"],
            }
        )

    error_rate = len(_error_logs(snapshot.logs)) / max(len(snapshot.logs), 1)
    if error_rate > ERROR_RATE_THRESHOLD:
        recommendations.append(
            {
                "priority": "high",
                "category": "reliability",
                "title": "High Error Rate Detected",
                "description": f"Error rate is {round_int(error_rate * 100)}%, which exceeds the recommended 5% threshold.",
                "actions": ["Review error logs", "Implement better error handling", "Add monitoring alerts"],
            }
        )

    inactive = sum(1 for a in snapshot.agents if a.status is not AgentStatus.ACTIVE)
    if inactive > 0:
        recommendations.append(
            {
                "priority": "medium",
                "category": "availability",
                "title": "Inactive Agents Found",
                "description": f"{inactive} agents are currently inactive.",
                "actions": ["Restart inactive agents", "Check agent health", "Review deployment status"],
            }
        )

    return recommendations


def task_breakdown(tasks: Sequence[TaskRecord]) -> Dict[str, Any]:
    by_type: Dict[str, int] = {}
    by_agent: Dict[str, int] = {}
    for task in tasks:
        type_key = task.task_type or "unknown"
        agent_key = task.agent_id or "unknown"
        by_type[type_key] = by_type.get(type_key, 0) + 1
        by_agent[agent_key] = by_agent.get(agent_key, 0) + 1

    durations = [t.duration_ms for t in tasks if t.duration_ms is not None]
    duration_analysis: Dict[str, Any] = {}
    if durations:
        duration_analysis = {
            "count": len(durations),
            "average_ms": mean(durations),
            "min_ms": min(durations),
            "max_ms": max(durations),
            "median_ms": median(durations),
        }
    return {
        "by_type": by_type,
        "by_status": count_by_status(tasks),
        "by_agent": by_agent,
        "duration_analysis": duration_analysis,
    }


def log_analysis(logs: Sequence[LogEntry]) -> Dict[str, Any]:
    by_level: Dict[str, int] = {}
    by_agent: Dict[str, int] = {}
    timeline: Dict[int, int] = {}
    common_messages: Dict[str, int] = {}
    for log in logs:
        by_level[log.level] = by_level.get(log.level, 0) + 1
        agent_key = log.agent_id or "unknown"
        by_agent[agent_key] = by_agent.get(agent_key, 0) + 1
        hour = log.timestamp.astimezone(timezone.utc).hour
        timeline[hour] = timeline.get(hour, 0) + 1
        key = log.message[:MESSAGE_KEY_LENGTH]
        common_messages[key] = common_messages.get(key, 0) + 1
    return {
        "by_level": by_level,
        "by_agent": by_agent,
        "timeline": timeline,
        "common_messages": common_messages,
    }


def build_report(
    snapshot: Snapshot,
    timeframe: str,
    now: datetime,
    detailed: bool = False,
) -> Dict[str, Any]:
    """
    Compose the performance report for one tenant over `timeframe`.

    `snapshot` must already be restricted to the window; this function only
    shapes what it is given. Trend buckets are anchored at `now`.
    """
    window = parse_timeframe(timeframe)
    report: Dict[str, Any] = {
        "timeframe": {
            "duration": timeframe,
            "start_time": (now - window).isoformat(),
            "end_time": now.isoformat(),
        },
        "summary": report_summary(snapshot),
        "agent_performance": agent_performance(snapshot.agents, snapshot.samples, snapshot.tasks),
        "system_trends": system_trends(snapshot.samples, snapshot.tasks, window, now),
        "error_analysis": error_analysis(snapshot.logs, snapshot.tasks),
        "recommendations": performance_recommendations(snapshot),
    }
    if detailed:
        report["detailed_metrics"] = {k: v.to_dict() for k, v in aggregate_metrics(snapshot.samples).items()}
        report["task_breakdown"] = task_breakdown(snapshot.tasks)
        report["log_analysis"] = log_analysis(snapshot.logs)
    return report
