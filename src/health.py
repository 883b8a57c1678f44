from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Sequence

from .aggregation import average_response_time
from .statistics import ratio, round_int
from .types import AgentRecord, AgentStatus, MetricSample, TaskRecord, TaskStatus

AVAILABILITY_WEIGHT = 40
TASK_SUCCESS_WEIGHT = 40
RESPONSE_TIME_WEIGHT = 20
# 1000 ms average response time maps to a zero response factor.
RESPONSE_TIME_SATURATION_DIVISOR = 10


@dataclass(frozen=True)
class HealthScore:
    score: int
    status: str
    factors: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "status": self.status, "factors": dict(self.factors)}


def response_time_factor(avg_response_time_ms: float) -> float:
    return max(0.0, 100 - avg_response_time_ms / RESPONSE_TIME_SATURATION_DIVISOR) / 100


def health_status(score: float) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "fair"
    return "poor"


def score_health(
    agents: Sequence[AgentRecord],
    tasks: Sequence[TaskRecord],
    samples: Sequence[MetricSample],
) -> HealthScore:
    active_agents = sum(1 for a in agents if a.status is AgentStatus.ACTIVE)
    completed_tasks = sum(1 for t in tasks if t.status is TaskStatus.COMPLETED)
    avg_response_time = average_response_time(samples)

    availability = ratio(active_agents, len(agents))
    task_success = ratio(completed_tasks, len(tasks))

    raw = (
        availability * AVAILABILITY_WEIGHT
        + task_success * TASK_SUCCESS_WEIGHT
        + response_time_factor(avg_response_time) * RESPONSE_TIME_WEIGHT
    )
    return HealthScore(
        score=round_int(raw),
        status=health_status(raw),
        factors={
            "agent_availability": round_int(availability * 100),
            "task_success_rate": round_int(task_success * 100),
            "avg_response_time": round_int(avg_response_time),
        },
    )


def score_agent_performance(samples: Sequence[MetricSample], tasks: Sequence[TaskRecord]) -> int:
    """Single-agent 0-100 score: 60% task success, 40% response time."""
    if tasks:
        task_success = sum(1 for t in tasks if t.status is TaskStatus.COMPLETED) / len(tasks)
    else:
        task_success = 1.0
    return round_int(task_success * 60 + response_time_factor(average_response_time(samples)) * 40)
