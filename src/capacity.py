from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .statistics import round_half_up, round_int

DEFAULT_GROWTH_RATE = 0.1
DEFAULT_HORIZON_DAYS = 30.0
HISTORY_WINDOW_DAYS = 7
GROWTH_PERIOD_DAYS = 30
NOMINAL_DAILY_CAPACITY = 100
TIMELINE_CHECKPOINTS = (7, 14, 30, 60, 90)


@dataclass(frozen=True)
class ScalingMilestone:
    day: int
    growth_factor: float
    action_required: str

    def to_dict(self) -> Dict[str, Any]:
        return {"day": self.day, "growth_factor": self.growth_factor, "action_required": self.action_required}


@dataclass(frozen=True)
class CapacityProjection:
    current_throughput: float
    projected_throughput: float
    avg_response_time: float
    estimated_response_time: float
    recommendations: List[Dict[str, str]] = field(default_factory=list)
    timeline: List[ScalingMilestone] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_capacity": {
                "throughput_per_day": round_int(self.current_throughput),
                "avg_response_time": round_int(self.avg_response_time),
                "utilization": utilization(self.current_throughput),
            },
            "projected_capacity": {
                "throughput_per_day": round_int(self.projected_throughput),
                "estimated_response_time": round_int(self.estimated_response_time),
                "estimated_utilization": utilization(self.projected_throughput),
            },
            "recommendations": [dict(r) for r in self.recommendations],
            "scaling_timeline": [m.to_dict() for m in self.timeline],
        }


def throughput_per_day(task_count: int, window_days: float = HISTORY_WINDOW_DAYS) -> float:
    if window_days <= 0:
        return 0.0
    return task_count / window_days


def utilization(throughput: float) -> float:
    return min(100.0, throughput / NOMINAL_DAILY_CAPACITY * 100)


def growth_factor(growth_rate: float, days: float) -> float:
    return (1 + growth_rate) ** (days / GROWTH_PERIOD_DAYS)


def capacity_recommendations(current: float, projected: float, avg_response_time: float) -> List[Dict[str, str]]:
    recommendations: List[Dict[str, str]] = []
    if projected > current * 2:
        recommendations.append(
            {
                "priority": "high",
                "action": "Scale infrastructure",
                "reason": "Projected load will exceed current capacity by more than 100%",
            }
        )
    if avg_response_time > 500:
        recommendations.append(
            {
                "priority": "medium",
                "action": "Optimize performance",
                "reason": "Current response time is above optimal threshold",
            }
        )
    if projected > current * 1.5:
        recommendations.append(
            {
                "priority": "medium",
                "action": "Plan capacity increase",
                "reason": "Projected load will exceed current capacity by 50%",
            }
        )
    return recommendations


def scaling_timeline(horizon_days: float, growth_rate: float) -> List[ScalingMilestone]:
    milestones: List[ScalingMilestone] = []
    for day in TIMELINE_CHECKPOINTS:
        if day > horizon_days:
            continue
        factor = growth_factor(growth_rate, day)
        if factor > 1.5:
            action = "Scale up"
        elif factor > 1.2:
            action = "Monitor closely"
        else:
            action = "Normal operation"
        milestones.append(ScalingMilestone(day=day, growth_factor=round_half_up(factor, 2), action_required=action))
    return milestones


def project_capacity(
    current_throughput: float,
    avg_response_time: float,
    growth_rate: float = DEFAULT_GROWTH_RATE,
    horizon_days: float = DEFAULT_HORIZON_DAYS,
) -> CapacityProjection:
    projected = current_throughput * growth_factor(growth_rate, horizon_days)
    load_ratio = projected / current_throughput if current_throughput else 1.0
    return CapacityProjection(
        current_throughput=current_throughput,
        projected_throughput=projected,
        avg_response_time=avg_response_time,
        estimated_response_time=avg_response_time * load_ratio,
        recommendations=capacity_recommendations(current_throughput, projected, avg_response_time),
        timeline=scaling_timeline(horizon_days, growth_rate),
    )
