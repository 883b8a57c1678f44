from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Sequence

from .statistics import mean, median, percentile, population_std_dev, round_int
from .types import MetricSample, TaskRecord, TaskStatus

RESPONSE_TIME = "response_time"


@dataclass(frozen=True)
class MetricSummary:
    count: int
    min: float
    max: float
    average: float
    median: float
    percentile_95: float
    standard_deviation: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def group_by_type(samples: Iterable[MetricSample]) -> Dict[str, List[MetricSample]]:
    # dict keeps first-seen order, which downstream output relies on.
    groups: Dict[str, List[MetricSample]] = {}
    for sample in samples:
        groups.setdefault(sample.type, []).append(sample)
    return groups


def summarize_values(values: Sequence[float]) -> MetricSummary:
    if not values:
        return MetricSummary(count=0, min=0.0, max=0.0, average=0.0, median=0.0, percentile_95=0.0, standard_deviation=0.0)
    return MetricSummary(
        count=len(values),
        min=float(min(values)),
        max=float(max(values)),
        average=mean(values),
        median=median(values),
        percentile_95=percentile(values, 95),
        standard_deviation=population_std_dev(values),
    )


def aggregate_metrics(samples: Iterable[MetricSample]) -> Dict[str, MetricSummary]:
    return {
        metric_type: summarize_values([s.value for s in group])
        for metric_type, group in group_by_type(samples).items()
    }


def average_response_time(samples: Iterable[MetricSample]) -> float:
    return mean([s.value for s in samples if s.type == RESPONSE_TIME])


def count_by_status(tasks: Iterable[TaskRecord]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for task in tasks:
        counts[task.status.value] = counts.get(task.status.value, 0) + 1
    return counts


def success_rate(tasks: Sequence[TaskRecord]) -> int:
    if not tasks:
        return 0
    completed = sum(1 for t in tasks if t.status is TaskStatus.COMPLETED)
    return round_int(completed / len(tasks) * 100)


def summarize_tasks(tasks: Sequence[TaskRecord]) -> Dict[str, Any]:
    durations = [t.duration_ms for t in tasks if t.duration_ms is not None]
    return {
        "total": len(tasks),
        "by_status": count_by_status(tasks),
        "average_duration_ms": round_int(mean(durations)),
        "success_rate": success_rate(tasks),
    }
