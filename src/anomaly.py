from __future__ import annotations

from typing import Iterable, List

from .aggregation import group_by_type
from .statistics import mean, population_std_dev, z_score
from .types import AnomalyReport, AnomalySeverity, MetricSample, Sensitivity

HIGH_SEVERITY_MULTIPLIER = 1.5


def detect_anomalies(samples: Iterable[MetricSample], sensitivity: Sensitivity = Sensitivity.MEDIUM) -> List[AnomalyReport]:
    """
    Flag samples whose z-score within their metric type exceeds the
    sensitivity threshold. Groups with zero spread never produce anomalies.
    """
    threshold = sensitivity.threshold
    reports: List[AnomalyReport] = []
    for metric_type, group in group_by_type(samples).items():
        values = [s.value for s in group]
        avg = mean(values)
        std_dev = population_std_dev(values)
        if std_dev == 0:
            continue
        expected = (avg - threshold * std_dev, avg + threshold * std_dev)
        for sample in group:
            score = z_score(sample.value, avg, std_dev)
            if score is None or score <= threshold:
                continue
            reports.append(
                AnomalyReport(
                    metric_id=sample.id,
                    type=metric_type,
                    observed_value=sample.value,
                    expected_range=expected,
                    z_score=score,
                    severity=AnomalySeverity.HIGH if score > threshold * HIGH_SEVERITY_MULTIPLIER else AnomalySeverity.MEDIUM,
                    timestamp=sample.timestamp,
                )
            )
    return reports
