from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.anomaly import detect_anomalies
from src.types import AnomalySeverity, MetricSample, Sensitivity

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _series(values, metric_type: str = "response_time"):  # type: ignore[no-untyped-def]
    return [
        MetricSample(id=f"{metric_type}-{i}", type=metric_type, value=v, timestamp=NOW + timedelta(minutes=i))
        for i, v in enumerate(values)
    ]


def test_constant_series_never_flags_anomalies() -> None:
    samples = _series([120.0] * 12)
    for sensitivity in Sensitivity:
        assert detect_anomalies(samples, sensitivity) == []


def test_empty_and_single_sample_inputs() -> None:
    assert detect_anomalies([], Sensitivity.HIGH) == []
    assert detect_anomalies(_series([5.0]), Sensitivity.HIGH) == []


def test_sensitivity_thresholds() -> None:
    # mean 19, population std-dev 27, outlier z-score exactly 3.0
    samples = _series([10.0] * 9 + [100.0])
    assert detect_anomalies(samples, Sensitivity.LOW) == []

    medium = detect_anomalies(samples, Sensitivity.MEDIUM)
    assert len(medium) == 1
    report = medium[0]
    assert report.metric_id == "response_time-9"
    assert report.type == "response_time"
    assert report.observed_value == 100.0
    assert report.z_score == pytest.approx(3.0)
    assert report.expected_range == pytest.approx((-48.5, 86.5))
    assert report.severity == "medium"

    high = detect_anomalies(samples, Sensitivity.HIGH)
    assert [r.metric_id for r in high] == ["response_time-9"]
    assert high[0].severity == "medium"


def test_high_severity_beyond_one_and_a_half_thresholds() -> None:
    samples = _series([10.0] * 19 + [200.0])
    reports = detect_anomalies(samples, Sensitivity.MEDIUM)
    assert len(reports) == 1
    assert reports[0].z_score > 2.5 * 1.5
    assert reports[0].severity == "high"


def test_output_order_follows_groups_then_samples() -> None:
    samples = _series([10.0] * 9 + [100.0], "latency") + _series([1.0] * 9 + [50.0], "cpu")
    reports = detect_anomalies(samples, Sensitivity.HIGH)
    assert [r.type for r in reports] == ["latency", "cpu"]
    assert detect_anomalies(samples, Sensitivity.HIGH) == reports


def test_anomaly_report_to_dict_shape() -> None:
    report = detect_anomalies(_series([10.0] * 9 + [100.0]), Sensitivity.HIGH)[0]
    payload = report.to_dict()
    assert payload["metric_type"] == "response_time"
    assert payload["value"] == 100.0
    assert isinstance(payload["expected_range"], list)
    assert payload["timestamp"] == (NOW + timedelta(minutes=9)).isoformat()


def test_severity_is_a_closed_variant() -> None:
    report = detect_anomalies(_series([10.0] * 19 + [200.0]), Sensitivity.MEDIUM)[0]
    assert report.severity is AnomalySeverity.HIGH
    payload = report.to_dict()
    assert payload["severity"] == "high"
    assert type(payload["severity"]) is str
