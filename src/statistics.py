from __future__ import annotations

import math
from typing import Optional, Sequence


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return float(ordered[mid])


def percentile(values: Sequence[float], pct: float) -> float:
    """Nearest-rank order statistic: index ceil(pct/100 * n) - 1, clamped."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = math.ceil((pct / 100) * len(ordered)) - 1
    index = min(max(0, index), len(ordered) - 1)
    return float(ordered[index])


def population_std_dev(values: Sequence[float]) -> float:
    # Population (divide by n), not Bessel-corrected.
    if len(values) < 2:
        return 0.0
    avg = mean(values)
    variance = sum((v - avg) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def z_score(value: float, avg: float, std_dev: float) -> Optional[float]:
    if std_dev == 0:
        return None
    return abs(value - avg) / std_dev


def round_half_up(value: float, ndigits: int = 0) -> float:
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def round_int(value: float) -> int:
    return int(math.floor(value + 0.5))


def ratio(numerator: float, denominator: float) -> float:
    return numerator / max(denominator, 1)
