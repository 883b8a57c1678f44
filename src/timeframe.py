from __future__ import annotations

import re
from datetime import timedelta

DEFAULT_WINDOW = timedelta(hours=24)

_UNITS = {
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}
_PATTERN = re.compile(r"^\s*(\d+)\s*([hdw])\s*$")


def parse_timeframe(value: str | None) -> timedelta:
    """Parse "<integer><h|d|w>" into a window; anything else means 24 hours."""
    match = _PATTERN.match(value or "")
    if not match:
        return DEFAULT_WINDOW
    return int(match.group(1)) * _UNITS[match.group(2)]


def timeframe_days(value: str | None) -> float:
    return parse_timeframe(value) / timedelta(days=1)
