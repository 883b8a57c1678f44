from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentStatus(str, Enum):
    DEPLOYING = "deploying"
    ACTIVE = "active"
    ERROR = "error"
    INACTIVE = "inactive"


class Sensitivity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def threshold(self) -> float:
        return SENSITIVITY_THRESHOLDS[self]


SENSITIVITY_THRESHOLDS: Dict[Sensitivity, float] = {
    Sensitivity.LOW: 3.0,
    Sensitivity.MEDIUM: 2.5,
    Sensitivity.HIGH: 2.0,
}


class AnomalySeverity(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class MetricSample:
    type: str
    value: float
    timestamp: datetime
    unit: str = ""
    id: Optional[str] = None
    agent_id: Optional[str] = None


@dataclass(frozen=True)
class TaskRecord:
    id: str
    agent_id: Optional[str]
    status: TaskStatus
    task_type: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.status is not TaskStatus.COMPLETED or not self.started_at or not self.completed_at:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000


@dataclass(frozen=True)
class AgentRecord:
    id: str
    type: str
    status: AgentStatus
    name: str = ""
    version: Optional[str] = None
    health_check_url: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class LogEntry:
    agent_id: Optional[str]
    level: str
    message: str
    timestamp: datetime
    id: Optional[str] = None


@dataclass(frozen=True)
class AnomalyReport:
    metric_id: Optional[str]
    type: str
    observed_value: float
    expected_range: Tuple[float, float]
    z_score: float
    severity: AnomalySeverity
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_id": self.metric_id,
            "metric_type": self.type,
            "value": self.observed_value,
            "expected_range": [self.expected_range[0], self.expected_range[1]],
            "z_score": self.z_score,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "severity": self.severity.value,
        }


@dataclass(frozen=True)
class Snapshot:
    """Complete, already-fetched view of one tenant's records."""

    agents: List[AgentRecord] = field(default_factory=list)
    samples: List[MetricSample] = field(default_factory=list)
    tasks: List[TaskRecord] = field(default_factory=list)
    logs: List[LogEntry] = field(default_factory=list)


def parse_task_status(value: Any) -> TaskStatus:
    try:
        return TaskStatus(str(value))
    except ValueError as exc:
        raise ValueError(f"Unknown task status: {value!r}") from exc


def parse_agent_status(value: Any) -> AgentStatus:
    try:
        return AgentStatus(str(value))
    except ValueError as exc:
        raise ValueError(f"Unknown agent status: {value!r}") from exc
