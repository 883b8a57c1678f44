from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import os
import random
import ssl
import time
from typing import Any, Callable, Dict, List, Optional
from urllib import error, request

import certifi
import psycopg

from src.aggregation import aggregate_metrics, average_response_time, success_rate, summarize_tasks
from src.anomaly import detect_anomalies
from src.api.db import StoreError
from src.api.store import PerformanceStore, RecordFilter
from src.capacity import HISTORY_WINDOW_DAYS, project_capacity, throughput_per_day
from src.health import score_agent_performance
from src.logger import logger
from src.statistics import mean, round_int
from src.timeframe import parse_timeframe, timeframe_days
from src.types import AgentRecord, MetricSample, Sensitivity, TaskRecord

TASK_TYPES = ("health_check", "performance_audit", "load_test", "anomaly_detection", "capacity_planning")


class MonitoringServiceError(Exception):
    pass


class MonitoringConfigurationError(MonitoringServiceError):
    pass


class MonitoringRuntimeError(MonitoringServiceError):
    pass


_STORE_FAILURES = (StoreError, psycopg.Error)


def _health_check_timeout_ms() -> int:
    return int(os.getenv("PERF_HEALTH_CHECK_TIMEOUT_MS", "5000"))


@dataclass
class MonitoringContext:
    health_check_timeout_ms: int = 5000
    load_test_seed: Optional[int] = None


def _ssl_context() -> ssl.SSLContext:
    return ssl.create_default_context(cafile=certifi.where())


def probe_agent_health(agent: AgentRecord, timeout_ms: int) -> Dict[str, Any]:
    endpoint = (agent.health_check_url or "").strip()
    details: Dict[str, Any] = {
        "endpoint": endpoint or None,
        "version": agent.version,
        "last_check": datetime.now(timezone.utc).isoformat(),
    }
    if not endpoint:
        return {"status": "unknown", "response_time": 0, "details": details}

    started = time.perf_counter()
    req = request.Request(url=endpoint, method="GET", headers={"Accept": "application/json"})
    timeout_seconds = max(1.0, timeout_ms / 1000.0)
    try:
        with request.urlopen(req, timeout=timeout_seconds, context=_ssl_context()) as resp:
            status_code = int(resp.status)
            resp.read()
    except error.HTTPError as exc:
        details["status_code"] = exc.code
        details["error"] = f"HTTP {exc.code}"
        return {"status": "unhealthy", "response_time": round_int((time.perf_counter() - started) * 1000), "details": details}
    except Exception as exc:
        details["error"] = str(exc)
        return {"status": "unhealthy", "response_time": round_int((time.perf_counter() - started) * 1000), "details": details}

    details["status_code"] = status_code
    return {
        "status": "healthy" if 200 <= status_code < 300 else "unhealthy",
        "response_time": round_int((time.perf_counter() - started) * 1000),
        "details": details,
    }


def identify_performance_issues(samples: List[MetricSample], tasks: List[TaskRecord]) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    if not samples:
        issues.append({"type": "no_metrics", "severity": "low", "message": "No metrics recorded in the time window."})
    avg_response = average_response_time(samples)
    if avg_response > 1000:
        issues.append({"type": "slow_response_time", "severity": "high", "message": f"Average response time is {round_int(avg_response)}ms."})
    elif avg_response > 500:
        issues.append({"type": "slow_response_time", "severity": "medium", "message": f"Average response time is {round_int(avg_response)}ms."})
    if tasks:
        rate = success_rate(tasks)
        if rate < 80:
            issues.append({"type": "low_success_rate", "severity": "high", "message": f"Task success rate is {rate}%."})
        elif rate < 95:
            issues.append({"type": "low_success_rate", "severity": "medium", "message": f"Task success rate is {rate}%."})
    return issues


_ISSUE_RECOMMENDATIONS = {
    "no_metrics": "Verify the agent is reporting metrics",
    "slow_response_time": "Profile slow operations and review upstream latency",
    "low_success_rate": "Inspect failed tasks and agent error logs",
}


def agent_recommendations(issues: List[Dict[str, Any]]) -> List[str]:
    seen: List[str] = []
    for issue in issues:
        text = _ISSUE_RECOMMENDATIONS[issue["type"]]
        if text not in seen:
            seen.append(text)
    return seen


def simulate_load_test(concurrency: int, duration: int, requests_per_second: float, rng: random.Random) -> Dict[str, Any]:
    total_requests = requests_per_second * duration
    base_response_time = 150
    max_response_time = base_response_time * (1 + concurrency * 0.1)
    success = max(0.8, 1 - concurrency * 0.02)
    return {
        "total_requests": total_requests,
        "successful_requests": round_int(total_requests * success),
        "failed_requests": round_int(total_requests * (1 - success)),
        "average_response_time": round_int(base_response_time + rng.random() * (max_response_time - base_response_time)),
        "min_response_time": round_int(base_response_time * 0.8),
        "max_response_time": round_int(max_response_time),
        "requests_per_second_achieved": requests_per_second * success,
        "error_rate": round_int((1 - success) * 100),
        "duration_seconds": duration,
    }


class MonitoringService:
    def __init__(self, store: PerformanceStore, context: MonitoringContext) -> None:
        self.store = store
        self.context = context
        self._rng = random.Random(context.load_test_seed)
        self._handlers: Dict[str, Callable[..., Dict[str, Any]]] = {
            "health_check": self._health_check,
            "performance_audit": self._performance_audit,
            "load_test": self._load_test,
            "anomaly_detection": self._anomaly_detection,
            "capacity_planning": self._capacity_planning,
        }

    def execute(
        self,
        task_type: str,
        target_agents: Optional[List[str]],
        config: Optional[Dict[str, Any]],
        tenant_id: str,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        handler = self._handlers.get(task_type)
        if handler is None:
            raise MonitoringConfigurationError(f"Unsupported monitoring task type: {task_type}")
        logger.info("monitoring task started", task_type=task_type, tenant_id=tenant_id, target_count=len(target_agents or []))
        return handler(
            target_agents=list(target_agents or []),
            config=dict(config or {}),
            tenant_id=tenant_id,
            now=now or datetime.now(timezone.utc),
        )

    def _window_records(self, tenant_id: str, agent_id: str, since: datetime) -> tuple[List[MetricSample], List[TaskRecord]]:
        window = RecordFilter(tenant_id=tenant_id, agent_id=agent_id, since=since)
        try:
            return self.store.fetch_samples(window), self.store.fetch_tasks(window)
        except _STORE_FAILURES as exc:
            raise MonitoringRuntimeError(f"Failed to read records for agent {agent_id}: {exc}") from exc

    def _lookup_agent(self, tenant_id: str, agent_id: str) -> Optional[AgentRecord]:
        try:
            return self.store.get_agent(tenant_id, agent_id)
        except _STORE_FAILURES as exc:
            raise MonitoringRuntimeError(f"Failed to load agent {agent_id}: {exc}") from exc

    def _health_check(self, target_agents: List[str], config: Dict[str, Any], tenant_id: str, now: datetime) -> Dict[str, Any]:
        del config, now
        results: List[Dict[str, Any]] = []
        for agent_id in target_agents:
            try:
                agent = self.store.get_agent(tenant_id, agent_id)
                if agent is None:
                    results.append({"agent_id": agent_id, "status": "not_found", "message": "Agent not found"})
                    continue
                probe = probe_agent_health(agent, self.context.health_check_timeout_ms)
                self.store.touch_health_check(agent.id)
                results.append(
                    {
                        "agent_id": agent_id,
                        "agent_name": agent.name,
                        "agent_type": agent.type,
                        "status": probe["status"],
                        "response_time": probe["response_time"],
                        "details": probe["details"],
                    }
                )
            except Exception as exc:
                logger.warning("agent health check failed", agent_id=agent_id, error=str(exc))
                results.append({"agent_id": agent_id, "status": "error", "message": str(exc)})

        healthy = sum(1 for r in results if r["status"] == "healthy")
        return {
            "task_type": "health_check",
            "total_agents": len(results),
            "healthy_agents": healthy,
            "unhealthy_agents": len(results) - healthy,
            "results": results,
        }

    def _performance_audit(self, target_agents: List[str], config: Dict[str, Any], tenant_id: str, now: datetime) -> Dict[str, Any]:
        time_window = str(config.get("time_window") or "1h")
        since = now - parse_timeframe(time_window)
        audits: List[Dict[str, Any]] = []
        for agent_id in target_agents:
            samples, tasks = self._window_records(tenant_id, agent_id, since)
            issues = identify_performance_issues(samples, tasks)
            audits.append(
                {
                    "agent_id": agent_id,
                    "time_window": time_window,
                    "metrics_summary": {k: v.to_dict() for k, v in aggregate_metrics(samples).items()},
                    "task_performance": summarize_tasks(tasks),
                    "performance_score": score_agent_performance(samples, tasks),
                    "issues": issues,
                    "recommendations": agent_recommendations(issues),
                }
            )
        return {
            "task_type": "performance_audit",
            "audit_results": audits,
            "overall_score": mean([a["performance_score"] for a in audits]),
        }

    def _load_test(self, target_agents: List[str], config: Dict[str, Any], tenant_id: str, now: datetime) -> Dict[str, Any]:
        del now
        concurrency = int(config.get("concurrency") or 10)
        duration = int(config.get("duration") or 60)
        requests_per_second = float(config.get("requests_per_second") or 5)
        results: List[Dict[str, Any]] = []
        for agent_id in target_agents:
            agent = self._lookup_agent(tenant_id, agent_id)
            if agent is None:
                continue
            results.append(
                {
                    "agent_id": agent_id,
                    "agent_type": agent.type,
                    "load_test_config": {
                        "concurrency": concurrency,
                        "duration": duration,
                        "requests_per_second": requests_per_second,
                    },
                    "results": simulate_load_test(concurrency, duration, requests_per_second, self._rng),
                }
            )
        return {"task_type": "load_test", "test_results": results}

    def _anomaly_detection(self, target_agents: List[str], config: Dict[str, Any], tenant_id: str, now: datetime) -> Dict[str, Any]:
        raw_sensitivity = str(config.get("sensitivity") or "medium")
        try:
            sensitivity = Sensitivity(raw_sensitivity)
        except ValueError as exc:
            raise MonitoringConfigurationError(f"Unsupported sensitivity: {raw_sensitivity}") from exc
        time_window = str(config.get("time_window") or "24h")
        since = now - parse_timeframe(time_window)

        found: List[Dict[str, Any]] = []
        for agent_id in target_agents:
            samples, _tasks = self._window_records(tenant_id, agent_id, since)
            reports = detect_anomalies(samples, sensitivity)
            if reports:
                found.append({"agent_id": agent_id, "anomalies": [r.to_dict() for r in reports]})
        return {
            "task_type": "anomaly_detection",
            "detection_config": {"sensitivity": sensitivity.value, "time_window": time_window},
            "anomalies_found": len(found),
            "anomalies": found,
        }

    def _capacity_planning(self, target_agents: List[str], config: Dict[str, Any], tenant_id: str, now: datetime) -> Dict[str, Any]:
        projection_period = str(config.get("projection_period") or "30d")
        growth_rate = config.get("expected_growth_rate")
        growth_rate = 0.1 if growth_rate is None else float(growth_rate)
        horizon_days = timeframe_days(projection_period)
        since = now - timedelta(days=HISTORY_WINDOW_DAYS)

        plans: List[Dict[str, Any]] = []
        for agent_id in target_agents:
            samples, tasks = self._window_records(tenant_id, agent_id, since)
            projection = project_capacity(
                current_throughput=throughput_per_day(len(tasks)),
                avg_response_time=average_response_time(samples),
                growth_rate=growth_rate,
                horizon_days=horizon_days,
            )
            plans.append({"agent_id": agent_id, **projection.to_dict()})
        return {"task_type": "capacity_planning", "planning_results": plans}


def get_monitoring_service(store: PerformanceStore, load_test_seed: Optional[int] = None) -> MonitoringService:
    context = MonitoringContext(health_check_timeout_ms=_health_check_timeout_ms(), load_test_seed=load_test_seed)
    return MonitoringService(store=store, context=context)
