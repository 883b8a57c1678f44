from __future__ import annotations

import os
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID, uuid4

import structlog
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.aggregation import aggregate_metrics
from src.api.services.monitoring import (
    TASK_TYPES,
    MonitoringConfigurationError,
    MonitoringService,
    get_monitoring_service,
)
from src.api.store import PerformanceStore, RecordFilter, get_store
from src.logger import logger
from src.overview import build_overview
from src.report import build_report
from src.timeframe import parse_timeframe

MonitoringTaskType = Literal["health_check", "performance_audit", "load_test", "anomaly_detection", "capacity_planning"]
SensitivityLevel = Literal["low", "medium", "high"]

MONITOR_AGENT_TYPE = "performance-monitor"
SERVICE_VERSION = "1.0.0"

OPENAPI_TAGS = [
    {"name": "System", "description": "Liveness and dependency health checks."},
    {"name": "Performance", "description": "System overview, performance reports, and monitoring tasks."},
]

app = FastAPI(title="Agent Performance Monitor API", version="v1", openapi_tags=OPENAPI_TAGS)
REQUEST_ID_CTX: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def _default_tenant_id() -> str:
    return os.getenv("PERF_DEFAULT_TENANT_ID", "default")


def _error(code: str, message: str, http_status: int) -> None:
    raise HTTPException(
        status_code=http_status,
        detail={"ok": False, "error": {"code": code, "message": message}},
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def require_tenant(x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-Id", max_length=200)) -> str:
    tenant = (x_tenant_id or "").strip()
    return tenant or _default_tenant_id()


def get_monitoring(store: PerformanceStore = Depends(get_store)) -> MonitoringService:
    return get_monitoring_service(store)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    token = REQUEST_ID_CTX.set(request_id)
    structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()
        REQUEST_ID_CTX.reset(token)
    response.headers["X-Request-Id"] = request_id
    return response


@app.middleware("http")
async def api_versioning_middleware(request: Request, call_next):
    original_path = request.url.path
    is_v1 = original_path.startswith("/api/v1/")
    if is_v1:
        request.scope["path"] = "/api" + original_path[len("/api/v1") :]

    response = await call_next(request)

    if original_path.startswith("/api/"):
        response.headers["X-API-Version"] = "v1"
    return response


class MonitoringConfig(BaseModel):
    time_window: Optional[str] = Field(default=None, max_length=20)
    sensitivity: Optional[SensitivityLevel] = None
    concurrency: Optional[int] = Field(default=None, ge=1, le=1000)
    duration: Optional[int] = Field(default=None, ge=1, le=3600)
    requests_per_second: Optional[float] = Field(default=None, gt=0)
    projection_period: Optional[str] = Field(default=None, max_length=20)
    expected_growth_rate: Optional[float] = Field(default=None, gt=-1)


class MonitoringTaskRequest(BaseModel):
    task_type: MonitoringTaskType
    target_agents: List[str] = Field(default_factory=list)
    monitoring_config: MonitoringConfig = Field(default_factory=MonitoringConfig)
    task_id: Optional[UUID] = None


class HealthData(BaseModel):
    status: str


class HealthResponse(BaseModel):
    ok: bool
    data: HealthData


class EnvelopeResponse(BaseModel):
    ok: bool
    data: Dict[str, Any]


@app.exception_handler(HTTPException)
async def http_exception_handler(_, exc: HTTPException):  # type: ignore[override]
    if isinstance(exc.detail, dict) and "ok" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": {"code": "HTTP_ERROR", "message": str(exc.detail)}},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(_, exc: RequestValidationError):  # type: ignore[override]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content={
            "ok": False,
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed.",
                "details": exc.errors(),
            },
        },
    )


@app.get("/health", response_model=HealthResponse, tags=["System"])
def health() -> Dict[str, Any]:
    return {"ok": True, "data": {"status": "healthy"}}


@app.get("/api/performance/health", response_model=EnvelopeResponse, tags=["System"])
def performance_health(store: PerformanceStore = Depends(get_store)):
    try:
        aggregate_metrics([])
        capabilities: Dict[str, Any] = {"status": "ok", "capabilities": list(TASK_TYPES)}
    except Exception as exc:
        capabilities = {"status": "error", "error": str(exc)}

    dependencies = {"database": store.ping(), "monitoring_capabilities": capabilities}
    healthy = all(dep.get("status") == "ok" for dep in dependencies.values())
    payload = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": _utc_now().isoformat(),
        "version": SERVICE_VERSION,
        "agent_type": MONITOR_AGENT_TYPE,
        "dependencies": dependencies,
    }
    if not healthy:
        logger.warning("performance monitor unhealthy", dependencies=dependencies)
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"ok": healthy, "data": payload},
    )


@app.get("/api/performance/overview", response_model=EnvelopeResponse, tags=["Performance"])
def system_overview(
    tenant_id: str = Depends(require_tenant),
    store: PerformanceStore = Depends(get_store),
) -> Dict[str, Any]:
    now = _utc_now()
    try:
        inputs = store.fetch_overview(tenant_id, now)
    except Exception as exc:
        logger.exception("system overview failed", tenant_id=tenant_id)
        _error("OVERVIEW_FAILED", f"Failed to load system overview: {exc}", status.HTTP_500_INTERNAL_SERVER_ERROR)

    overview = build_overview(
        agents=inputs["agents"],
        recent_samples=inputs["recent_samples"],
        recent_tasks=inputs["recent_tasks"],
        recent_errors=inputs["recent_errors"],
        now=now,
        metrics_last_24h=inputs["metrics_last_24h"],
    )
    return {"ok": True, "data": {"overview": overview, "generated_at": now.isoformat()}}


@app.get("/api/performance/report", response_model=EnvelopeResponse, tags=["Performance"])
def performance_report(
    timeframe: str = Query(default="24h", max_length=20),
    agent_types: Optional[str] = Query(default=None, max_length=1000),
    detailed: bool = Query(default=False),
    tenant_id: str = Depends(require_tenant),
    store: PerformanceStore = Depends(get_store),
) -> Dict[str, Any]:
    now = _utc_now()
    types = [t.strip() for t in agent_types.split(",") if t.strip()] if agent_types else None
    window = RecordFilter(tenant_id=tenant_id, since=now - parse_timeframe(timeframe), agent_types=types)
    try:
        snapshot = store.fetch_snapshot(window)
    except Exception as exc:
        logger.exception("performance report failed", tenant_id=tenant_id, timeframe=timeframe)
        _error("REPORT_FAILED", f"Failed to load report data: {exc}", status.HTTP_500_INTERNAL_SERVER_ERROR)

    report = build_report(snapshot, timeframe=timeframe, now=now, detailed=detailed)
    return {"ok": True, "data": {"report": report, "generated_at": now.isoformat()}}


def _record_task_failure(
    store: PerformanceStore,
    agent_id: str,
    tenant_id: str,
    task_id: Optional[str],
    response_time_ms: float,
    message: str,
) -> None:
    try:
        store.record_metrics(agent_id, tenant_id, response_time_ms, success=False)
        if task_id:
            store.fail_task(task_id, message)
    except Exception:
        logger.exception("failed to record monitoring task failure", agent_id=agent_id, task_id=task_id)


@app.post("/api/performance/tasks", response_model=EnvelopeResponse, tags=["Performance"])
def run_monitoring_task(
    payload: MonitoringTaskRequest = Body(
        ...,
        examples=[
            {
                "task_type": "anomaly_detection",
                "target_agents": ["5d4b1d2e-6f1e-4a55-9c1b-3f0f1f7a9e21"],
                "monitoring_config": {"sensitivity": "high", "time_window": "24h"},
            }
        ],
    ),
    tenant_id: str = Depends(require_tenant),
    store: PerformanceStore = Depends(get_store),
    monitoring: MonitoringService = Depends(get_monitoring),
) -> Dict[str, Any]:
    started = time.perf_counter()
    task_id = str(payload.task_id) if payload.task_id else None
    config = payload.monitoring_config.model_dump(exclude_none=True)

    try:
        agent = store.find_agent_by_type(tenant_id, MONITOR_AGENT_TYPE)
    except Exception as exc:
        logger.exception("monitor agent lookup failed", tenant_id=tenant_id)
        _error("MONITOR_LOOKUP_FAILED", f"Failed to load performance monitor agent: {exc}", status.HTTP_500_INTERNAL_SERVER_ERROR)
    if agent is None:
        _error("AGENT_NOT_FOUND", "Performance monitor agent not found for this tenant.", status.HTTP_404_NOT_FOUND)

    if task_id:
        try:
            store.create_task(
                task_id=task_id,
                agent_id=agent.id,
                tenant_id=tenant_id,
                task_type="performance_monitoring",
                input_data={
                    "task_type": payload.task_type,
                    "target_agents": payload.target_agents,
                    "monitoring_config": config,
                },
            )
        except Exception as exc:
            _error("TASK_CREATE_FAILED", f"Failed to create task record: {exc}", status.HTTP_400_BAD_REQUEST)

    try:
        result = monitoring.execute(
            task_type=payload.task_type,
            target_agents=payload.target_agents,
            config=config,
            tenant_id=tenant_id,
        )
        response_time_ms = round((time.perf_counter() - started) * 1000, 2)
        # fail_task only updates pending/running rows; a completed task stays completed.
        if task_id:
            store.complete_task(task_id, result)
        store.record_metrics(agent.id, tenant_id, response_time_ms, success=True)
        store.record_activity(
            agent.id,
            tenant_id,
            "info",
            f"Executed monitoring task: {payload.task_type}",
            {
                "response_time": response_time_ms,
                "task_type": payload.task_type,
                "target_count": len(payload.target_agents),
            },
        )
    except MonitoringConfigurationError as exc:
        _record_task_failure(store, agent.id, tenant_id, task_id, (time.perf_counter() - started) * 1000, str(exc))
        _error("MONITORING_CONFIG_INVALID", str(exc), status.HTTP_400_BAD_REQUEST)
    except Exception as exc:
        logger.exception("monitoring task failed", task_type=payload.task_type, task_id=task_id)
        _record_task_failure(store, agent.id, tenant_id, task_id, (time.perf_counter() - started) * 1000, str(exc))
        _error("MONITORING_TASK_FAILED", f"Monitoring task failed: {exc}", status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info("monitoring task completed", task_type=payload.task_type, task_id=task_id, response_time_ms=response_time_ms)

    return {
        "ok": True,
        "data": {
            "result": result,
            "metadata": {
                "response_time_ms": response_time_ms,
                "task_type": payload.task_type,
                "task_id": task_id,
                "timestamp": _utc_now().isoformat(),
            },
        },
    }
