"""Operator routes for membership background jobs."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from ...scheduler import ManualTriggerTimeout
from ..jobs import HealthReport
from ..schemas.jobs import (
    JobHistoryResponse,
    JobStatisticsResponse,
    TriggerControlResponse,
    TriggerJobResponse,
)
from ..services.lifecycle import get_engine_config, get_scheduler

router = APIRouter(prefix="/api/memberships/jobs", tags=["membership-jobs"])


@router.post("/{job_name}/run", response_model=TriggerJobResponse)
def run_job(job_name: str) -> TriggerJobResponse:
    scheduler = get_scheduler()
    if not scheduler.knows(job_name):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown job {job_name}")

    timeout = get_engine_config().manual_trigger_timeout_seconds
    try:
        success = scheduler.trigger_manually(job_name, timeout=timeout)
    except ManualTriggerTimeout as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc)) from exc
    return TriggerJobResponse(job_name=job_name, success=success)


@router.post("/triggers/{trigger_name}/start", response_model=TriggerControlResponse)
def start_trigger(trigger_name: str) -> TriggerControlResponse:
    if not get_scheduler().start(trigger_name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown trigger {trigger_name}")
    return TriggerControlResponse(trigger=trigger_name, running=True)


@router.post("/triggers/{trigger_name}/stop", response_model=TriggerControlResponse)
def stop_trigger(trigger_name: str) -> TriggerControlResponse:
    if not get_scheduler().stop(trigger_name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown trigger {trigger_name}")
    return TriggerControlResponse(trigger=trigger_name, running=False)


@router.get("/health", response_model=HealthReport)
def read_health() -> HealthReport:
    return get_scheduler().health_check()


@router.get("/history", response_model=JobHistoryResponse)
def read_history(
    job_name: Optional[str] = Query(None, alias="jobName"),
    limit: int = Query(50, ge=1, le=500),
) -> JobHistoryResponse:
    executions = get_scheduler().list_history(job_name=job_name, limit=limit)
    return JobHistoryResponse(executions=list(executions))


@router.get("/statistics", response_model=JobStatisticsResponse)
def read_statistics(window_days: int = Query(30, alias="windowDays", ge=1, le=365)) -> JobStatisticsResponse:
    statistics = get_scheduler().statistics(window_days=window_days)
    return JobStatisticsResponse(window_days=window_days, statistics=list(statistics))


__all__ = ["router"]
