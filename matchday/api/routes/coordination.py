"""Coordinator status API.

Read-only views of locks and execution history for operational tooling,
plus the forced lock release escape hatch.
"""

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from matchday.api.dependencies import get_status_service
from matchday.services.coordination import CoordinationStatusService

router = APIRouter(prefix="/api/coordination", tags=["coordination"])
logger = structlog.get_logger(__name__)


class LockItem(BaseModel):
    job_name: str
    holder_id: str
    locked_at: datetime
    expires_at: datetime


class ExecutionItem(BaseModel):
    execution_id: str
    job_name: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    attempts: int = 0
    holder_id: str | None = None
    error: str | None = None
    result: Any = None
    metadata: dict[str, Any] | None = None


class SystemStatus(BaseModel):
    timestamp: datetime
    active_locks: list[LockItem]
    running_executions: list[ExecutionItem]
    jobs: dict[str, ExecutionItem]


class HealthReport(BaseModel):
    healthy: bool
    issues: list[str]
    checked_at: datetime


class ReleaseResponse(BaseModel):
    job_name: str
    released: bool


@router.get("/status", response_model=SystemStatus)
async def system_status(
    service: CoordinationStatusService = Depends(get_status_service),
):
    """Active locks, running executions and the latest run of every job."""
    return await service.get_system_status()


@router.get("/health", response_model=HealthReport)
async def coordination_health(
    service: CoordinationStatusService = Depends(get_status_service),
):
    """Coordination health. Responds 503 when any issue is found."""
    report = await service.health_check()
    if not report["healthy"]:
        return JSONResponse(status_code=503, content=jsonable_encoder(report))
    return report


@router.get("/history", response_model=list[ExecutionItem])
async def execution_history(
    job_name: str | None = Query(None, description="Only this job"),
    limit: int = Query(50, ge=1, le=500),
    service: CoordinationStatusService = Depends(get_status_service),
):
    """Most recent executions, newest first."""
    return await service.get_execution_history(job_name=job_name, limit=limit)


@router.get("/metrics")
async def performance_metrics(
    limit: int = Query(100, ge=1, le=1000),
    service: CoordinationStatusService = Depends(get_status_service),
) -> dict[str, Any]:
    """Per job totals, success and failure counts, average duration."""
    return await service.get_performance_metrics(limit=limit)


@router.post("/locks/{job_name}/release", response_model=ReleaseResponse)
async def force_release_lock(
    job_name: str,
    service: CoordinationStatusService = Depends(get_status_service),
):
    """
    Forcibly release a job's lock, whoever holds it.

    Use only for a job that is known to be stuck.
    """
    released = await service.force_release_lock(job_name)
    logger.warning("lock_release_requested_via_api", job_name=job_name, released=released)
    return ReleaseResponse(job_name=job_name, released=released)
