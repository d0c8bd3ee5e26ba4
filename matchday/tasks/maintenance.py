"""Coordination housekeeping tasks."""

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.models.base import task_session_factory
from matchday.services.coordination import CoordinationStatusService, JobCoordinator, JobOutcome
from matchday.tasks import celery_app, run_async

logger = structlog.get_logger(__name__)


async def sweep_coordination_state(
    session_factory: async_sessionmaker[AsyncSession],
    coordinator: JobCoordinator | None = None,
) -> JobOutcome:
    """
    Delete expired locks, fail abandoned executions and prune old history.

    None of this is needed for correctness: expired locks already read as
    absent. It keeps the tables small and the status API honest.
    """
    coordinator = coordinator or JobCoordinator(session_factory)
    status = CoordinationStatusService(session_factory, lock_store=coordinator.locks)

    async def _sweep() -> dict[str, int]:
        stats = {
            "expired_locks": await coordinator.locks.sweep_expired(),
            "abandoned_executions": await status.reap_abandoned_executions(),
            "pruned_executions": await status.prune_history(),
        }
        if any(stats.values()):
            logger.info("coordination_state_swept", **stats)
        return stats

    return await coordinator.run_coordinated("coordination-maintenance", _sweep)


async def check_coordination_health(
    session_factory: async_sessionmaker[AsyncSession],
) -> dict[str, Any]:
    """Log every current health issue at warning."""
    report = await CoordinationStatusService(session_factory).health_check()
    for issue in report["issues"]:
        logger.warning("coordination_health_issue", issue=issue)
    if report["healthy"]:
        logger.info("coordination_healthy")
    return {
        "healthy": report["healthy"],
        "issues": report["issues"],
        "checked_at": report["checked_at"].isoformat(),
    }


async def _sweep_async() -> dict[str, Any]:
    async with task_session_factory() as session_factory:
        outcome = await sweep_coordination_state(session_factory)
    return outcome.as_dict()


async def _health_async() -> dict[str, Any]:
    async with task_session_factory() as session_factory:
        return await check_coordination_health(session_factory)


# =============================================================================
# Celery Task Wrappers
# =============================================================================

@celery_app.task(bind=True, soft_time_limit=270, time_limit=290)
def sweep_coordination_state_task(self) -> dict[str, Any]:
    """
    Scheduled: Every 10 minutes
    Timeout: 4.5 minutes soft (job timeout 4 minutes)
    """
    return run_async(_sweep_async())


@celery_app.task(bind=True, soft_time_limit=120, time_limit=150)
def coordination_health_task(self) -> dict[str, Any]:
    """
    Scheduled: Every 15 minutes
    Timeout: 2 minutes
    """
    return run_async(_health_async())
