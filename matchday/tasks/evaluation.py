"""Slip evaluation tasks.

Two triggers evaluate slips: ``evaluate_cycle_task`` runs right after the
pipeline resolves a cycle, and ``evaluate_resolved_cycles_task`` polls for
any resolved cycle whose evaluation is not complete yet. Evaluation is
idempotent, so the two overlapping is harmless.
"""

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.models.base import task_session_factory
from matchday.services.coordination import JobCoordinator, JobOutcome
from matchday.services.cycles import SlipEvaluator
from matchday.tasks import celery_app, run_async

logger = structlog.get_logger(__name__)


async def evaluate_resolved_cycles(
    session_factory: async_sessionmaker[AsyncSession],
    coordinator: JobCoordinator | None = None,
) -> JobOutcome:
    """Poll trigger, gated on a recent successful results pipeline run."""
    coordinator = coordinator or JobCoordinator(session_factory)
    evaluator = SlipEvaluator(session_factory)
    return await coordinator.run_coordinated(
        "slip-evaluation",
        evaluator.evaluate_resolved_cycles,
    )


async def evaluate_cycle(
    session_factory: async_sessionmaker[AsyncSession],
    cycle_id: int,
    coordinator: JobCoordinator | None = None,
) -> JobOutcome:
    """Event trigger for one freshly resolved cycle."""
    coordinator = coordinator or JobCoordinator(session_factory)
    evaluator = SlipEvaluator(session_factory)

    async def _evaluate() -> dict[str, Any]:
        summary = await evaluator.evaluate_cycle(cycle_id)
        return summary.as_dict()

    return await coordinator.run_coordinated(
        f"cycle-evaluation:{cycle_id}",
        _evaluate,
        metadata={"cycle_id": cycle_id},
    )


async def _evaluate_resolved_cycles_async() -> dict[str, Any]:
    async with task_session_factory() as session_factory:
        outcome = await evaluate_resolved_cycles(session_factory)
    return outcome.as_dict()


async def _evaluate_cycle_async(cycle_id: int) -> dict[str, Any]:
    async with task_session_factory() as session_factory:
        outcome = await evaluate_cycle(session_factory, cycle_id)
    return outcome.as_dict()


# =============================================================================
# Celery Task Wrappers
# =============================================================================

@celery_app.task(bind=True, soft_time_limit=540, time_limit=570)
def evaluate_resolved_cycles_task(self) -> dict[str, Any]:
    """
    Scheduled: Every 5 minutes
    Timeout: 9 minutes soft (job timeout 8 minutes)

    Evaluates every resolved cycle whose evaluation is not complete.
    Skips while the results pipeline has no recent successful run.
    """
    return run_async(_evaluate_resolved_cycles_async())


@celery_app.task(bind=True, soft_time_limit=540, time_limit=570)
def evaluate_cycle_task(self, cycle_id: int) -> dict[str, Any]:
    """Evaluate one cycle. Enqueued by the results pipeline."""
    return run_async(_evaluate_cycle_async(cycle_id))
