"""Celery tasks for Matchday.

This module configures Celery and registers all periodic tasks. Every
scheduler process runs the same beat schedule; the job coordinator makes
sure each tick's work runs only once.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog
from celery import Celery
from celery.exceptions import SoftTimeLimitExceeded

from matchday.config import configure_logging, get_settings

settings = get_settings()
configure_logging(settings.log_level)

logger = structlog.get_logger(__name__)

# Create Celery application
celery_app = Celery(
    "matchday",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "matchday.tasks.pipeline",
        "matchday.tasks.evaluation",
        "matchday.tasks.maintenance",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task behavior
    task_track_started=True,
    task_time_limit=600,  # 10 minute hard limit
    task_soft_time_limit=540,  # 9 minute soft limit
    # Result expiration
    result_expires=3600,  # 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Results pipeline - statuses, results, outcomes, resolution every 15 minutes
    "run-results-pipeline": {
        "task": "matchday.tasks.pipeline.run_results_pipeline_task",
        "schedule": 900.0,  # 15 minutes
        "options": {"expires": 840},
    },
    # Slip evaluation poll - every 5 minutes
    "evaluate-resolved-cycles": {
        "task": "matchday.tasks.evaluation.evaluate_resolved_cycles_task",
        "schedule": 300.0,  # 5 minutes
        "options": {"expires": 280},
    },
    # Expired locks, abandoned executions, old history - every 10 minutes
    "sweep-coordination-state": {
        "task": "matchday.tasks.maintenance.sweep_coordination_state_task",
        "schedule": 600.0,  # 10 minutes
        "options": {"expires": 580},
    },
    # Coordination health - every 15 minutes
    "coordination-health": {
        "task": "matchday.tasks.maintenance.coordination_health_task",
        "schedule": 900.0,  # 15 minutes
        "options": {"expires": 840},
    },
}


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """
    Run a coroutine on a fresh event loop owned by this task.

    Celery raises ``SoftTimeLimitExceeded`` from a signal handler, which can
    land in the event loop rather than in the coroutine. In that case the
    coroutine is cancelled and driven to completion before the loop closes,
    so its ``finally`` blocks (lock release above all) still run.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    task = loop.create_task(coro)
    try:
        return loop.run_until_complete(task)
    except SoftTimeLimitExceeded:
        logger.warning("task_soft_time_limit_exceeded", coroutine=task.get_coro().__qualname__)
        if not task.done():
            task.cancel()
            try:
                loop.run_until_complete(task)
            except asyncio.CancelledError:
                logger.info("task_cancelled_after_soft_time_limit")
            except Exception as e:
                logger.error("task_cancellation_error", error=str(e))
        raise
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        asyncio.set_event_loop(None)
        loop.close()
