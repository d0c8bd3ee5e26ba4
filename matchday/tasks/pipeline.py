"""Results pipeline task.

Every 15 minutes each scheduler process asks for the ``results-pipeline``
job. One of them gets the lock and runs the four pipeline stages; the rest
skip. Cycles resolved during the run are handed to ``evaluate_cycle_task``
straight away, the 5-minute evaluation poll covers anything missed.
"""

from typing import Any

import redis.asyncio as redis
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config import get_settings
from matchday.models.base import task_session_factory
from matchday.services.chain import OracleRelayClient
from matchday.services.coordination import JobCoordinator, JobOutcome
from matchday.services.gateways import ChainGateway, IngestionGateway
from matchday.services.pipeline import ResultsPipeline
from matchday.services.sportsdata import SportsDataClient
from matchday.tasks import celery_app, run_async
from matchday.tasks.evaluation import evaluate_cycle_task

logger = structlog.get_logger(__name__)

JOB_NAME = "results-pipeline"


async def run_results_pipeline(
    session_factory: async_sessionmaker[AsyncSession],
    ingestion_gateway: IngestionGateway,
    chain_gateway: ChainGateway | None,
    coordinator: JobCoordinator | None = None,
    trigger: str = "beat",
) -> JobOutcome:
    """Run the pipeline once under the ``results-pipeline`` lock."""
    coordinator = coordinator or JobCoordinator(session_factory)
    pipeline = ResultsPipeline(session_factory, ingestion_gateway, chain_gateway)
    return await coordinator.run_coordinated(
        JOB_NAME,
        pipeline.run,
        metadata={"trigger": trigger},
    )


async def _run_results_pipeline_async(trigger: str) -> dict[str, Any]:
    settings = get_settings()
    if not settings.sportsdata_configured:
        logger.warning("results_pipeline_skipped", reason="sportsdata_not_configured")
        return {"job_name": JOB_NAME, "status": "skipped", "reason": "sportsdata_not_configured"}

    redis_client = redis.from_url(settings.redis_url)
    chain = OracleRelayClient() if settings.chain_configured else None
    try:
        async with task_session_factory() as session_factory:
            async with SportsDataClient(redis_client=redis_client) as sportsdata:
                outcome = await run_results_pipeline(
                    session_factory, sportsdata, chain, trigger=trigger
                )
    finally:
        if chain is not None:
            await chain.close()
        await redis_client.aclose()

    return outcome.as_dict()


# =============================================================================
# Celery Task Wrappers
# =============================================================================

@celery_app.task(bind=True, soft_time_limit=1560, time_limit=1620)
def run_results_pipeline_task(self, trigger: str = "beat") -> dict[str, Any]:
    """
    Scheduled: Every 15 minutes
    Timeout: 26 minutes soft, 27 minutes hard (job timeout 25 minutes)

    1. Refresh fixture statuses (stuck fixtures forced)
    2. Ingest final results
    3. Backfill derived outcomes
    4. Resolve ready cycles, then enqueue their evaluation
    """
    outcome = run_async(_run_results_pipeline_async(trigger))

    result = outcome.get("result") or {}
    for cycle_id in result.get("resolved_cycle_ids", []):
        evaluate_cycle_task.delay(cycle_id)
        logger.info("cycle_evaluation_enqueued", cycle_id=cycle_id)

    return outcome
