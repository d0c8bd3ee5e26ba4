"""Results pipeline orchestrator.

Runs the four stages in order, each in its own session:

1. statuses   - refresh fixture statuses (incl. stuck fixtures)
2. results    - ingest final scores
3. outcomes   - backfill derived outcomes
4. resolution - resolve cycles that are ready

A failing stage is logged and recorded, and the next stage still runs.
Only a state divergence aborts the run.
"""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config import get_pipeline_config
from matchday.config.pipeline import PipelineConfig
from matchday.models.base import utc_now
from matchday.services.cycles.resolver import CycleResolver
from matchday.services.errors import ResolutionStateDivergence
from matchday.services.gateways import ChainGateway, IngestionGateway
from matchday.services.results.ingestion import ResultIngestionService
from matchday.services.results.outcomes import backfill_outcomes

logger = structlog.get_logger(__name__)


class ResultsPipeline:
    """One coordinated pass from fixture statuses to resolved cycles."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ingestion_gateway: IngestionGateway,
        chain_gateway: ChainGateway | None = None,
        config: PipelineConfig | None = None,
    ):
        self.session_factory = session_factory
        self.config = config or get_pipeline_config()
        self.ingestion = ResultIngestionService(
            session_factory, ingestion_gateway, policy=self.config.ingestion
        )
        self.resolver = (
            CycleResolver(session_factory, chain_gateway, policy=self.config.resolution)
            if chain_gateway is not None
            else None
        )

    async def _backfill_outcomes(self) -> dict[str, int]:
        async with self.session_factory() as session:
            return await backfill_outcomes(session, self.config.ingestion.outcome_backfill_batch)

    async def _resolve_cycles(self, now: datetime) -> dict[str, Any]:
        if self.resolver is None:
            logger.warning("cycle_resolution_skipped", reason="chain_not_configured")
            return {"skipped": "chain_not_configured"}
        return await self.resolver.resolve_pending_cycles(now)

    async def run(self, now: datetime | None = None) -> dict[str, Any]:
        """
        Run every stage once.

        Returns per-stage stats (or ``{"error": ...}`` for a stage that
        raised) plus ``resolved_cycle_ids``.

        Raises:
            ResolutionStateDivergence: Propagated untouched from resolution
        """
        now = now or utc_now()
        stages = [
            ("statuses", lambda: self.ingestion.refresh_statuses(now)),
            ("results", lambda: self.ingestion.ingest_due_results(now)),
            ("outcomes", self._backfill_outcomes),
            ("resolution", lambda: self._resolve_cycles(now)),
        ]

        summary: dict[str, Any] = {"started_at": now.isoformat(), "resolved_cycle_ids": []}

        for name, stage in stages:
            try:
                summary[name] = await stage()
            except ResolutionStateDivergence:
                raise
            except Exception as e:
                logger.error("pipeline_stage_failed", stage=name, error=str(e))
                summary[name] = {"error": str(e)}

        resolution = summary.get("resolution") or {}
        summary["resolved_cycle_ids"] = list(resolution.get("resolved_cycle_ids", []))

        logger.info(
            "results_pipeline_complete",
            resolved_cycles=len(summary["resolved_cycle_ids"]),
            failed_stages=[name for name, _ in stages if "error" in summary[name]],
        )
        return summary
