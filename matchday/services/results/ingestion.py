"""Result ingestion stages.

Two stages of the results pipeline live here:

1. ``refresh_statuses``: keeps fixture statuses current around kickoff and
   force-refreshes "stuck" fixtures whose upstream status update was dropped.
2. ``ingest_due_results``: fetches final scores for fixtures that should be
   over and have no settled result yet, and persists them.

Both stages are bounded by ``IngestionPolicy.batch_size``, call the gateway
in chunks with a fixed delay between calls, and isolate per-fixture
failures: one bad fixture is counted and the batch carries on.
"""

import asyncio
from datetime import datetime

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config import get_pipeline_config
from matchday.config.pipeline import IngestionPolicy
from matchday.models.base import utc_now
from matchday.models.domain import (
    FINISHED_STATUSES,
    TERMINAL_STATUSES,
    VOID_STATUSES,
    Fixture,
    FixtureResult,
)
from matchday.services.gateways import IngestionGateway
from matchday.services.results.storage import SAVED, ResultStore

logger = structlog.get_logger(__name__)


def _chunks(ids: list[int], size: int):
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


class ResultIngestionService:
    """Pulls statuses and final scores from the sports data gateway."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: IngestionGateway,
        store: ResultStore | None = None,
        policy: IngestionPolicy | None = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.store = store or ResultStore(session_factory)
        self.policy = policy or get_pipeline_config().ingestion

    # =========================================================================
    # Stage 1: statuses
    # =========================================================================

    async def _status_candidates(self, now: datetime) -> tuple[list[int], set[int]]:
        """
        Fixture ids to check, plus the set of stuck ids among them.

        Stuck fixtures rotate by ``status_checked_at`` (never checked first)
        and keep at most ``stuck_quota`` slots while recent fixtures are
        waiting, so fixtures that never go final upstream cannot crowd out
        today's kickoffs.
        """
        policy = self.policy
        not_terminal = Fixture.status.not_in(TERMINAL_STATUSES)
        stuck_cutoff = now - policy.stuck_after

        async with self.session_factory() as session:
            stuck_result = await session.execute(
                select(Fixture.id)
                .where(
                    not_terminal,
                    Fixture.scheduled_start < stuck_cutoff,
                    Fixture.scheduled_start >= now - policy.lookback,
                )
                .order_by(
                    Fixture.status_checked_at.asc().nulls_first(),
                    Fixture.scheduled_start,
                )
                .limit(policy.batch_size)
            )
            stuck_ids = list(stuck_result.scalars().all())

            recent_result = await session.execute(
                select(Fixture.id)
                .where(
                    not_terminal,
                    Fixture.scheduled_start >= stuck_cutoff,
                    Fixture.scheduled_start >= now - policy.status_window_before,
                    Fixture.scheduled_start <= now + policy.status_window_after,
                    or_(
                        Fixture.status_checked_at.is_(None),
                        Fixture.status_checked_at < now - policy.status_recheck,
                    ),
                )
                .order_by(Fixture.scheduled_start)
                .limit(policy.batch_size)
            )
            recent_ids = list(recent_result.scalars().all())

        stuck_ids = stuck_ids[:max(policy.stuck_quota, policy.batch_size - len(recent_ids))]
        recent_ids = recent_ids[:policy.batch_size - len(stuck_ids)]
        return stuck_ids + recent_ids, set(stuck_ids)

    async def refresh_statuses(self, now: datetime | None = None) -> dict[str, int]:
        """
        Refresh upstream statuses for fixtures around kickoff.

        Fixtures checked within ``status_recheck`` are skipped unless they are
        stuck (well past kickoff and still not final), which always get
        re-checked. Only changed statuses are written; every checked fixture
        gets ``status_checked_at`` bumped.
        """
        now = now or utc_now()
        stats = {"checked": 0, "updated": 0, "forced": 0, "errors": 0}

        fixture_ids, stuck_ids = await self._status_candidates(now)
        stats["forced"] = len(stuck_ids)
        if not fixture_ids:
            return stats

        for index, chunk in enumerate(_chunks(fixture_ids, self.policy.chunk_size)):
            if index:
                await asyncio.sleep(self.policy.request_delay)

            try:
                statuses = await self.gateway.fetch_statuses(chunk)
            except Exception as e:
                stats["errors"] += len(chunk)
                logger.error("status_fetch_error", fixture_ids=chunk, error=str(e))
                continue

            requested = set(chunk)
            latest = {s.fixture_id: s.status for s in statuses if s.fixture_id in requested}
            stats["checked"] += len(chunk)

            async with self.session_factory() as session:
                current = await session.execute(
                    select(Fixture.id, Fixture.status).where(Fixture.id.in_(chunk))
                )
                for fixture_id, old_status in current.all():
                    new_status = latest.get(fixture_id)
                    if not new_status or new_status == old_status:
                        continue
                    try:
                        await session.execute(
                            update(Fixture)
                            .where(Fixture.id == fixture_id)
                            .values(status=new_status)
                        )
                    except Exception as e:
                        stats["errors"] += 1
                        logger.error("status_update_error", fixture_id=fixture_id, error=str(e))
                        continue
                    stats["updated"] += 1
                    logger.info(
                        "fixture_status_changed",
                        fixture_id=fixture_id,
                        old_status=old_status,
                        new_status=new_status,
                        forced=fixture_id in stuck_ids,
                    )

                await session.execute(
                    update(Fixture)
                    .where(Fixture.id.in_(chunk))
                    .values(status_checked_at=now)
                )
                await session.commit()

        logger.info("status_refresh_complete", **stats)
        return stats

    # =========================================================================
    # Stage 2: results
    # =========================================================================

    async def _result_candidates(self, now: datetime) -> list[int]:
        """Due fixtures, least recently requested first and newest kickoff first."""
        policy = self.policy
        async with self.session_factory() as session:
            result = await session.execute(
                select(Fixture.id)
                .outerjoin(FixtureResult, FixtureResult.fixture_id == Fixture.id)
                .where(
                    Fixture.scheduled_start <= now - policy.result_min_age,
                    Fixture.scheduled_start >= now - policy.lookback,
                    or_(
                        Fixture.status.in_(FINISHED_STATUSES),
                        and_(
                            Fixture.status.not_in(TERMINAL_STATUSES),
                            Fixture.scheduled_start < now - policy.stuck_after,
                        ),
                    ),
                    or_(
                        FixtureResult.fixture_id.is_(None),
                        FixtureResult.home_score.is_(None),
                        FixtureResult.away_score.is_(None),
                        FixtureResult.result_1x2.is_(None),
                    ),
                )
                .order_by(
                    Fixture.result_checked_at.asc().nulls_first(),
                    Fixture.scheduled_start.desc(),
                )
                .limit(policy.batch_size)
            )
            return list(result.scalars().all())

    async def ingest_due_results(self, now: datetime | None = None) -> dict[str, int]:
        """
        Fetch and persist final scores for fixtures that should be over.

        Ids missing from the gateway response, or returned without a final
        status, are simply not available yet. A one-sided score is rejected
        and counted as an error.
        """
        now = now or utc_now()
        stats = {"fetched": 0, "saved": 0, "unchanged": 0, "pending": 0, "errors": 0}

        fixture_ids = await self._result_candidates(now)
        if not fixture_ids:
            return stats

        for index, chunk in enumerate(_chunks(fixture_ids, self.policy.chunk_size)):
            if index:
                await asyncio.sleep(self.policy.request_delay)

            try:
                scores = await self.gateway.fetch_results(chunk)
            except Exception as e:
                stats["errors"] += len(chunk)
                logger.error("result_fetch_error", fixture_ids=chunk, error=str(e))
                continue

            async with self.session_factory() as session:
                await session.execute(
                    update(Fixture)
                    .where(Fixture.id.in_(chunk))
                    .values(result_checked_at=now)
                )
                await session.commit()

            requested = set(chunk)
            returned = {score.fixture_id: score for score in scores if score.fixture_id in requested}
            stats["fetched"] += len(returned)
            stats["pending"] += len(requested - returned.keys())

            for fixture_id in chunk:
                score = returned.get(fixture_id)
                if score is None:
                    continue

                if score.status not in FINISHED_STATUSES:
                    stats["pending"] += 1
                    if score.status in VOID_STATUSES:
                        logger.info("fixture_void", fixture_id=fixture_id, status=score.status)
                    continue

                if (score.home_score is None) != (score.away_score is None):
                    stats["errors"] += 1
                    logger.warning(
                        "result_rejected_one_sided",
                        fixture_id=fixture_id,
                        home_score=score.home_score,
                        away_score=score.away_score,
                    )
                    continue

                if score.home_score is None:
                    stats["pending"] += 1
                    continue

                try:
                    outcome = await self.store.save_final_result(score, now)
                except Exception as e:
                    stats["errors"] += 1
                    logger.error("result_save_error", fixture_id=fixture_id, error=str(e))
                    continue

                if outcome == SAVED:
                    stats["saved"] += 1
                else:
                    stats["unchanged"] += 1

        logger.info("result_ingestion_complete", **stats)
        return stats
