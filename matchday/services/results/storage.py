"""Persistence of final results.

A settled result touches two tables: the ``fixture_results`` row (raw
scores plus derived outcomes) and the denormalized ``status`` and
``result_info`` on the fixture itself. Both are written in one
transaction per fixture so readers never see one without the other.
"""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.models.base import upsert, utc_now
from matchday.models.domain import FINISHED_STATUSES, Fixture, FixtureResult
from matchday.services.gateways import FixtureScore
from matchday.services.results.outcomes import derive_outcomes

logger = structlog.get_logger(__name__)

SAVED = "saved"
UNCHANGED = "unchanged"


def _result_info(columns: dict[str, Any], source: str) -> dict[str, Any]:
    """JSON copy of the settled result stored on the fixture."""
    return {
        "home_score": columns["home_score"],
        "away_score": columns["away_score"],
        "ht_home_score": columns["ht_home_score"],
        "ht_away_score": columns["ht_away_score"],
        "full_score": columns["full_score"],
        "ht_score": columns["ht_score"],
        "result_1x2": columns["result_1x2"],
        "result_ht": columns["result_ht"],
        "result_btts": columns["result_btts"],
        "source": source,
    }


class ResultStore:
    """Writes final results idempotently, one fixture per transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save_final_result(self, score: FixtureScore, now: datetime | None = None) -> str:
        """
        Upsert the result for ``score.fixture_id``.

        Returns ``"saved"`` when anything changed and ``"unchanged"`` when the
        stored result already matched; in that case only ``fetched_at`` moves.

        Raises:
            ValueError: If the score is missing or one-sided
            LookupError: If the fixture is unknown
        """
        now = now or utc_now()
        outcomes = derive_outcomes(
            score.fixture_id,
            score.home_score,
            score.away_score,
            score.ht_home_score,
            score.ht_away_score,
        )
        columns = outcomes.as_columns()

        async with self.session_factory() as session:
            try:
                fixture = await session.get(Fixture, score.fixture_id)
                if fixture is None:
                    raise LookupError(f"Unknown fixture {score.fixture_id}")
                existing = await session.get(FixtureResult, score.fixture_id)

                if existing is not None and all(
                    getattr(existing, column) == value for column, value in columns.items()
                ):
                    await session.execute(
                        update(FixtureResult)
                        .where(FixtureResult.fixture_id == score.fixture_id)
                        .values(fetched_at=now, updated_at=FixtureResult.updated_at)
                    )
                    outcome = UNCHANGED
                else:
                    finished_at = score.finished_at or now
                    stmt = upsert(session, FixtureResult).values(
                        fixture_id=score.fixture_id,
                        source=score.source,
                        finished_at=finished_at,
                        fetched_at=now,
                        **columns,
                    )
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[FixtureResult.fixture_id],
                        set_={
                            **columns,
                            "source": score.source,
                            "finished_at": func.coalesce(
                                FixtureResult.finished_at, stmt.excluded.finished_at
                            ),
                            "fetched_at": now,
                            "updated_at": now,
                        },
                    )
                    await session.execute(stmt)
                    outcome = SAVED

                # Denormalized status
                if fixture.status not in FINISHED_STATUSES:
                    fixture.status = score.status if score.status in FINISHED_STATUSES else "FT"
                    fixture.status_checked_at = now
                info = _result_info(columns, score.source)
                if fixture.result_info != info:
                    fixture.result_info = info

                await session.commit()
            except Exception:
                await session.rollback()
                raise

        if outcome == SAVED:
            logger.info(
                "result_saved",
                fixture_id=score.fixture_id,
                score=outcomes.full_score,
                ht_score=outcomes.ht_score,
                result_1x2=outcomes.moneyline,
            )
        return outcome
