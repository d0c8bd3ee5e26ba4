"""Outcome calculator.

Derives the settled facts every market is graded against from raw scores.
``derive_outcomes`` is pure; ``backfill_outcomes`` is the pipeline stage that
fills in rows whose raw scores landed without (all of) their derived columns.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.models.domain import FixtureResult

logger = structlog.get_logger(__name__)

SUPPORTED_LINES = (1.5, 2.5, 3.5)

# Stored codes
HOME, DRAW, AWAY = "1", "X", "2"
OVER, UNDER = "over", "under"
YES, NO = "yes", "no"

LINE_COLUMNS = {1.5: "result_ou15", 2.5: "result_ou25", 3.5: "result_ou35"}


def moneyline(home: int, away: int) -> str:
    if home > away:
        return HOME
    if away > home:
        return AWAY
    return DRAW


def over_under(total: int, line: float) -> str:
    """Anything not strictly over the line is under."""
    return OVER if total > line else UNDER


@dataclass(frozen=True)
class OutcomeSet:
    """Derived outcomes for one fixture."""

    fixture_id: int
    home_score: int
    away_score: int
    moneyline: str
    over_under: dict[float, str] = field(default_factory=dict)
    both_scored: bool = False
    ht_home_score: int | None = None
    ht_away_score: int | None = None
    half_time_moneyline: str | None = None

    @property
    def total_goals(self) -> int:
        return self.home_score + self.away_score

    @property
    def full_score(self) -> str:
        return f"{self.home_score}-{self.away_score}"

    @property
    def ht_score(self) -> str | None:
        if self.ht_home_score is None or self.ht_away_score is None:
            return None
        return f"{self.ht_home_score}-{self.ht_away_score}"

    def as_columns(self) -> dict[str, Any]:
        """Map onto ``fixture_results`` columns."""
        columns = {
            "home_score": self.home_score,
            "away_score": self.away_score,
            "ht_home_score": self.ht_home_score,
            "ht_away_score": self.ht_away_score,
            "result_1x2": self.moneyline,
            "result_btts": YES if self.both_scored else NO,
            "result_ht": self.half_time_moneyline,
            "full_score": self.full_score,
            "ht_score": self.ht_score,
        }
        for line, column in LINE_COLUMNS.items():
            columns[column] = self.over_under.get(line)
        return columns


def _check_pair(fixture_id: int, home: int | None, away: int | None, label: str) -> bool:
    """True when both scores are present; raises on one-sided input."""
    if home is None and away is None:
        return False
    if home is None or away is None:
        raise ValueError(
            f"Fixture {fixture_id}: one-sided {label} score ({home!r}, {away!r})"
        )
    if home < 0 or away < 0:
        raise ValueError(f"Fixture {fixture_id}: negative {label} score ({home}, {away})")
    return True


def derive_outcomes(
    fixture_id: int,
    home_score: int | None,
    away_score: int | None,
    ht_home: int | None = None,
    ht_away: int | None = None,
    lines: tuple[float, ...] = SUPPORTED_LINES,
) -> OutcomeSet:
    """
    Compute every derived outcome for a final score.

    Args:
        fixture_id: Fixture the score belongs to (for error messages)
        home_score: Full-time home goals
        away_score: Full-time away goals
        ht_home: Half-time home goals, if known
        ht_away: Half-time away goals, if known
        lines: Over/under lines to grade

    Raises:
        ValueError: If the full-time score is missing, or either pair is one-sided
    """
    if not _check_pair(fixture_id, home_score, away_score, "full-time"):
        raise ValueError(f"Fixture {fixture_id}: no full-time score")
    has_ht = _check_pair(fixture_id, ht_home, ht_away, "half-time")

    total = home_score + away_score
    return OutcomeSet(
        fixture_id=fixture_id,
        home_score=home_score,
        away_score=away_score,
        moneyline=moneyline(home_score, away_score),
        over_under={line: over_under(total, line) for line in lines},
        both_scored=home_score > 0 and away_score > 0,
        ht_home_score=ht_home if has_ht else None,
        ht_away_score=ht_away if has_ht else None,
        half_time_moneyline=moneyline(ht_home, ht_away) if has_ht else None,
    )


def _needs_outcomes():
    """Rows with derived columns missing."""
    return or_(
        FixtureResult.result_1x2.is_(None),
        FixtureResult.result_ou15.is_(None),
        FixtureResult.result_ou25.is_(None),
        FixtureResult.result_ou35.is_(None),
        FixtureResult.result_btts.is_(None),
        and_(
            FixtureResult.ht_home_score.is_not(None),
            FixtureResult.ht_away_score.is_not(None),
            FixtureResult.result_ht.is_(None),
        ),
    )


async def backfill_outcomes(session: AsyncSession, limit: int = 100) -> dict[str, int]:
    """
    Fill in derived outcomes for results that have raw scores without them.

    Rows with a one-sided full-time score are counted as inconsistent and
    left untouched for an operator. A one-sided half-time pair is also
    inconsistent, but the full-time outcomes are still filled in (with
    ``result_ht`` left null) so the row drops out of later batches.
    """
    stats = {"calculated": 0, "inconsistent": 0, "errors": 0}

    both_scores = and_(
        FixtureResult.home_score.is_not(None),
        FixtureResult.away_score.is_not(None),
    )
    result = await session.execute(
        select(FixtureResult)
        .where(both_scores, _needs_outcomes())
        .order_by(FixtureResult.fixture_id)
        .limit(limit)
    )
    rows = list(result.scalars().all())

    for row in rows:
        ht_one_sided = (row.ht_home_score is None) != (row.ht_away_score is None)
        try:
            outcomes = derive_outcomes(
                row.fixture_id,
                row.home_score,
                row.away_score,
                None if ht_one_sided else row.ht_home_score,
                None if ht_one_sided else row.ht_away_score,
            )
        except Exception as e:
            stats["errors"] += 1
            logger.error("outcome_calculation_error", fixture_id=row.fixture_id, error=str(e))
            continue

        columns = outcomes.as_columns()
        if ht_one_sided:
            # Raw half-time scores stay as stored
            del columns["ht_home_score"], columns["ht_away_score"]
            stats["inconsistent"] += 1
            logger.warning(
                "result_inconsistent",
                fixture_id=row.fixture_id,
                ht_home_score=row.ht_home_score,
                ht_away_score=row.ht_away_score,
            )

        for column, value in columns.items():
            setattr(row, column, value)
        stats["calculated"] += 1

    one_sided = await session.execute(
        select(FixtureResult.fixture_id, FixtureResult.home_score, FixtureResult.away_score)
        .where(
            or_(
                and_(FixtureResult.home_score.is_not(None), FixtureResult.away_score.is_(None)),
                and_(FixtureResult.home_score.is_(None), FixtureResult.away_score.is_not(None)),
            )
        )
        .limit(limit)
    )
    for row in one_sided.all():
        stats["inconsistent"] += 1
        logger.warning(
            "result_inconsistent",
            fixture_id=row.fixture_id,
            home_score=row.home_score,
            away_score=row.away_score,
        )

    await session.commit()

    if stats["calculated"] or stats["inconsistent"]:
        logger.info("outcome_backfill_complete", **stats)
    return stats
