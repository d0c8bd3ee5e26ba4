"""Slip evaluation for resolved cycles.

Every slip is scored exactly once. The flip of ``is_evaluated`` is a
conditional update that only succeeds while the flag is still false, so two
evaluators racing over the same cycle cannot both score a slip.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Collection, Sequence

import structlog
from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config import get_pipeline_config
from matchday.config.pipeline import EvaluationPolicy
from matchday.models.base import utc_now
from matchday.models.domain import Cycle, Slip
from matchday.services.cycles.entities import (
    Market,
    Pick,
    Selection,
    parse_cycle_entities,
    parse_pick,
)
from matchday.services.cycles.resolver import load_settlement
from matchday.services.results.outcomes import (
    AWAY,
    DRAW,
    HOME,
    LINE_COLUMNS,
    NO,
    OVER,
    UNDER,
    YES,
)

logger = structlog.get_logger(__name__)

MONEYLINE_SELECTIONS = {HOME: Selection.HOME, DRAW: Selection.DRAW, AWAY: Selection.AWAY}
OVER_UNDER_SELECTIONS = {OVER: Selection.OVER, UNDER: Selection.UNDER}
BOTH_SCORED_SELECTIONS = {YES: Selection.YES, NO: Selection.NO}


@dataclass
class EvaluationSummary:
    cycle_id: int
    evaluated: int = 0
    total: int = 0
    skipped_reason: str | None = None
    completed: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "evaluated": self.evaluated,
            "total": self.total,
            "skipped_reason": self.skipped_reason,
            "completed": self.completed,
        }


# Why a pick could not be graded
INVALID_PICK = "invalid_pick"
NO_RESULT = "no_result"
VOID_FIXTURE = "void_fixture"
MARKET_UNSETTLED = "market_unsettled"


def winning_selection(pick: Pick, result: dict[str, Any] | None) -> Selection | None:
    """The selection that won ``pick``'s market, or None if not gradeable."""
    if not result:
        return None
    if pick.market == Market.MONEYLINE:
        return MONEYLINE_SELECTIONS.get(result.get("result_1x2"))
    if pick.market == Market.HALF_TIME_MONEYLINE:
        return MONEYLINE_SELECTIONS.get(result.get("result_ht"))
    if pick.market == Market.OVER_UNDER:
        return OVER_UNDER_SELECTIONS.get(result.get(LINE_COLUMNS[pick.line]))
    if pick.market == Market.BOTH_SCORED:
        return BOTH_SCORED_SELECTIONS.get(result.get("result_btts"))
    return None


def grade_pick(
    raw: Any,
    results: dict[int, dict[str, Any]],
    void_ids: Collection[int] = (),
) -> dict[str, Any]:
    """
    Grade one stored prediction.

    Returns the JSON-safe detail kept in ``Slip.evaluation_data``: what was
    predicted, what actually won, whether they match, and when the pick
    could not be graded, why.
    """
    pick = parse_pick(raw)
    if pick is None:
        return {"prediction": raw, "actual": None, "is_correct": False, "reason": INVALID_PICK}

    detail: dict[str, Any] = {
        "fixture_id": pick.fixture_id,
        "market": pick.market.value,
        "predicted": pick.selection.value,
        "line": pick.line,
        "actual": None,
        "is_correct": False,
        "reason": None,
    }
    result = results.get(pick.fixture_id)
    if result is None:
        detail["reason"] = VOID_FIXTURE if pick.fixture_id in void_ids else NO_RESULT
        return detail

    actual = winning_selection(pick, result)
    if actual is None:
        detail["reason"] = MARKET_UNSETTLED
        return detail

    detail["actual"] = actual.value
    detail["is_correct"] = actual == pick.selection
    return detail


def score_predictions(
    predictions: Sequence[Any] | None,
    results: dict[int, dict[str, Any]],
    void_ids: Collection[int] = (),
) -> tuple[int, list[dict[str, Any]]]:
    """
    Grade every pick on a slip.

    Returns the number of correct picks and the per-pick breakdown. A
    malformed pick, or one whose fixture has no settled result (missing,
    unsettled or void), is simply incorrect.
    """
    graded = [grade_pick(raw, results, void_ids) for raw in predictions or []]
    return sum(1 for detail in graded if detail["is_correct"]), graded


class SlipEvaluator:
    """Scores slips of resolved cycles."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy: EvaluationPolicy | None = None,
    ):
        self.session_factory = session_factory
        self.policy = policy or get_pipeline_config().evaluation

    async def evaluate_cycle(self, cycle_id: int, now: datetime | None = None) -> EvaluationSummary:
        """
        Evaluate every pending slip of a resolved cycle.

        Safe to run repeatedly and concurrently: already-evaluated slips are
        left alone, and each slip commits on its own.
        """
        now = now or utc_now()
        summary = EvaluationSummary(cycle_id=cycle_id)
        log = logger.bind(cycle_id=cycle_id)

        async with self.session_factory() as session:
            cycle = await session.get(Cycle, cycle_id)
            if cycle is None:
                summary.skipped_reason = "cycle_not_found"
                return summary
            if not cycle.is_resolved:
                summary.skipped_reason = "cycle_not_resolved"
                log.info("evaluation_skipped", reason=summary.skipped_reason)
                return summary

            entities = parse_cycle_entities(cycle_id, cycle.entities)
            results, void_ids = await load_settlement(
                session, [entity.fixture_id for entity in entities]
            )

            pending = await session.execute(
                select(Slip.slip_id, Slip.predictions)
                .where(Slip.cycle_id == cycle_id, Slip.is_evaluated.is_(False))
                .order_by(Slip.slip_id)
            )
            slips = pending.all()
        summary.total = len(slips)

        for slip_id, predictions in slips:
            correct, graded = score_predictions(predictions, results, void_ids)
            try:
                async with self.session_factory() as session:
                    result = await session.execute(
                        update(Slip)
                        .where(Slip.slip_id == slip_id, Slip.is_evaluated.is_(False))
                        .values(
                            is_evaluated=True,
                            correct_count=correct,
                            final_score=correct * self.policy.points_per_correct,
                            rank=self.policy.rank_for(correct),
                            evaluated_at=now,
                            evaluation_data=graded,
                        )
                    )
                    await session.commit()
            except Exception as e:
                log.error("slip_evaluation_error", slip_id=slip_id, error=str(e))
                continue

            if result.rowcount:
                summary.evaluated += 1
                log.debug("slip_evaluated", slip_id=slip_id, correct_count=correct)

        summary.completed = await self._mark_completed(cycle_id, now)
        log.info("cycle_evaluated", **summary.as_dict())
        return summary

    async def _mark_completed(self, cycle_id: int, now: datetime) -> bool:
        """Set ``evaluation_completed`` once no unevaluated slip remains."""
        pending = exists().where(Slip.cycle_id == cycle_id, Slip.is_evaluated.is_(False))

        async with self.session_factory() as session:
            await session.execute(
                update(Cycle)
                .where(
                    Cycle.cycle_id == cycle_id,
                    Cycle.is_resolved.is_(True),
                    Cycle.evaluation_completed.is_(False),
                    ~pending,
                )
                .values(evaluation_completed=True, evaluation_completed_at=now)
            )
            await session.commit()

            completed = await session.execute(
                select(Cycle.evaluation_completed).where(Cycle.cycle_id == cycle_id)
            )
            return bool(completed.scalar())

    async def evaluate_resolved_cycles(self, now: datetime | None = None) -> dict[str, Any]:
        """Poll trigger: evaluate every resolved cycle not yet fully evaluated."""
        now = now or utc_now()
        stats: dict[str, Any] = {"cycles": 0, "slips_evaluated": 0, "completed": 0, "errors": 0}

        async with self.session_factory() as session:
            result = await session.execute(
                select(Cycle.cycle_id)
                .where(Cycle.is_resolved.is_(True), Cycle.evaluation_completed.is_(False))
                .order_by(Cycle.cycle_id)
            )
            cycle_ids = list(result.scalars().all())

        for cycle_id in cycle_ids:
            stats["cycles"] += 1
            try:
                summary = await self.evaluate_cycle(cycle_id, now)
            except Exception as e:
                stats["errors"] += 1
                logger.error("cycle_evaluation_error", cycle_id=cycle_id, error=str(e))
                continue
            stats["slips_evaluated"] += summary.evaluated
            if summary.completed:
                stats["completed"] += 1

        return stats
