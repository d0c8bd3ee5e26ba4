"""Integration tests for slip evaluation."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from matchday.config.pipeline import EvaluationPolicy
from matchday.models import Cycle, Slip
from matchday.services.cycles import SlipEvaluator


def pick(fixture_id, market, selection, line=None):
    raw = {"fixture_id": fixture_id, "market": market, "selection": selection}
    if line is not None:
        raw["line"] = line
    return raw


@pytest.fixture
def evaluator(session_factory):
    return SlipEvaluator(session_factory, policy=EvaluationPolicy())


async def seed_resolved_cycle(seed, now, cycle_id=1, resolved=True):
    """Fixture 1 ends 2-1 (HT 1-1), fixture 2 ends 0-0, fixture 3 is postponed."""
    kickoff = now - timedelta(hours=6)
    await seed.finished_fixture(1, kickoff, 2, 1, 1, 1)
    await seed.finished_fixture(2, kickoff, 0, 0, 0, 0)
    await seed.fixture(3, kickoff, status="POSTPONED")
    await seed.cycle(
        cycle_id,
        [1, 2, 3],
        now - timedelta(hours=3),
        is_resolved=resolved,
        resolved_at=now - timedelta(minutes=5) if resolved else None,
    )


async def get_slips(session_factory, cycle_id=1):
    async with session_factory() as session:
        result = await session.execute(
            select(Slip).where(Slip.cycle_id == cycle_id).order_by(Slip.slip_id)
        )
        return list(result.scalars().all())


class TestEvaluateCycle:
    @pytest.mark.asyncio
    async def test_slips_are_scored(self, session_factory, seed, evaluator, now):
        await seed_resolved_cycle(seed, now)
        await seed.slip(10, 1, [
            pick(1, "moneyline", "home"),               # correct
            pick(1, "over_under", "over", 2.5),         # correct
            pick(1, "half_time_moneyline", "draw"),     # correct
            pick(2, "both_scored", "no"),               # correct
            pick(2, "moneyline", "away"),               # wrong
            pick(3, "moneyline", "home"),               # postponed
        ])
        await seed.slip(11, 1, [pick(2, "over_under", "over", 1.5)])

        summary = await evaluator.evaluate_cycle(1, now)

        assert summary.evaluated == 2
        assert summary.completed
        first, second = await get_slips(session_factory)
        assert first.is_evaluated
        assert first.correct_count == 4
        assert first.final_score == 40
        assert first.rank == 2
        assert second.correct_count == 0
        assert second.final_score == 0
        assert second.rank is None

        async with session_factory() as session:
            cycle = await session.get(Cycle, 1)
        assert cycle.evaluation_completed
        assert cycle.evaluation_completed_at is not None

    @pytest.mark.asyncio
    async def test_per_pick_detail_is_stored(self, session_factory, seed, evaluator, now):
        await seed_resolved_cycle(seed, now)
        await seed.slip(10, 1, [
            pick(1, "moneyline", "home"),
            pick(2, "moneyline", "away"),
            pick(3, "moneyline", "home"),
            pick(42, "moneyline", "home"),
            {"fixture_id": 1, "market": "moneyline", "selection": "over"},
        ])

        await evaluator.evaluate_cycle(1, now)

        (slip,) = await get_slips(session_factory)
        detail = slip.evaluation_data
        assert len(detail) == 5
        assert detail[0] == {
            "fixture_id": 1,
            "market": "moneyline",
            "predicted": "home",
            "line": None,
            "actual": "home",
            "is_correct": True,
            "reason": None,
        }
        assert (detail[1]["actual"], detail[1]["is_correct"]) == ("draw", False)
        assert (detail[2]["reason"], detail[2]["is_correct"]) == ("void_fixture", False)
        assert (detail[3]["reason"], detail[3]["is_correct"]) == ("no_result", False)
        assert (detail[4]["reason"], detail[4]["is_correct"]) == ("invalid_pick", False)
        assert slip.correct_count == 1

    @pytest.mark.asyncio
    async def test_unresolved_cycle_is_skipped(self, session_factory, seed, evaluator, now):
        await seed_resolved_cycle(seed, now, resolved=False)
        await seed.slip(10, 1, [pick(1, "moneyline", "home")])

        summary = await evaluator.evaluate_cycle(1, now)

        assert summary.skipped_reason == "cycle_not_resolved"
        assert not (await get_slips(session_factory))[0].is_evaluated

    @pytest.mark.asyncio
    async def test_unknown_cycle_is_skipped(self, evaluator, now):
        summary = await evaluator.evaluate_cycle(404, now)
        assert summary.skipped_reason == "cycle_not_found"

    @pytest.mark.asyncio
    async def test_second_run_changes_nothing(self, session_factory, seed, evaluator, now):
        await seed_resolved_cycle(seed, now)
        await seed.slip(10, 1, [pick(1, "moneyline", "home")])

        await evaluator.evaluate_cycle(1, now)
        summary = await evaluator.evaluate_cycle(1, now + timedelta(minutes=5))

        assert summary.evaluated == 0
        slip = (await get_slips(session_factory))[0]
        assert slip.correct_count == 1
        assert slip.evaluated_at is not None

    @pytest.mark.asyncio
    async def test_concurrent_evaluators_score_each_slip_once(self, session_factory, seed, now):
        await seed_resolved_cycle(seed, now)
        for slip_id in range(20, 30):
            await seed.slip(slip_id, 1, [pick(1, "moneyline", "home"), pick(2, "moneyline", "draw")])

        first = SlipEvaluator(session_factory, policy=EvaluationPolicy())
        second = SlipEvaluator(session_factory, policy=EvaluationPolicy())
        summaries = await asyncio.gather(
            first.evaluate_cycle(1, now), second.evaluate_cycle(1, now)
        )

        assert sum(s.evaluated for s in summaries) == 10, "every slip is evaluated by exactly one run"
        slips = await get_slips(session_factory)
        assert all(slip.is_evaluated and slip.correct_count == 2 for slip in slips)

    @pytest.mark.asyncio
    async def test_cycle_without_slips_completes(self, session_factory, seed, evaluator, now):
        await seed_resolved_cycle(seed, now)

        summary = await evaluator.evaluate_cycle(1, now)

        assert summary.total == 0
        assert summary.completed


class TestEvaluateResolvedCycles:
    @pytest.mark.asyncio
    async def test_only_pending_resolved_cycles(self, session_factory, seed, evaluator, now):
        await seed_resolved_cycle(seed, now, cycle_id=1)
        await seed.cycle(2, [1], now - timedelta(hours=3), is_resolved=False)
        await seed.cycle(3, [2], now - timedelta(hours=3), is_resolved=True, evaluation_completed=True)
        await seed.slip(10, 1, [pick(1, "moneyline", "home")])
        await seed.slip(11, 2, [pick(1, "moneyline", "home")])

        stats = await evaluator.evaluate_resolved_cycles(now)

        assert stats == {"cycles": 1, "slips_evaluated": 1, "completed": 1, "errors": 0}
        assert not (await get_slips(session_factory, cycle_id=2))[0].is_evaluated

    @pytest.mark.asyncio
    async def test_corrupt_cycle_is_counted(self, seed, evaluator, now):
        await seed.cycle(5, [], now - timedelta(hours=3), entities=[], is_resolved=True)

        stats = await evaluator.evaluate_resolved_cycles(now)

        assert stats["errors"] == 1
