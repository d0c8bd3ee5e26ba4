"""Cycle resolution state machine.

    ACTIVE ──(end time passes)──> ENDED ──(cooldown + enough settled)──> READY ──(confirmed on-chain)──> RESOLVED

A cycle is READY once the cooldown after its end time has elapsed and at
least ``ceil(total * min_settled_ratio)`` of its fixtures are settled. If
that never happens, ``max_wait`` after the end time it becomes READY anyway
and unsettled fixtures resolve as "not set". Void fixtures (cancelled,
postponed, abandoned) count as settled and always resolve as "not set".

The local ``is_resolved`` flag is only ever set after the chain confirmed
the resolution (or already reports the cycle resolved).
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Sequence

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config import get_pipeline_config
from matchday.config.pipeline import ResolutionPolicy
from matchday.models.base import as_utc, utc_now
from matchday.models.domain import VOID_STATUSES, Cycle, Fixture, FixtureResult
from matchday.services.cycles.entities import CycleEntity, parse_cycle_entities
from matchday.services.errors import InvalidCycleData, ResolutionStateDivergence
from matchday.services.gateways import ChainGateway
from matchday.services.results.outcomes import LINE_COLUMNS

logger = structlog.get_logger(__name__)

# Contract result codes
MONEYLINE_CODES = {"1": 1, "X": 2, "2": 3}     # 0 = not set
OVER_UNDER_CODES = {"over": 1, "under": 2}     # 0 = not set


class CycleState(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"
    READY = "ready"
    RESOLVED = "resolved"


@dataclass
class ReadinessReport:
    """Where a cycle stands, and why."""

    cycle_id: int
    state: CycleState
    reason: str
    total: int = 0
    settled: int = 0
    required: int = 0
    entities: list[CycleEntity] = field(default_factory=list, repr=False)

    @property
    def ready(self) -> bool:
        return self.state == CycleState.READY

    def as_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "state": self.state.value,
            "reason": self.reason,
            "total": self.total,
            "settled": self.settled,
            "required": self.required,
        }


def assess_cycle(
    cycle: Cycle,
    settled_ids: set[int],
    now: datetime,
    policy: ResolutionPolicy,
) -> ReadinessReport:
    """
    Decide which state a cycle is in.

    Pure: ``settled_ids`` holds the cycle's fixtures that have a settled
    result or a void status.

    Raises:
        InvalidCycleData: If the cycle's entity list is corrupt
    """
    entities = parse_cycle_entities(cycle.cycle_id, cycle.entities)
    total = len(entities)
    settled = sum(1 for entity in entities if entity.fixture_id in settled_ids)
    required = math.ceil(total * policy.min_settled_ratio)
    end = as_utc(cycle.cycle_end_time)

    report = ReadinessReport(
        cycle_id=cycle.cycle_id,
        state=CycleState.ENDED,
        reason="awaiting_results",
        total=total,
        settled=settled,
        required=required,
        entities=entities,
    )

    if cycle.is_resolved:
        report.state, report.reason = CycleState.RESOLVED, "already_resolved"
    elif now < end:
        report.state, report.reason = CycleState.ACTIVE, "cycle_active"
    elif now < end + policy.cooldown:
        report.reason = "cooling_down"
    elif settled >= required:
        report.state, report.reason = CycleState.READY, "threshold_met"
    elif now >= end + policy.max_wait:
        report.state, report.reason = CycleState.READY, "max_wait_elapsed"

    return report


def build_resolution_payload(
    cycle_id: int,
    entities: Sequence[CycleEntity],
    results: dict[int, dict[str, Any]],
) -> dict[str, Any]:
    """
    Encode per-fixture results as contract codes, in entity order.

    ``results`` maps fixture id to its ``fixture_results`` columns; fixtures
    missing from it (unsettled or void) encode as 0, "not set".
    """
    encoded = []
    for entity in entities:
        row = results.get(entity.fixture_id) or {}
        encoded.append({
            "fixture_id": entity.fixture_id,
            "moneyline": MONEYLINE_CODES.get(row.get("result_1x2"), 0),
            "over_under": OVER_UNDER_CODES.get(row.get(LINE_COLUMNS[entity.over_under_line]), 0),
            "line": entity.over_under_line,
        })
    return {"cycle_id": cycle_id, "results": encoded}


async def load_settlement(
    session: AsyncSession,
    fixture_ids: Sequence[int],
) -> tuple[dict[int, dict[str, Any]], set[int]]:
    """
    Settled results and void fixtures among ``fixture_ids``.

    Returns ``(results, void_ids)``; ``results`` only holds settled rows.
    """
    if not fixture_ids:
        return {}, set()

    result = await session.execute(
        select(FixtureResult).where(FixtureResult.fixture_id.in_(fixture_ids))
    )
    results = {
        row.fixture_id: {
            "result_1x2": row.result_1x2,
            "result_ht": row.result_ht,
            "result_btts": row.result_btts,
            **{column: getattr(row, column) for column in LINE_COLUMNS.values()},
        }
        for row in result.scalars().all()
        if row.is_settled
    }

    void = await session.execute(
        select(Fixture.id).where(
            Fixture.id.in_(fixture_ids),
            Fixture.status.in_(VOID_STATUSES),
        )
    )
    void_ids = set(void.scalars().all()) - results.keys()
    return results, void_ids


class CycleResolver:
    """Moves ended cycles to RESOLVED through the chain gateway."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        chain: ChainGateway,
        policy: ResolutionPolicy | None = None,
    ):
        self.session_factory = session_factory
        self.chain = chain
        self.policy = policy or get_pipeline_config().resolution

    async def resolve_pending_cycles(self, now: datetime | None = None) -> dict[str, Any]:
        """Try to resolve every ended, unresolved cycle, oldest first."""
        now = now or utc_now()
        stats: dict[str, Any] = {
            "checked": 0,
            "resolved": 0,
            "not_ready": 0,
            "errors": 0,
            "resolved_cycle_ids": [],
        }

        async with self.session_factory() as session:
            result = await session.execute(
                select(Cycle.cycle_id)
                .where(Cycle.is_resolved.is_(False), Cycle.cycle_end_time <= now)
                .order_by(Cycle.cycle_end_time, Cycle.cycle_id)
            )
            cycle_ids = list(result.scalars().all())

        for cycle_id in cycle_ids:
            stats["checked"] += 1
            try:
                outcome = await self.resolve_cycle(cycle_id, now)
            except ResolutionStateDivergence:
                raise
            except InvalidCycleData as e:
                stats["errors"] += 1
                logger.error("cycle_data_invalid", cycle_id=cycle_id, error=str(e))
                continue
            except Exception as e:
                stats["errors"] += 1
                logger.error("cycle_resolution_error", cycle_id=cycle_id, error=str(e))
                continue

            if outcome["status"] == "resolved":
                stats["resolved"] += 1
                stats["resolved_cycle_ids"].append(cycle_id)
            elif outcome["status"] == "not_ready":
                stats["not_ready"] += 1
            elif outcome["status"] == "submission_failed":
                stats["errors"] += 1

        if stats["checked"]:
            logger.info(
                "cycle_resolution_complete",
                checked=stats["checked"],
                resolved=stats["resolved"],
                not_ready=stats["not_ready"],
                errors=stats["errors"],
            )
        return stats

    async def resolve_cycle(self, cycle_id: int, now: datetime | None = None) -> dict[str, Any]:
        """
        Resolve one cycle if it is ready.

        Returns a dict with ``status`` one of ``resolved``, ``already_resolved``,
        ``not_ready`` or ``submission_failed``.

        Raises:
            LookupError: If the cycle does not exist
            InvalidCycleData: If its entity list is corrupt
            ResolutionStateDivergence: If the chain confirmed but the local
                update failed
        """
        now = now or utc_now()
        log = logger.bind(cycle_id=cycle_id)

        # 1. Readiness, and persist the prepared payload
        async with self.session_factory() as session:
            cycle = await session.get(Cycle, cycle_id)
            if cycle is None:
                raise LookupError(f"Unknown cycle {cycle_id}")
            if cycle.is_resolved:
                return {"cycle_id": cycle_id, "status": "already_resolved"}

            entities = parse_cycle_entities(cycle_id, cycle.entities)
            results, void_ids = await load_settlement(
                session, [entity.fixture_id for entity in entities]
            )
            report = assess_cycle(cycle, set(results) | void_ids, now, self.policy)

            if not report.ready:
                log.info("cycle_not_ready", **report.as_dict())
                return {"cycle_id": cycle_id, "status": "not_ready", "report": report.as_dict()}

            payload = build_resolution_payload(cycle_id, entities, results)
            cycle.resolution_payload = payload
            cycle.ready_for_resolution = True
            cycle.resolution_prepared_at = now
            await session.commit()

        if report.reason == "max_wait_elapsed":
            log.warning(
                "cycle_resolving_after_max_wait",
                settled=report.settled,
                total=report.total,
                required=report.required,
            )

        # 2. Reconcile with chain state, then submit
        try:
            already_on_chain = await self.chain.is_cycle_resolved(cycle_id)
        except Exception as e:
            log.error("chain_state_check_failed", error=str(e))
            return {"cycle_id": cycle_id, "status": "submission_failed", "error": str(e)}

        tx_hash = None
        if already_on_chain:
            log.warning("cycle_already_resolved_on_chain")
        else:
            try:
                receipt = await self.chain.submit_resolution(cycle_id, payload)
            except Exception as e:
                log.error("cycle_submission_failed", error=str(e))
                return {"cycle_id": cycle_id, "status": "submission_failed", "error": str(e)}
            if not receipt.succeeded:
                log.error("cycle_submission_reverted", tx_hash=receipt.tx_hash)
                return {
                    "cycle_id": cycle_id,
                    "status": "submission_failed",
                    "error": f"transaction {receipt.tx_hash} reverted",
                }
            tx_hash = receipt.tx_hash

        # 3. Mark resolved, exactly once
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    update(Cycle)
                    .where(Cycle.cycle_id == cycle_id, Cycle.is_resolved.is_(False))
                    .values(is_resolved=True, resolved_at=now, resolution_tx_hash=tx_hash)
                )
                await session.commit()
        except Exception as e:
            raise ResolutionStateDivergence(cycle_id, tx_hash, e) from e

        if not result.rowcount:
            log.warning("cycle_resolved_concurrently", tx_hash=tx_hash)
            return {"cycle_id": cycle_id, "status": "already_resolved"}

        log.info(
            "cycle_resolved",
            tx_hash=tx_hash,
            reconciled=already_on_chain,
            settled=report.settled,
            total=report.total,
            reason=report.reason,
        )
        return {
            "cycle_id": cycle_id,
            "status": "resolved",
            "tx_hash": tx_hash,
            "reason": report.reason,
        }


def derive_state(cycle: Cycle, now: datetime) -> CycleState:
    """State from stored flags alone, for listings."""
    if cycle.is_resolved:
        return CycleState.RESOLVED
    if now < as_utc(cycle.cycle_end_time):
        return CycleState.ACTIVE
    if cycle.ready_for_resolution:
        return CycleState.READY
    return CycleState.ENDED


async def get_resolution_status(
    session: AsyncSession,
    limit: int = 20,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Most recent cycles with their resolution and evaluation state."""
    now = now or utc_now()
    result = await session.execute(
        select(Cycle).order_by(Cycle.cycle_id.desc()).limit(limit)
    )
    return [
        {
            "cycle_id": cycle.cycle_id,
            "state": derive_state(cycle, now).value,
            "cycle_end_time": as_utc(cycle.cycle_end_time),
            "is_resolved": cycle.is_resolved,
            "resolved_at": as_utc(cycle.resolved_at),
            "resolution_tx_hash": cycle.resolution_tx_hash,
            "ready_for_resolution": cycle.ready_for_resolution,
            "evaluation_completed": cycle.evaluation_completed,
            "evaluation_completed_at": as_utc(cycle.evaluation_completed_at),
            "entity_count": len(cycle.entities or []),
        }
        for cycle in result.scalars().all()
    ]
