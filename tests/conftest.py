"""Pytest configuration and fixtures for Matchday tests.

Database tests run against a throwaway SQLite file per test (aiosqlite), so
several sessions, and therefore several simulated scheduler processes, can
share one database. External collaborators are replaced by the in-memory
gateways below.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from matchday.config.pipeline import PipelineConfig, load_pipeline_config
from matchday.models import Base, Cycle, Fixture, FixtureResult, Slip
from matchday.services.gateways import FixtureScore, FixtureStatus, ResolutionReceipt
from matchday.services.results.outcomes import derive_outcomes

NOW = datetime(2026, 10, 17, 18, 0, tzinfo=timezone.utc)


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'matchday.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for tests that pass `now` explicitly."""
    return NOW


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Default policies with no pacing delay between gateway calls."""
    return load_pipeline_config({"ingestion": {"request_delay": 0}})


class Seeder:
    """Inserts game state rows for a test."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def fixture(
        self,
        fixture_id: int,
        kickoff: datetime,
        status: str = "NS",
        **kwargs: Any,
    ) -> None:
        async with self.session_factory() as session:
            session.add(
                Fixture(
                    id=fixture_id,
                    home_team=kwargs.pop("home_team", f"Home {fixture_id}"),
                    away_team=kwargs.pop("away_team", f"Away {fixture_id}"),
                    scheduled_start=kickoff,
                    status=status,
                    **kwargs,
                )
            )
            await session.commit()

    async def result(
        self,
        fixture_id: int,
        home: int,
        away: int,
        ht_home: int | None = None,
        ht_away: int | None = None,
        derived: bool = True,
    ) -> None:
        """Settled result row; ``derived=False`` stores raw scores only."""
        if derived:
            columns = derive_outcomes(fixture_id, home, away, ht_home, ht_away).as_columns()
        else:
            columns = {
                "home_score": home,
                "away_score": away,
                "ht_home_score": ht_home,
                "ht_away_score": ht_away,
            }
        async with self.session_factory() as session:
            session.add(FixtureResult(fixture_id=fixture_id, source="test", **columns))
            await session.commit()

    async def finished_fixture(
        self,
        fixture_id: int,
        kickoff: datetime,
        home: int,
        away: int,
        ht_home: int | None = None,
        ht_away: int | None = None,
    ) -> None:
        await self.fixture(fixture_id, kickoff, status="FT")
        await self.result(fixture_id, home, away, ht_home, ht_away)

    async def cycle(
        self,
        cycle_id: int,
        fixture_ids: Sequence[int],
        end_time: datetime,
        lines: dict[int, float] | None = None,
        **kwargs: Any,
    ) -> None:
        lines = lines or {}
        entities = [
            {"fixture_id": fixture_id, "over_under_line": lines.get(fixture_id, 2.5)}
            for fixture_id in fixture_ids
        ]
        async with self.session_factory() as session:
            session.add(
                Cycle(
                    cycle_id=cycle_id,
                    entities=kwargs.pop("entities", entities),
                    cycle_start_time=kwargs.pop("start_time", end_time - timedelta(hours=24)),
                    cycle_end_time=end_time,
                    **kwargs,
                )
            )
            await session.commit()

    async def slip(
        self,
        slip_id: int,
        cycle_id: int,
        predictions: list[dict[str, Any]],
        owner: str = "0xplayer",
    ) -> None:
        async with self.session_factory() as session:
            session.add(
                Slip(slip_id=slip_id, cycle_id=cycle_id, owner=owner, predictions=predictions)
            )
            await session.commit()


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


# =============================================================================
# Gateways
# =============================================================================

class FakeIngestionGateway:
    """Sports data source backed by dictionaries."""

    def __init__(self):
        self.statuses: dict[int, str] = {}
        self.scores: dict[int, FixtureScore] = {}
        self.status_calls: list[list[int]] = []
        self.result_calls: list[list[int]] = []
        self.fail_with: Exception | None = None

    def finish(
        self,
        fixture_id: int,
        home: int | None,
        away: int | None,
        ht_home: int | None = None,
        ht_away: int | None = None,
        status: str = "FT",
    ) -> None:
        self.statuses[fixture_id] = status
        self.scores[fixture_id] = FixtureScore(
            fixture_id=fixture_id,
            status=status,
            home_score=home,
            away_score=away,
            ht_home_score=ht_home,
            ht_away_score=ht_away,
        )

    async def fetch_statuses(self, fixture_ids: Sequence[int]) -> list[FixtureStatus]:
        self.status_calls.append(list(fixture_ids))
        if self.fail_with:
            raise self.fail_with
        return [
            FixtureStatus(fixture_id=fixture_id, status=self.statuses[fixture_id])
            for fixture_id in fixture_ids
            if fixture_id in self.statuses
        ]

    async def fetch_results(self, fixture_ids: Sequence[int]) -> list[FixtureScore]:
        self.result_calls.append(list(fixture_ids))
        if self.fail_with:
            raise self.fail_with
        return [self.scores[fixture_id] for fixture_id in fixture_ids if fixture_id in self.scores]


class FakeChainGateway:
    """Prediction contract that confirms every submission immediately."""

    def __init__(self):
        self.resolved: set[int] = set()
        self.submissions: list[tuple[int, dict[str, Any]]] = []
        self.fail_with: Exception | None = None
        self.revert = False

    async def submit_resolution(self, cycle_id: int, payload: dict[str, Any]) -> ResolutionReceipt:
        self.submissions.append((cycle_id, payload))
        if self.fail_with:
            raise self.fail_with
        tx_hash = f"0x{cycle_id:064x}"
        if self.revert:
            return ResolutionReceipt(tx_hash=tx_hash, status=0)
        self.resolved.add(cycle_id)
        return ResolutionReceipt(tx_hash=tx_hash, status=1, block_number=1000 + cycle_id)

    async def is_cycle_resolved(self, cycle_id: int) -> bool:
        return cycle_id in self.resolved


@pytest.fixture
def ingestion_gateway() -> FakeIngestionGateway:
    return FakeIngestionGateway()


@pytest.fixture
def chain_gateway() -> FakeChainGateway:
    return FakeChainGateway()
