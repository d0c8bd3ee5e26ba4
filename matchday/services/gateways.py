"""Contracts for the external collaborators the pipeline consumes.

The results pipeline only ever talks to the sports data API and to the
chain through these two protocols; the concrete clients live in
``matchday.services.sportsdata`` and ``matchday.services.chain``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence


@dataclass
class FixtureStatus:
    """Current upstream status of one fixture."""

    fixture_id: int
    status: str


@dataclass
class FixtureScore:
    """Final (or latest known) score of one fixture."""

    fixture_id: int
    status: str
    home_score: int | None = None
    away_score: int | None = None
    ht_home_score: int | None = None
    ht_away_score: int | None = None
    finished_at: datetime | None = None
    source: str = "sportsdata"


@dataclass
class ResolutionReceipt:
    """Confirmed receipt of a resolution transaction."""

    tx_hash: str
    status: int
    block_number: int | None = None
    gas_used: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class IngestionGateway(Protocol):
    """Sports data source. May silently omit ids it has nothing for."""

    async def fetch_statuses(self, fixture_ids: Sequence[int]) -> list[FixtureStatus]: ...

    async def fetch_results(self, fixture_ids: Sequence[int]) -> list[FixtureScore]: ...


class ChainGateway(Protocol):
    """Prediction contract. ``submit_resolution`` returns only once confirmed."""

    async def submit_resolution(
        self, cycle_id: int, payload: dict[str, Any]
    ) -> ResolutionReceipt: ...

    async def is_cycle_resolved(self, cycle_id: int) -> bool: ...
