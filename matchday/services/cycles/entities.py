"""Typed views over the JSON stored on cycles and slips.

``cycles.entities`` and ``slips.predictions`` are JSON columns. They are
never used raw: entity lists are validated on read (a corrupt list is an
``InvalidCycleData``), and every prediction entry is parsed into a ``Pick``
whose market and selection come from closed enums.
"""

from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from matchday.services.errors import InvalidCycleData
from matchday.services.results.outcomes import SUPPORTED_LINES

logger = structlog.get_logger(__name__)


class Market(str, Enum):
    MONEYLINE = "moneyline"
    OVER_UNDER = "over_under"
    BOTH_SCORED = "both_scored"
    HALF_TIME_MONEYLINE = "half_time_moneyline"


class Selection(str, Enum):
    HOME = "home"
    DRAW = "draw"
    AWAY = "away"
    OVER = "over"
    UNDER = "under"
    YES = "yes"
    NO = "no"


ALLOWED_SELECTIONS: dict[Market, frozenset[Selection]] = {
    Market.MONEYLINE: frozenset({Selection.HOME, Selection.DRAW, Selection.AWAY}),
    Market.HALF_TIME_MONEYLINE: frozenset({Selection.HOME, Selection.DRAW, Selection.AWAY}),
    Market.OVER_UNDER: frozenset({Selection.OVER, Selection.UNDER}),
    Market.BOTH_SCORED: frozenset({Selection.YES, Selection.NO}),
}


class Pick(BaseModel):
    """One prediction on a slip."""

    model_config = ConfigDict(frozen=True)

    fixture_id: int
    market: Market
    selection: Selection
    line: float | None = None

    @model_validator(mode="after")
    def check_selection(self) -> "Pick":
        if self.selection not in ALLOWED_SELECTIONS[self.market]:
            raise ValueError(
                f"selection {self.selection.value!r} is not valid for {self.market.value}"
            )
        if self.market == Market.OVER_UNDER:
            if self.line is None:
                raise ValueError("over_under pick needs a line")
            if self.line not in SUPPORTED_LINES:
                raise ValueError(f"unsupported line {self.line}")
        elif self.line is not None:
            raise ValueError(f"{self.market.value} pick does not take a line")
        return self


def parse_pick(raw: Any) -> Pick | None:
    """Parse one stored prediction; None when it is malformed."""
    try:
        return Pick.model_validate(raw)
    except ValidationError as e:
        logger.debug("pick_invalid", raw=raw, error=str(e))
        return None


class CycleEntity(BaseModel):
    """One fixture in a cycle, with the line its over/under market is graded at."""

    fixture_id: int
    home_team: str | None = None
    away_team: str | None = None
    start_time: datetime | None = None
    over_under_line: float = Field(default=2.5)

    @model_validator(mode="after")
    def check_line(self) -> "CycleEntity":
        if self.over_under_line not in SUPPORTED_LINES:
            raise ValueError(f"unsupported over/under line {self.over_under_line}")
        return self


def parse_cycle_entities(cycle_id: int, raw: Any) -> list[CycleEntity]:
    """
    Validate a cycle's stored entity list.

    Raises:
        InvalidCycleData: If the list is missing, empty, malformed or
            references the same fixture twice
    """
    if not isinstance(raw, list) or not raw:
        raise InvalidCycleData(cycle_id, "entity list is missing or empty")

    try:
        entities = [CycleEntity.model_validate(item) for item in raw]
    except ValidationError as e:
        raise InvalidCycleData(cycle_id, str(e)) from e

    seen: set[int] = set()
    for entity in entities:
        if entity.fixture_id in seen:
            raise InvalidCycleData(cycle_id, f"fixture {entity.fixture_id} listed twice")
        seen.add(entity.fixture_id)

    return entities
