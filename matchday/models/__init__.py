"""Database models for Matchday."""

from matchday.models.base import Base, async_session_factory, engine, get_db
from matchday.models.domain import (
    FINISHED_STATUSES,
    TERMINAL_STATUSES,
    VOID_STATUSES,
    Cycle,
    Fixture,
    FixtureResult,
    JobLock,
    JobRun,
    Slip,
)

__all__ = [
    # Base
    "Base",
    "engine",
    "async_session_factory",
    "get_db",
    # Coordination
    "JobLock",
    "JobRun",
    # Game state
    "Fixture",
    "FixtureResult",
    "Cycle",
    "Slip",
    # Status groups
    "FINISHED_STATUSES",
    "VOID_STATUSES",
    "TERMINAL_STATUSES",
]
