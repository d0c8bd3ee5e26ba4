"""Domain models for Matchday.

Two groups of tables live here:

- Coordination state shared by every scheduler process: ``job_locks`` (the
  single arbiter of who runs a named job) and ``job_runs`` (execution history).
- Game state moved through the results pipeline: fixtures, their settled
  results, cycles and the prediction slips placed on them.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from matchday.models.base import Base, JSONType, TimestampMixin

# Upstream fixture status codes
FINISHED_STATUSES = frozenset({"FT", "AET", "PEN", "FT_PEN"})
VOID_STATUSES = frozenset({"CANC", "CANCELLED", "POST", "POSTPONED", "ABAN", "ABANDONED"})
TERMINAL_STATUSES = FINISHED_STATUSES | VOID_STATUSES


class JobLock(Base):
    """
    Cross-process mutex for a named recurring job.

    A row whose ``expires_at`` has passed is treated as absent. Rows are
    only ever inserted, replaced by an acquire that found them expired, or
    deleted.
    """

    __tablename__ = "job_locks"

    job_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    locked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    holder_id: Mapped[str] = mapped_column(String(200), nullable=False)

    def __repr__(self) -> str:
        return f"<JobLock {self.job_name} holder={self.holder_id} expires={self.expires_at}>"


class JobRun(Base):
    """
    Execution record for one coordinated job run.

    Every run that acquired its lock is logged here for:
    1. Dependency checks between jobs
    2. Health checks and error-rate alerting
    3. Detecting stuck runs
    """

    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    execution_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, doc="'running', 'completed', 'failed'"
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    holder_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    job_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True
    )

    __table_args__ = (
        Index("idx_job_runs_job_started", "job_name", "started_at"),
        Index("idx_job_runs_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<JobRun {self.job_name} status={self.status}>"


class Fixture(Base, TimestampMixin):
    """
    Single match, as known from the sports data API.

    ``status`` is the upstream short code and is denormalized from the
    settled result once one exists (``result_info`` holds a JSON copy).
    """

    __tablename__ = "fixtures"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    home_team: Mapped[str] = mapped_column(String(200), nullable=False)
    away_team: Mapped[str] = mapped_column(String(200), nullable=False)
    league_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    scheduled_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default="NS", nullable=False)
    status_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    result_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    result_info: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    result: Mapped["FixtureResult | None"] = relationship(
        "FixtureResult", back_populates="fixture", uselist=False
    )

    __table_args__ = (
        Index("idx_fixtures_scheduled_status", "scheduled_start", "status"),
    )

    def __repr__(self) -> str:
        return f"<Fixture {self.id} {self.home_team} v {self.away_team} ({self.status})>"


class FixtureResult(Base):
    """
    Settlement data for one fixture.

    Raw scores are both present or both null. Derived outcome columns stay
    null until the raw scores exist; a row is settled once the full-time
    outcomes are filled in.
    """

    __tablename__ = "fixture_results"

    fixture_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("fixtures.id"), primary_key=True, autoincrement=False
    )

    # Raw scores
    home_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    away_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ht_home_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ht_away_score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Derived outcomes
    result_1x2: Mapped[str | None] = mapped_column(String(1), nullable=True, doc="1, X, 2")
    result_ou15: Mapped[str | None] = mapped_column(String(5), nullable=True)
    result_ou25: Mapped[str | None] = mapped_column(String(5), nullable=True)
    result_ou35: Mapped[str | None] = mapped_column(String(5), nullable=True)
    result_btts: Mapped[str | None] = mapped_column(String(3), nullable=True, doc="yes, no")
    result_ht: Mapped[str | None] = mapped_column(
        String(1), nullable=True, doc="Half-time 1, X, 2"
    )
    full_score: Mapped[str | None] = mapped_column(String(10), nullable=True)
    ht_score: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # Metadata
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    fetched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, doc="Last time the source confirmed this result"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    fixture: Mapped["Fixture"] = relationship("Fixture", back_populates="result")

    @property
    def has_scores(self) -> bool:
        return self.home_score is not None and self.away_score is not None

    @property
    def is_settled(self) -> bool:
        return self.has_scores and None not in (
            self.result_1x2,
            self.result_ou15,
            self.result_ou25,
            self.result_ou35,
            self.result_btts,
        )

    def __repr__(self) -> str:
        if self.has_scores:
            return f"<FixtureResult {self.fixture_id}: {self.home_score}-{self.away_score}>"
        return f"<FixtureResult {self.fixture_id}: pending>"


class Cycle(Base):
    """
    A daily batch of fixtures that open, close and settle together.

    ``entities`` is stored as JSON but always read through
    ``matchday.services.cycles.entities.parse_cycle_entities``.
    """

    __tablename__ = "cycles"

    cycle_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    entities: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    cycle_start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cycle_end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Resolution
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_tx_hash: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ready_for_resolution: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolution_prepared_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolution_payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Evaluation
    evaluation_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    evaluation_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    slips: Mapped[list["Slip"]] = relationship("Slip", back_populates="cycle")

    __table_args__ = (
        Index("idx_cycles_pending", "is_resolved", "cycle_end_time"),
    )

    def __repr__(self) -> str:
        return f"<Cycle {self.cycle_id} resolved={self.is_resolved}>"


class Slip(Base):
    """A player's full set of picks for one cycle."""

    __tablename__ = "slips"

    slip_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    owner: Mapped[str] = mapped_column(String(100), nullable=False)
    cycle_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("cycles.cycle_id"), nullable=False
    )
    predictions: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    placed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Evaluation
    is_evaluated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    correct_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    final_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    evaluated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    evaluation_data: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONType, nullable=True
    )

    cycle: Mapped["Cycle"] = relationship("Cycle", back_populates="slips")

    __table_args__ = (
        Index("idx_slips_cycle_evaluated", "cycle_id", "is_evaluated"),
    )

    def __repr__(self) -> str:
        return f"<Slip {self.slip_id} cycle={self.cycle_id} evaluated={self.is_evaluated}>"
