"""Results pipeline policy configuration.

Every timing window, batch size and threshold the coordination and
resolution pipeline relies on lives here. Defaults can be overridden from
the ``pipeline:`` section of ``defaults.yaml``.
"""

from dataclasses import dataclass, field, fields, is_dataclass, replace
from datetime import timedelta
from functools import lru_cache
from typing import Any

import structlog

from matchday.config.settings import get_settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for a coordinated job."""
    attempts: int = 1
    base_delay: float = 5.0      # seconds before the second attempt
    max_delay: float = 60.0
    backoff: float = 2.0         # 1.0 gives a fixed delay

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = self.base_delay * (self.backoff ** (attempt - 1))
        return min(delay, self.max_delay)


@dataclass(frozen=True)
class JobPolicy:
    """Coordination settings for one named job."""
    ttl_minutes: int = 30
    timeout_minutes: int | None = None
    dependencies: tuple[str, ...] = ()
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.ttl_minutes)

    @property
    def timeout_seconds(self) -> float | None:
        if self.timeout_minutes is None:
            return None
        return self.timeout_minutes * 60.0


@dataclass(frozen=True)
class LockPolicy:
    """Job coordination defaults."""
    default_ttl_minutes: int = 15
    dependency_window_minutes: int = 120
    execution_retention_days: int = 14

    # Named jobs
    jobs: dict[str, JobPolicy] = field(default_factory=lambda: {
        "results-pipeline": JobPolicy(
            ttl_minutes=30,
            timeout_minutes=25,
            retry=RetryPolicy(attempts=2, base_delay=30.0, max_delay=120.0),
        ),
        "slip-evaluation": JobPolicy(
            ttl_minutes=10,
            timeout_minutes=8,
            dependencies=("results-pipeline",),
            retry=RetryPolicy(attempts=2, base_delay=10.0),
        ),
        "cycle-evaluation": JobPolicy(
            ttl_minutes=10,
            timeout_minutes=8,
            retry=RetryPolicy(attempts=2, base_delay=10.0),
        ),
        "coordination-maintenance": JobPolicy(ttl_minutes=5, timeout_minutes=4),
    })

    @property
    def dependency_window(self) -> timedelta:
        return timedelta(minutes=self.dependency_window_minutes)

    def for_job(self, job_name: str) -> JobPolicy:
        """
        Get the policy for a job, falling back to the default TTL.

        Scoped job names (``cycle-evaluation:42``) share their base job's policy.
        """
        base_name = job_name.split(":", 1)[0]
        return self.jobs.get(base_name, JobPolicy(ttl_minutes=self.default_ttl_minutes))


@dataclass(frozen=True)
class IngestionPolicy:
    """Status refresh and result ingestion windows."""
    batch_size: int = 50
    chunk_size: int = 25
    request_delay: float = 0.1             # seconds between gateway calls
    result_min_age_minutes: int = 60       # kickoff at least this long ago
    stuck_after_minutes: int = 130         # past kickoff with no final status
    stuck_batch_share: float = 0.5         # of a status batch, while recent fixtures wait
    lookback_days: int = 7
    status_window_before_minutes: int = 240
    status_window_after_minutes: int = 120
    status_recheck_minutes: int = 10
    outcome_backfill_batch: int = 100

    @property
    def stuck_quota(self) -> int:
        """Status batch slots stuck fixtures keep when recent ones are waiting."""
        return max(1, int(self.batch_size * self.stuck_batch_share))

    @property
    def result_min_age(self) -> timedelta:
        return timedelta(minutes=self.result_min_age_minutes)

    @property
    def stuck_after(self) -> timedelta:
        return timedelta(minutes=self.stuck_after_minutes)

    @property
    def lookback(self) -> timedelta:
        return timedelta(days=self.lookback_days)

    @property
    def status_recheck(self) -> timedelta:
        return timedelta(minutes=self.status_recheck_minutes)

    @property
    def status_window_before(self) -> timedelta:
        return timedelta(minutes=self.status_window_before_minutes)

    @property
    def status_window_after(self) -> timedelta:
        return timedelta(minutes=self.status_window_after_minutes)


@dataclass(frozen=True)
class ResolutionPolicy:
    """When an ended cycle may be resolved.

    A cycle is ready once the cooldown after its end time has elapsed and
    at least ``min_settled_ratio`` of its fixtures are settled. Once
    ``max_wait_hours`` have passed since the end time it is resolved with
    whatever results are available.
    """
    cooldown_minutes: int = 120
    min_settled_ratio: float = 0.8
    max_wait_hours: int = 24

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.cooldown_minutes)

    @property
    def max_wait(self) -> timedelta:
        return timedelta(hours=self.max_wait_hours)


@dataclass(frozen=True)
class EvaluationPolicy:
    """Slip scoring."""
    points_per_correct: int = 10
    # (minimum correct picks, rank tier), checked in order
    rank_tiers: tuple[tuple[int, int], ...] = ((6, 1), (4, 2), (2, 3))

    def rank_for(self, correct_count: int) -> int | None:
        for minimum, tier in self.rank_tiers:
            if correct_count >= minimum:
                return tier
        return None


@dataclass(frozen=True)
class HealthPolicy:
    """Thresholds for the coordination health check."""
    stuck_lock_ratio: float = 0.8          # of the lock TTL, or the job timeout if sooner
    stuck_execution_minutes: int = 60
    max_error_rate: float = 0.5
    error_rate_window: int = 10
    error_rate_min_samples: int = 3


@dataclass(frozen=True)
class PipelineConfig:
    """Complete pipeline configuration."""
    locks: LockPolicy = field(default_factory=LockPolicy)
    ingestion: IngestionPolicy = field(default_factory=IngestionPolicy)
    resolution: ResolutionPolicy = field(default_factory=ResolutionPolicy)
    evaluation: EvaluationPolicy = field(default_factory=EvaluationPolicy)
    health: HealthPolicy = field(default_factory=HealthPolicy)


def _apply_overrides(section: Any, overrides: dict[str, Any]) -> Any:
    """Return a copy of a policy dataclass with scalar overrides applied."""
    known = {f.name for f in fields(section)}
    changes = {}
    for key, value in overrides.items():
        if key not in known:
            logger.warning("unknown_pipeline_setting", section=type(section).__name__, key=key)
            continue
        current = getattr(section, key)
        if is_dataclass(current) and isinstance(value, dict):
            changes[key] = _apply_overrides(current, value)
        elif isinstance(current, tuple) and isinstance(value, list):
            changes[key] = tuple(tuple(v) if isinstance(v, list) else v for v in value)
        else:
            changes[key] = value
    return replace(section, **changes)


def load_pipeline_config(overrides: dict[str, Any] | None = None) -> PipelineConfig:
    """Build the pipeline config from defaults plus optional overrides."""
    config = PipelineConfig()
    if not overrides:
        return config
    return _apply_overrides(config, overrides)


@lru_cache
def get_pipeline_config() -> PipelineConfig:
    """Get the pipeline configuration (defaults.yaml ``pipeline`` section applied)."""
    overrides = get_settings().load_defaults_config().get("pipeline") or {}
    return load_pipeline_config(overrides)
