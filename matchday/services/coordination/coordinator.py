"""Coordinated execution of named recurring jobs.

Several scheduler processes run the same beat schedule. For every tick
each of them calls ``JobCoordinator.run_coordinated``; the lock store lets
exactly one of them through and the others skip quietly. Skips (lock held,
dependency not ready) are the normal outcome and are never reported as
failures. Genuine failures are retried per the job's ``RetryPolicy`` and
finally recorded as a failed ``job_runs`` row. The lock is always released.
"""

import asyncio
import inspect
import json
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config import get_pipeline_config
from matchday.config.pipeline import LockPolicy, RetryPolicy
from matchday.models.base import as_utc, utc_now
from matchday.models.domain import JobRun
from matchday.services.coordination.locks import LockStore
from matchday.services.errors import ResolutionStateDivergence

logger = structlog.get_logger(__name__)

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"

JobCallable = Callable[[], Awaitable[Any] | Any]


@dataclass
class JobOutcome:
    """What happened to one coordinated run request."""

    job_name: str
    status: str
    execution_id: str | None = None
    result: Any = None
    error: str | None = None
    reason: str | None = None
    attempts: int = 0
    duration_ms: int | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return self.status == STATUS_SKIPPED

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_COMPLETED

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_name": self.job_name,
            "status": self.status,
            "execution_id": self.execution_id,
            "result": _json_safe(self.result),
            "error": self.error,
            "reason": self.reason,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
            "details": self.details,
        }


def _json_safe(value: Any) -> Any:
    """Coerce a job result into something the JSON column accepts."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


class JobCoordinator:
    """Runs callables under a named lock with dependency gating and retry."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_store: LockStore | None = None,
        policy: LockPolicy | None = None,
    ):
        self.session_factory = session_factory
        self.locks = lock_store or LockStore(session_factory)
        self.policy = policy or get_pipeline_config().locks

    async def run_coordinated(
        self,
        job_name: str,
        fn: JobCallable,
        *,
        dependencies: Sequence[str] | None = None,
        ttl: timedelta | None = None,
        retry: RetryPolicy | None = None,
        timeout: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> JobOutcome:
        """
        Run ``fn`` at most once across all processes for this tick.

        Arguments left as None fall back to the job's configured policy.
        Never raises for skips or job failures; the returned ``JobOutcome``
        carries the status. Cancellation still propagates after the run is
        recorded and the lock released.
        """
        job_policy = self.policy.for_job(job_name)
        dependencies = job_policy.dependencies if dependencies is None else tuple(dependencies)
        ttl = ttl or job_policy.ttl
        retry = retry or job_policy.retry
        timeout = timeout if timeout is not None else job_policy.timeout_seconds
        log = logger.bind(job_name=job_name, holder_id=self.locks.holder_id)

        # 1. Dependency gate
        if dependencies:
            unmet = await self.unmet_dependencies(dependencies)
            if unmet:
                log.info("job_skipped", reason="dependency_not_ready", dependencies=unmet)
                return JobOutcome(
                    job_name=job_name,
                    status=STATUS_SKIPPED,
                    reason="dependency_not_ready",
                    details={"dependencies": unmet},
                )

        # 2. Lock
        if not await self.locks.acquire(job_name, ttl):
            log.info("job_skipped", reason="locked")
            return JobOutcome(job_name=job_name, status=STATUS_SKIPPED, reason="locked")

        execution_id = uuid.uuid4().hex
        started_at = utc_now()
        started_clock = time.monotonic()
        progress = {"attempts": 0}
        log = log.bind(execution_id=execution_id)

        try:
            # 3. Execution record
            await self._start_record(job_name, execution_id, started_at, metadata)
            log.info("job_started", ttl_seconds=ttl.total_seconds(), timeout_seconds=timeout)

            try:
                run = self._run_with_retry(job_name, fn, retry, ttl, started_clock, progress)
                if timeout:
                    result = await asyncio.wait_for(run, timeout=timeout)
                else:
                    result = await run
            except asyncio.CancelledError:
                duration_ms = _elapsed_ms(started_clock)
                await self._finalize(
                    execution_id, STATUS_FAILED, duration_ms, progress["attempts"],
                    error="cancelled",
                )
                log.error("job_cancelled", duration_ms=duration_ms)
                raise
            except Exception as e:
                # 4. Failure
                duration_ms = _elapsed_ms(started_clock)
                error = _describe(e, timeout)
                await self._finalize(
                    execution_id, STATUS_FAILED, duration_ms, progress["attempts"],
                    error=error,
                )
                if isinstance(e, ResolutionStateDivergence):
                    log.critical(
                        "job_state_divergence",
                        error=error,
                        cycle_id=e.cycle_id,
                        tx_hash=e.tx_hash,
                    )
                else:
                    log.error(
                        "job_failed",
                        error=error,
                        attempts=progress["attempts"],
                        duration_ms=duration_ms,
                    )
                return JobOutcome(
                    job_name=job_name,
                    status=STATUS_FAILED,
                    execution_id=execution_id,
                    error=error,
                    attempts=progress["attempts"],
                    duration_ms=duration_ms,
                )

            # 4. Success
            duration_ms = _elapsed_ms(started_clock)
            await self._finalize(
                execution_id, STATUS_COMPLETED, duration_ms, progress["attempts"],
                result=result,
            )
            log.info("job_completed", attempts=progress["attempts"], duration_ms=duration_ms)
            return JobOutcome(
                job_name=job_name,
                status=STATUS_COMPLETED,
                execution_id=execution_id,
                result=result,
                attempts=progress["attempts"],
                duration_ms=duration_ms,
            )

        finally:
            # 5. Always release, whatever happened above
            await self.locks.release(job_name)

    async def _run_with_retry(
        self,
        job_name: str,
        fn: JobCallable,
        retry: RetryPolicy,
        ttl: timedelta,
        started_clock: float,
        progress: dict[str, int],
    ) -> Any:
        """Call ``fn`` until it succeeds or the retry budget is spent."""
        budget = ttl.total_seconds()

        while True:
            progress["attempts"] += 1
            attempt = progress["attempts"]
            try:
                result = fn()
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as e:
                if attempt >= retry.attempts or not getattr(e, "retryable", True):
                    raise

                delay = retry.delay_for(attempt)
                elapsed = time.monotonic() - started_clock
                if elapsed + delay >= budget:
                    logger.warning(
                        "job_retry_budget_exhausted",
                        job_name=job_name,
                        attempt=attempt,
                        elapsed_seconds=round(elapsed, 1),
                        ttl_seconds=budget,
                    )
                    raise

                logger.warning(
                    "job_attempt_failed",
                    job_name=job_name,
                    attempt=attempt,
                    max_attempts=retry.attempts,
                    retry_in=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

    async def unmet_dependencies(
        self,
        dependencies: Sequence[str],
        now: datetime | None = None,
    ) -> dict[str, str]:
        """
        Check each dependency's latest run.

        Returns a mapping of dependency name to the reason it is not
        satisfied; empty when every dependency completed recently enough.
        """
        now = now or utc_now()
        window_start = now - self.policy.dependency_window
        unmet = {}

        async with self.session_factory() as session:
            for name in dependencies:
                result = await session.execute(
                    select(JobRun.status, JobRun.completed_at)
                    .where(JobRun.job_name == name)
                    .order_by(JobRun.started_at.desc(), JobRun.id.desc())
                    .limit(1)
                )
                latest = result.first()
                if latest is None:
                    unmet[name] = "never_run"
                elif latest.status != STATUS_COMPLETED:
                    unmet[name] = f"latest_{latest.status}"
                elif as_utc(latest.completed_at) < window_start:
                    unmet[name] = "stale"

        return unmet

    async def _start_record(
        self,
        job_name: str,
        execution_id: str,
        started_at: datetime,
        metadata: dict[str, Any] | None,
    ) -> None:
        async with self.session_factory() as session:
            session.add(
                JobRun(
                    execution_id=execution_id,
                    job_name=job_name,
                    status=STATUS_RUNNING,
                    started_at=started_at,
                    attempts=0,
                    holder_id=self.locks.holder_id,
                    job_metadata=_json_safe(metadata),
                )
            )
            await session.commit()

    async def _finalize(
        self,
        execution_id: str,
        status: str,
        duration_ms: int,
        attempts: int,
        error: str | None = None,
        result: Any = None,
    ) -> None:
        """Finalize a running record. A record is only ever finalized once."""
        async with self.session_factory() as session:
            await session.execute(
                update(JobRun)
                .where(
                    JobRun.execution_id == execution_id,
                    JobRun.status == STATUS_RUNNING,
                )
                .values(
                    status=status,
                    completed_at=utc_now(),
                    duration_ms=duration_ms,
                    attempts=attempts,
                    error_message=error,
                    result=_json_safe(result),
                )
            )
            await session.commit()


def _elapsed_ms(started_clock: float) -> int:
    return int((time.monotonic() - started_clock) * 1000)


def _describe(error: Exception, timeout: float | None) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return f"timed out after {timeout}s"
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__
