"""Coordination status, history and health for operational tooling."""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config import get_pipeline_config
from matchday.config.pipeline import PipelineConfig
from matchday.models.base import as_utc, utc_now
from matchday.models.domain import JobLock, JobRun
from matchday.services.coordination.coordinator import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_RUNNING,
)
from matchday.services.coordination.locks import LockStore

logger = structlog.get_logger(__name__)


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def serialize_run(run: JobRun) -> dict[str, Any]:
    return {
        "execution_id": run.execution_id,
        "job_name": run.job_name,
        "status": run.status,
        "started_at": as_utc(run.started_at),
        "completed_at": as_utc(run.completed_at),
        "duration_ms": run.duration_ms,
        "attempts": run.attempts,
        "holder_id": run.holder_id,
        "error": run.error_message,
        "result": run.result,
        "metadata": run.job_metadata,
    }


def serialize_lock(lock: JobLock) -> dict[str, Any]:
    return {
        "job_name": lock.job_name,
        "holder_id": lock.holder_id,
        "locked_at": as_utc(lock.locked_at),
        "expires_at": as_utc(lock.expires_at),
    }


class CoordinationStatusService:
    """Read side of the coordination tables, plus operator actions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_store: LockStore | None = None,
        config: PipelineConfig | None = None,
    ):
        self.session_factory = session_factory
        self.locks = lock_store or LockStore(session_factory)
        self.config = config or get_pipeline_config()

    async def get_system_status(self) -> dict[str, Any]:
        """Active locks, running executions and the latest run of every job."""
        active_locks = await self.locks.active_locks()

        async with self.session_factory() as session:
            running = await session.execute(
                select(JobRun)
                .where(JobRun.status == STATUS_RUNNING)
                .order_by(JobRun.started_at)
            )
            running_runs = list(running.scalars().all())

            latest_ids = (
                select(func.max(JobRun.id).label("id"))
                .group_by(JobRun.job_name)
                .subquery()
            )
            latest = await session.execute(
                select(JobRun).join(latest_ids, JobRun.id == latest_ids.c.id)
            )
            latest_runs = list(latest.scalars().all())

        return {
            "timestamp": utc_now(),
            "active_locks": [serialize_lock(lock) for lock in active_locks],
            "running_executions": [serialize_run(run) for run in running_runs],
            "jobs": {run.job_name: serialize_run(run) for run in latest_runs},
        }

    async def get_execution_history(
        self,
        job_name: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Most recent executions, newest first, optionally for one job."""
        query = select(JobRun).order_by(JobRun.started_at.desc(), JobRun.id.desc()).limit(limit)
        if job_name:
            query = query.where(JobRun.job_name == job_name)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [serialize_run(run) for run in result.scalars().all()]

    async def force_release_lock(self, job_name: str) -> bool:
        """Operator escape hatch for a stuck job."""
        return await self.locks.force_release(job_name)

    async def get_performance_metrics(self, limit: int = 100) -> dict[str, Any]:
        """Success/failure counts and average duration per job."""
        history = await self.get_execution_history(limit=limit)
        per_job: dict[str, dict[str, Any]] = defaultdict(
            lambda: {"total": 0, "successful": 0, "failed": 0, "average_duration_ms": 0}
        )
        durations: dict[str, list[int]] = defaultdict(list)

        for run in history:
            stats = per_job[run["job_name"]]
            stats["total"] += 1
            if run["status"] == STATUS_COMPLETED:
                stats["successful"] += 1
                if run["duration_ms"] is not None:
                    durations[run["job_name"]].append(run["duration_ms"])
            elif run["status"] == STATUS_FAILED:
                stats["failed"] += 1

        for name, values in durations.items():
            per_job[name]["average_duration_ms"] = round(sum(values) / len(values))

        successful = sum(s["successful"] for s in per_job.values())
        all_durations = [d for values in durations.values() for d in values]
        return {
            "total_jobs": sum(s["total"] for s in per_job.values()),
            "successful_jobs": successful,
            "failed_jobs": sum(s["failed"] for s in per_job.values()),
            "average_duration_ms": (
                round(sum(all_durations) / len(all_durations)) if all_durations else 0
            ),
            "jobs": dict(per_job),
        }

    def stuck_lock_limit(self, lock: JobLock) -> timedelta:
        """
        How long ``lock`` may be held before it counts as stuck.

        ``stuck_lock_ratio`` of the lock's own TTL, or the job's timeout when
        that is shorter: a healthy holder has released by then.
        """
        ttl = as_utc(lock.expires_at) - as_utc(lock.locked_at)
        limit = ttl * self.config.health.stuck_lock_ratio
        timeout = self.config.locks.for_job(lock.job_name).timeout_seconds
        if timeout is not None:
            limit = min(limit, timedelta(seconds=timeout))
        return limit

    async def health_check(self, now: datetime | None = None) -> dict[str, Any]:
        """
        Report coordination health.

        Issues raised:
        - a lock held longer than ``stuck_lock_limit`` allows
        - a job whose recent error rate exceeds ``max_error_rate``
        - an execution still running after ``stuck_execution_minutes``
        """
        now = now or utc_now()
        policy = self.config.health
        issues: list[str] = []

        try:
            for lock in await self.locks.active_locks():
                held_for = now - as_utc(lock.locked_at)
                limit = self.stuck_lock_limit(lock)
                if held_for > limit:
                    issues.append(
                        f"stuck lock older than {_minutes(limit)}m: "
                        f"{lock.job_name} held by {lock.holder_id} for {_minutes(held_for)}m"
                    )

            async with self.session_factory() as session:
                stuck_run_cutoff = now - timedelta(minutes=policy.stuck_execution_minutes)
                stuck = await session.execute(
                    select(JobRun.job_name, JobRun.execution_id, JobRun.started_at).where(
                        JobRun.status == STATUS_RUNNING,
                        JobRun.started_at < stuck_run_cutoff,
                    )
                )
                for row in stuck.all():
                    issues.append(
                        f"stuck execution running longer than {policy.stuck_execution_minutes}m: "
                        f"{row.job_name} ({row.execution_id})"
                    )

                job_names = await session.execute(select(JobRun.job_name).distinct())
                for job_name in job_names.scalars().all():
                    recent = await session.execute(
                        select(JobRun.status)
                        .where(
                            JobRun.job_name == job_name,
                            JobRun.status.in_([STATUS_COMPLETED, STATUS_FAILED]),
                        )
                        .order_by(JobRun.started_at.desc(), JobRun.id.desc())
                        .limit(policy.error_rate_window)
                    )
                    statuses = list(recent.scalars().all())
                    if len(statuses) < policy.error_rate_min_samples:
                        continue
                    error_rate = statuses.count(STATUS_FAILED) / len(statuses)
                    if error_rate > policy.max_error_rate:
                        issues.append(
                            f"job error rate above {policy.max_error_rate:.0%}: "
                            f"{job_name} failed {statuses.count(STATUS_FAILED)}/{len(statuses)} recent runs"
                        )

        except Exception as e:
            logger.error("coordination_health_check_failed", error=str(e))
            return {
                "healthy": False,
                "issues": [f"health check failed: {e}"],
                "checked_at": now,
            }

        return {"healthy": not issues, "issues": issues, "checked_at": now}

    async def reap_abandoned_executions(self, now: datetime | None = None) -> int:
        """
        Fail ``running`` records whose holder is gone.

        A record is abandoned when it started longer ago than its job's TTL
        and no live lock exists for the job any more.
        """
        now = now or utc_now()
        reaped = 0

        async with self.session_factory() as session:
            result = await session.execute(
                select(JobRun.execution_id, JobRun.job_name, JobRun.started_at)
                .outerjoin(
                    JobLock,
                    and_(JobLock.job_name == JobRun.job_name, JobLock.expires_at > now),
                )
                .where(JobRun.status == STATUS_RUNNING, JobLock.job_name.is_(None))
            )
            candidates = result.all()

            for row in candidates:
                ttl = self.config.locks.for_job(row.job_name).ttl
                started_at = as_utc(row.started_at)
                if started_at > now - ttl:
                    continue
                updated = await session.execute(
                    update(JobRun)
                    .where(
                        JobRun.execution_id == row.execution_id,
                        JobRun.status == STATUS_RUNNING,
                    )
                    .values(
                        status=STATUS_FAILED,
                        completed_at=now,
                        duration_ms=int((now - started_at).total_seconds() * 1000),
                        error_message="abandoned: holder stopped without finalizing",
                    )
                )
                reaped += updated.rowcount or 0
                logger.warning(
                    "execution_abandoned",
                    job_name=row.job_name,
                    execution_id=row.execution_id,
                    started_at=started_at.isoformat(),
                )

            await session.commit()

        return reaped

    async def prune_history(self, now: datetime | None = None) -> int:
        """Delete finalized execution records past the retention window."""
        now = now or utc_now()
        cutoff = now - timedelta(days=self.config.locks.execution_retention_days)

        async with self.session_factory() as session:
            result = await session.execute(
                delete(JobRun).where(
                    JobRun.status != STATUS_RUNNING,
                    JobRun.started_at < cutoff,
                )
            )
            await session.commit()

        return result.rowcount or 0
