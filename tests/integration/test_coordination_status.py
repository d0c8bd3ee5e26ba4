"""Integration tests for coordination status, health and housekeeping."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from matchday.config.pipeline import LockPolicy, RetryPolicy, load_pipeline_config
from matchday.models import JobLock, JobRun
from matchday.models.base import utc_now
from matchday.services.coordination import CoordinationStatusService, JobCoordinator, LockStore


@pytest.fixture
def lock_store(session_factory):
    return LockStore(session_factory, holder_id="worker-a")


@pytest.fixture
def coordinator(session_factory, lock_store):
    return JobCoordinator(session_factory, lock_store=lock_store, policy=LockPolicy())


@pytest.fixture
def status_service(session_factory, lock_store):
    return CoordinationStatusService(
        session_factory, lock_store=lock_store, config=load_pipeline_config()
    )


async def add_run(session_factory, job_name, status, started_at, **kwargs):
    async with session_factory() as session:
        session.add(
            JobRun(
                execution_id=kwargs.pop("execution_id", f"{job_name}-{started_at.timestamp()}"),
                job_name=job_name,
                status=status,
                started_at=started_at,
                **kwargs,
            )
        )
        await session.commit()


def fail():
    raise RuntimeError("boom")


class TestStatusQueries:
    @pytest.mark.asyncio
    async def test_system_status(self, session_factory, coordinator, status_service):
        await coordinator.run_coordinated("results-pipeline", lambda: {"ok": True})
        await LockStore(session_factory, holder_id="worker-b").acquire(
            "slip-evaluation", timedelta(minutes=5)
        )

        status = await status_service.get_system_status()

        assert [lock["job_name"] for lock in status["active_locks"]] == ["slip-evaluation"]
        assert status["active_locks"][0]["holder_id"] == "worker-b"
        assert status["jobs"]["results-pipeline"]["status"] == "completed"
        assert status["running_executions"] == []

    @pytest.mark.asyncio
    async def test_history_newest_first_and_filtered(self, coordinator, status_service):
        await coordinator.run_coordinated("results-pipeline", lambda: 1)
        await coordinator.run_coordinated("slip-evaluation", lambda: 2, dependencies=[])
        await coordinator.run_coordinated("results-pipeline", lambda: 3)

        history = await status_service.get_execution_history()
        assert [run["result"] for run in history] == [3, 2, 1]

        filtered = await status_service.get_execution_history(job_name="results-pipeline", limit=1)
        assert len(filtered) == 1
        assert filtered[0]["result"] == 3

    @pytest.mark.asyncio
    async def test_performance_metrics(self, coordinator, status_service):
        await coordinator.run_coordinated("results-pipeline", lambda: 1)
        await coordinator.run_coordinated("results-pipeline", fail, retry=RetryPolicy())
        await coordinator.run_coordinated("coordination-maintenance", lambda: 2)

        metrics = await status_service.get_performance_metrics()

        assert metrics["total_jobs"] == 3
        assert metrics["successful_jobs"] == 2
        assert metrics["failed_jobs"] == 1
        assert metrics["jobs"]["results-pipeline"]["failed"] == 1
        assert metrics["jobs"]["coordination-maintenance"]["successful"] == 1

    @pytest.mark.asyncio
    async def test_force_release_lock(self, session_factory, status_service):
        await LockStore(session_factory, holder_id="stuck").acquire(
            "results-pipeline", timedelta(minutes=30)
        )

        assert await status_service.force_release_lock("results-pipeline") is True
        assert not await status_service.locks.is_locked("results-pipeline")


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy_when_quiet(self, coordinator, status_service):
        await coordinator.run_coordinated("results-pipeline", lambda: 1)

        report = await status_service.health_check()

        assert report["healthy"] is True
        assert report["issues"] == []

    @pytest.mark.asyncio
    async def test_stuck_lock_is_reported(self, session_factory, status_service):
        now = utc_now()
        async with session_factory() as session:
            session.add(
                JobLock(
                    job_name="results-pipeline",
                    holder_id="worker-z",
                    locked_at=now - timedelta(minutes=90),
                    expires_at=now + timedelta(minutes=30),
                )
            )
            await session.commit()

        report = await status_service.health_check(now)

        assert report["healthy"] is False
        assert any("stuck lock" in issue and "results-pipeline" in issue for issue in report["issues"])

    @pytest.mark.asyncio
    async def test_acquired_lock_past_job_limit_is_reported(self, session_factory, status_service):
        """A real acquire with the configured TTL: reported once held longer than 80% of it."""
        policy = status_service.config.locks.for_job("results-pipeline")
        store = LockStore(session_factory, holder_id="worker-y")
        assert await store.acquire("results-pipeline", policy.ttl)

        fresh = await status_service.health_check(utc_now() + timedelta(minutes=10))
        stale = await status_service.health_check(utc_now() + timedelta(minutes=26))

        assert fresh["healthy"] is True
        assert stale["healthy"] is False
        assert any(
            issue.startswith("stuck lock older than 24m: results-pipeline held by worker-y")
            for issue in stale["issues"]
        )

    @pytest.mark.asyncio
    async def test_stuck_lock_limit_uses_job_timeout_when_shorter(self, session_factory, status_service):
        store = LockStore(session_factory, holder_id="worker-y")
        await store.acquire("results-pipeline", timedelta(hours=2))
        await store.acquire("unconfigured-job", timedelta(minutes=15))

        locks = {lock.job_name: lock for lock in await store.active_locks()}

        assert status_service.stuck_lock_limit(locks["results-pipeline"]) == timedelta(minutes=25)
        assert status_service.stuck_lock_limit(locks["unconfigured-job"]) == timedelta(minutes=12)

    @pytest.mark.asyncio
    async def test_stuck_execution_is_reported(self, session_factory, status_service):
        now = utc_now()
        await add_run(session_factory, "results-pipeline", "running", now - timedelta(hours=2))

        report = await status_service.health_check(now)

        assert any("stuck execution" in issue for issue in report["issues"])

    @pytest.mark.asyncio
    async def test_high_error_rate_is_reported(self, coordinator, status_service):
        await coordinator.run_coordinated("results-pipeline", lambda: 1)
        for _ in range(3):
            await coordinator.run_coordinated("results-pipeline", fail, retry=RetryPolicy())

        report = await status_service.health_check()

        assert report["healthy"] is False
        assert any("error rate" in issue and "3/4" in issue for issue in report["issues"])

    @pytest.mark.asyncio
    async def test_error_rate_needs_minimum_samples(self, coordinator, status_service):
        await coordinator.run_coordinated("results-pipeline", fail, retry=RetryPolicy())
        await coordinator.run_coordinated("results-pipeline", fail, retry=RetryPolicy())

        report = await status_service.health_check()
        assert report["healthy"] is True


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_abandoned_execution_is_failed(self, session_factory, status_service):
        now = utc_now()
        await add_run(session_factory, "results-pipeline", "running", now - timedelta(hours=1), execution_id="abandoned")
        await add_run(session_factory, "results-pipeline", "running", now - timedelta(minutes=1), execution_id="recent")

        assert await status_service.reap_abandoned_executions(now) == 1

        async with session_factory() as session:
            run = (await session.execute(
                select(JobRun).where(JobRun.execution_id == "abandoned")
            )).scalar_one()
            recent = (await session.execute(
                select(JobRun).where(JobRun.execution_id == "recent")
            )).scalar_one()
        assert run.status == "failed"
        assert "abandoned" in run.error_message
        assert recent.status == "running", "a run younger than its TTL is left alone"

    @pytest.mark.asyncio
    async def test_running_execution_with_live_lock_is_kept(self, session_factory, status_service, lock_store):
        now = utc_now()
        await lock_store.acquire("results-pipeline", timedelta(hours=2))
        await add_run(session_factory, "results-pipeline", "running", now - timedelta(hours=1))

        assert await status_service.reap_abandoned_executions(now) == 0

    @pytest.mark.asyncio
    async def test_prune_history_keeps_recent_and_running(self, session_factory, status_service):
        now = utc_now()
        await add_run(session_factory, "results-pipeline", "completed", now - timedelta(days=30), execution_id="old")
        await add_run(session_factory, "results-pipeline", "running", now - timedelta(days=30), execution_id="old-running")
        await add_run(session_factory, "results-pipeline", "completed", now - timedelta(days=1), execution_id="new")

        assert await status_service.prune_history(now) == 1

        async with session_factory() as session:
            remaining = (await session.execute(select(JobRun.execution_id))).scalars().all()
        assert sorted(remaining) == ["new", "old-running"]
