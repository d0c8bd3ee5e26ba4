"""Integration tests for table-backed job locks."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from matchday.models import JobLock
from matchday.models.base import utc_now
from matchday.services.coordination import LockStore

TTL = timedelta(minutes=5)


class TestLockStore:
    """Mutual exclusion with expiry."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, session_factory):
        store = LockStore(session_factory, holder_id="worker-a")

        assert await store.acquire("results-pipeline", TTL)
        assert await store.is_locked("results-pipeline")

        await store.release("results-pipeline")
        assert not await store.is_locked("results-pipeline")

    @pytest.mark.asyncio
    async def test_second_holder_is_refused_while_lock_is_live(self, session_factory):
        first = LockStore(session_factory, holder_id="worker-a")
        second = LockStore(session_factory, holder_id="worker-b")

        assert await first.acquire("results-pipeline", TTL)
        assert not await second.acquire("results-pipeline", TTL)

        async with session_factory() as session:
            lock = await session.get(JobLock, "results-pipeline")
        assert lock.holder_id == "worker-a", "a refused acquire must not touch the row"

    @pytest.mark.asyncio
    async def test_concurrent_acquires_have_exactly_one_winner(self, session_factory):
        stores = [LockStore(session_factory, holder_id=f"worker-{i}") for i in range(5)]

        results = await asyncio.gather(*(s.acquire("slip-evaluation", TTL) for s in stores))

        assert results.count(True) == 1, f"expected one winner, got {results}"

    @pytest.mark.asyncio
    async def test_expired_lock_is_taken_over(self, session_factory):
        stale = LockStore(session_factory, holder_id="crashed-worker")
        fresh = LockStore(session_factory, holder_id="worker-b")

        assert await stale.acquire("results-pipeline", TTL)
        async with session_factory() as session:
            await session.execute(
                update(JobLock)
                .where(JobLock.job_name == "results-pipeline")
                .values(expires_at=utc_now() - timedelta(seconds=1))
            )
            await session.commit()

        assert not await stale.is_locked("results-pipeline"), "expired lock reads as absent"
        assert await fresh.acquire("results-pipeline", TTL)

        async with session_factory() as session:
            lock = await session.get(JobLock, "results-pipeline")
        assert lock.holder_id == "worker-b"

    @pytest.mark.asyncio
    async def test_release_by_previous_holder_keeps_new_lock(self, session_factory):
        stale = LockStore(session_factory, holder_id="slow-worker")
        fresh = LockStore(session_factory, holder_id="worker-b")

        await stale.acquire("results-pipeline", timedelta(seconds=-1))
        assert await fresh.acquire("results-pipeline", TTL)

        await stale.release("results-pipeline")

        assert await fresh.is_locked("results-pipeline")

    @pytest.mark.asyncio
    async def test_release_when_not_held_is_noop(self, session_factory):
        store = LockStore(session_factory)
        await store.release("never-locked")
        assert not await store.is_locked("never-locked")

    @pytest.mark.asyncio
    async def test_locks_are_independent_per_job(self, session_factory):
        store = LockStore(session_factory)

        assert await store.acquire("results-pipeline", TTL)
        assert await store.acquire("slip-evaluation", TTL)

    @pytest.mark.asyncio
    async def test_force_release_ignores_holder(self, session_factory):
        holder = LockStore(session_factory, holder_id="stuck-worker")
        operator = LockStore(session_factory, holder_id="operator")

        await holder.acquire("results-pipeline", TTL)

        assert await operator.force_release("results-pipeline") is True
        assert not await holder.is_locked("results-pipeline")
        assert await operator.force_release("results-pipeline") is False

    @pytest.mark.asyncio
    async def test_sweep_expired_only_removes_expired_rows(self, session_factory):
        store = LockStore(session_factory)
        await store.acquire("expired-job", timedelta(seconds=-1))
        await store.acquire("live-job", TTL)

        assert await store.sweep_expired() == 1

        async with session_factory() as session:
            names = (await session.execute(select(JobLock.job_name))).scalars().all()
        assert names == ["live-job"]
        assert [lock.job_name for lock in await store.active_locks()] == ["live-job"]
