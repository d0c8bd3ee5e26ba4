"""Table-backed job locks.

The ``job_locks`` table is the only arbiter of which scheduler process runs
a named job. Acquisition is a single conditional upsert so two processes
racing for the same job can never both win, and a lock whose TTL lapsed is
taken over by the next caller without anyone having to clean it up first.
"""

import os
import socket
import uuid
from datetime import timedelta

import structlog
from sqlalchemy import delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.models.base import upsert, utc_now
from matchday.models.domain import JobLock

logger = structlog.get_logger(__name__)


def make_holder_id() -> str:
    """Identify this process (and this instance within it) as a lock holder."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class LockStore:
    """
    Persistent mutex with expiry, keyed by job name.

    Every operation runs in its own short session and commits immediately,
    so other processes observe the change as soon as the call returns.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        holder_id: str | None = None,
    ):
        self.session_factory = session_factory
        self.holder_id = holder_id or make_holder_id()

    async def acquire(self, job_name: str, ttl: timedelta) -> bool:
        """
        Try to take the lock for ``job_name``.

        Inserts a fresh row, or replaces an existing row only when it has
        already expired. Returns True if this holder now owns the lock.
        """
        now = utc_now()
        async with self.session_factory() as session:
            stmt = upsert(session, JobLock).values(
                job_name=job_name,
                locked_at=now,
                expires_at=now + ttl,
                holder_id=self.holder_id,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[JobLock.job_name],
                set_={
                    "locked_at": stmt.excluded.locked_at,
                    "expires_at": stmt.excluded.expires_at,
                    "holder_id": stmt.excluded.holder_id,
                },
                where=JobLock.expires_at <= now,
            ).returning(JobLock.job_name)

            result = await session.execute(stmt)
            acquired = result.scalar_one_or_none() is not None
            await session.commit()

        if acquired:
            logger.debug(
                "lock_acquired",
                job_name=job_name,
                holder_id=self.holder_id,
                ttl_seconds=ttl.total_seconds(),
            )
        return acquired

    async def release(self, job_name: str) -> None:
        """Release this holder's lock. Releasing a lock we no longer hold is a no-op."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(JobLock).where(
                    JobLock.job_name == job_name,
                    JobLock.holder_id == self.holder_id,
                )
            )
            await session.commit()

        if result.rowcount:
            logger.debug("lock_released", job_name=job_name, holder_id=self.holder_id)
        else:
            logger.debug("lock_release_noop", job_name=job_name, holder_id=self.holder_id)

    async def is_locked(self, job_name: str) -> bool:
        """Check whether a live (non-expired) lock exists for ``job_name``."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    exists().where(
                        JobLock.job_name == job_name,
                        JobLock.expires_at > utc_now(),
                    )
                )
            )
            return bool(result.scalar())

    async def force_release(self, job_name: str) -> bool:
        """
        Delete the lock row regardless of holder or expiry.

        Operator escape hatch for stuck jobs. Returns True if a row existed.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                delete(JobLock).where(JobLock.job_name == job_name)
            )
            await session.commit()

        released = bool(result.rowcount)
        logger.warning(
            "lock_force_released",
            job_name=job_name,
            released=released,
            operator_holder_id=self.holder_id,
        )
        return released

    async def active_locks(self) -> list[JobLock]:
        """All non-expired locks, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(JobLock)
                .where(JobLock.expires_at > utc_now())
                .order_by(JobLock.locked_at)
            )
            return list(result.scalars().all())

    async def sweep_expired(self) -> int:
        """Physically delete expired rows. Correctness never depends on this running."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(JobLock).where(JobLock.expires_at <= utc_now())
            )
            await session.commit()

        if result.rowcount:
            logger.info("expired_locks_swept", count=result.rowcount)
        return result.rowcount or 0
