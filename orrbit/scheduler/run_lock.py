"""
Run locks that keep renewal worker passes from overlapping.

Two backends share one interface: Redis (SET NX EX with a per-holder
token) and a lease row in the worker_locks table.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orrbit.cache.redis_client import RedisClient, get_redis_client
from orrbit.core.config import settings
from orrbit.core.exceptions import ConfigurationError
from orrbit.models.worker_lock import WorkerLock
from orrbit.utils.billing_calendar import utcnow

logger = structlog.get_logger(__name__)

DEFAULT_LOCK_NAME = "renewal_worker"


class RunLock:
    """Base class: acquire() returns a token or None, release(token) frees it."""

    def __init__(self, name: str = DEFAULT_LOCK_NAME, ttl_seconds: Optional[int] = None):
        self.name = name
        self.ttl_seconds = ttl_seconds or settings.worker_lock_ttl_seconds

    async def acquire(self) -> Optional[str]:
        raise NotImplementedError

    async def release(self, token: str) -> bool:
        raise NotImplementedError

    async def extend(self, token: str) -> bool:
        """Push the lease out by another TTL; False when the token no longer holds it."""
        raise NotImplementedError

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[Optional[str]]:
        """Yield the token, or None when another holder owns the lock."""
        token = await self.acquire()
        try:
            yield token
        finally:
            if token is not None:
                try:
                    await self.release(token)
                except Exception as e:
                    # The lease expires on its own
                    logger.error("Failed to release run lock", lock=self.name, error=str(e))


class RedisRunLock(RunLock):
    """SET key token NX EX ttl; release deletes only our own token."""

    def __init__(
        self,
        redis_client: RedisClient,
        name: str = DEFAULT_LOCK_NAME,
        ttl_seconds: Optional[int] = None
    ):
        super().__init__(name, ttl_seconds)
        self.redis = redis_client

    @property
    def key(self) -> str:
        return f"lock:{self.name}"

    async def acquire(self) -> Optional[str]:
        token = uuid.uuid4().hex
        acquired = await self.redis.set(self.key, token, ex=self.ttl_seconds, nx=True)
        if not acquired:
            logger.info("Run lock held elsewhere", lock=self.name, backend="redis")
            return None
        return token

    async def release(self, token: str) -> bool:
        return await self.redis.compare_and_delete(self.key, token)

    async def extend(self, token: str) -> bool:
        return await self.redis.compare_and_expire(self.key, token, self.ttl_seconds)


class DatabaseRunLock(RunLock):
    """Lease row in worker_locks; an expired lease may be taken over."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        name: str = DEFAULT_LOCK_NAME,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(name, ttl_seconds)
        self.session_factory = session_factory
        self.clock = clock

    async def acquire(self) -> Optional[str]:
        token = uuid.uuid4().hex
        now = self.clock()
        expires_at = now + timedelta(seconds=self.ttl_seconds)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    lease = await session.scalar(
                        select(WorkerLock)
                        .where(WorkerLock.name == self.name)
                        .with_for_update()
                    )
                    if lease is None:
                        session.add(WorkerLock(
                            name=self.name,
                            owner=token,
                            acquired_at=now,
                            expires_at=expires_at,
                        ))
                    elif lease.expires_at <= now:
                        logger.warning(
                            "Taking over expired run lock",
                            lock=self.name,
                            previous_owner=lease.owner,
                        )
                        lease.owner = token
                        lease.acquired_at = now
                        lease.expires_at = expires_at
                    else:
                        logger.info("Run lock held elsewhere", lock=self.name, backend="database")
                        return None
        except IntegrityError:
            # Another process inserted the lease first
            logger.info("Run lock acquired concurrently elsewhere", lock=self.name)
            return None

        return token

    async def release(self, token: str) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(WorkerLock).where(
                        WorkerLock.name == self.name,
                        WorkerLock.owner == token,
                    )
                )
        return result.rowcount > 0

    async def extend(self, token: str) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(WorkerLock)
                    .where(WorkerLock.name == self.name, WorkerLock.owner == token)
                    .values(expires_at=self.clock() + timedelta(seconds=self.ttl_seconds))
                )
        return result.rowcount > 0


LOCK_BACKENDS = ("redis", "database")


async def create_run_lock(
    session_factory: async_sessionmaker[AsyncSession],
    backend: Optional[str] = None,
) -> RunLock:
    """Build the lock selected by WORKER_LOCK_BACKEND."""
    backend = backend or settings.worker_lock_backend
    if backend not in LOCK_BACKENDS:
        raise ConfigurationError(
            f"Unknown worker lock backend: {backend}",
            {"backend": backend, "supported": list(LOCK_BACKENDS)},
        )
    if backend == "database":
        return DatabaseRunLock(session_factory)

    return RedisRunLock(await get_redis_client())
