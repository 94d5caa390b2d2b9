"""
Standalone entry point for the renewal scheduler.

    python -m orrbit.scheduler.main
"""

import asyncio
import signal
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orrbit.cache.redis_client import close_redis_client
from orrbit.core.config import settings
from orrbit.core.database import close_database, get_session_maker, init_database
from orrbit.core.logging import setup_logging
from orrbit.services.reconciliation_service import ReconciliationService
from .renewal_worker import RenewalWorker
from .run_lock import create_run_lock
from .task_scheduler import RenewalScheduler

logger = structlog.get_logger(__name__)

RENEWAL_TASK = "renewal_worker"


async def build_renewal_worker(
    session_factory: async_sessionmaker[AsyncSession],
    reconciliation: Optional[ReconciliationService] = None,
) -> RenewalWorker:
    """Wire a worker with the configured run lock backend."""
    reconciliation = reconciliation or ReconciliationService(session_factory)
    lock = await create_run_lock(session_factory)
    return RenewalWorker(reconciliation, session_factory, lock=lock)


class SchedulerMain:
    """Owns the scheduler loop and its resources."""

    def __init__(self):
        self.scheduler: Optional[RenewalScheduler] = None
        self.worker: Optional[RenewalWorker] = None
        self._loop_task: Optional[asyncio.Task] = None

    async def initialize(self) -> None:
        logger.info("Initializing scheduler service")
        await init_database()

        self.worker = await build_renewal_worker(get_session_maker())
        self.scheduler = RenewalScheduler()
        self.scheduler.register_task(
            RENEWAL_TASK,
            self.worker.run,
            interval_seconds=settings.worker_interval_seconds,
            enabled=settings.worker_enabled,
            run_immediately=True,
        )
        logger.info("Scheduler service initialized")

    async def start(self) -> None:
        self._loop_task = asyncio.create_task(self.scheduler.start())
        await asyncio.gather(self._loop_task, return_exceptions=True)

    async def stop(self) -> None:
        logger.info("Stopping scheduler service")
        if self.scheduler:
            await self.scheduler.stop()
        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)

        await close_redis_client()
        await close_database()
        logger.info("Scheduler service stopped")


async def main() -> None:
    setup_logging()
    service = SchedulerMain()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(service.stop()))

    try:
        await service.initialize()
        await service.start()
    except Exception as e:
        logger.error("Scheduler service failed", error=str(e))
        raise
    finally:
        await service.stop()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
