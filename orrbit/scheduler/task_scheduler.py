"""
Interval scheduler for background tasks.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from orrbit.core.exceptions import SchedulerError
from orrbit.utils.billing_calendar import utcnow

logger = structlog.get_logger(__name__)


class ScheduledTask:
    """A coroutine function run every interval_seconds."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.clock = clock
        self.last_run: Optional[datetime] = None
        self.last_duration: Optional[float] = None
        self.run_count = 0
        self.error_count = 0
        self.last_error: Optional[str] = None

        self.next_run = clock()
        if not run_immediately:
            self.next_run += timedelta(seconds=interval_seconds)

    def should_run(self) -> bool:
        return self.enabled and self.clock() >= self.next_run

    def schedule_next_run(self) -> None:
        self.next_run = self.clock() + timedelta(seconds=self.interval_seconds)

    async def run(self) -> Any:
        """Execute the task; the next run is scheduled even when it fails."""
        started_at = self.clock()
        try:
            result = await self.func()
        except Exception as e:
            self.error_count += 1
            self.last_error = str(e)
            self.schedule_next_run()
            logger.error("Scheduled task failed", task=self.name, error=str(e), error_count=self.error_count)
            raise

        self.last_run = started_at
        self.last_duration = (self.clock() - started_at).total_seconds()
        self.run_count += 1
        self.schedule_next_run()

        logger.debug(
            "Scheduled task completed",
            task=self.name,
            duration=self.last_duration,
            run_count=self.run_count,
        )
        return result

    def snapshot(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat(),
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


class RenewalScheduler:
    """Runs registered tasks from an asyncio loop."""

    def __init__(self, loop_interval: float = 10):
        self.tasks: Dict[str, ScheduledTask] = {}
        self.running = False
        self.loop_interval = loop_interval

    def register_task(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = False
    ) -> ScheduledTask:
        if name in self.tasks:
            raise SchedulerError(f"Task already registered: {name}", {"task": name})
        if interval_seconds <= 0:
            raise SchedulerError(
                f"Task interval must be positive: {name}",
                {"task": name, "interval_seconds": interval_seconds},
            )
        task = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            enabled=enabled,
            run_immediately=run_immediately
        )
        self.tasks[name] = task
        logger.info("Registered scheduled task", task=name, interval_seconds=interval_seconds)
        return task

    def get_task(self, name: str) -> ScheduledTask:
        try:
            return self.tasks[name]
        except KeyError:
            raise SchedulerError(f"Unknown task: {name}", {"task": name}) from None

    def enable_task(self, name: str) -> None:
        self.get_task(name).enabled = True
        logger.info("Enabled scheduled task", task=name)

    def disable_task(self, name: str) -> None:
        self.get_task(name).enabled = False
        logger.info("Disabled scheduled task", task=name)

    async def start(self) -> None:
        logger.info("Starting renewal scheduler", tasks=list(self.tasks))
        self.running = True

        while self.running:
            try:
                await self.run_pending()
                await asyncio.sleep(self.loop_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Scheduler loop error", error=str(e))
                await asyncio.sleep(self.loop_interval)

        logger.info("Renewal scheduler stopped")

    async def stop(self) -> None:
        logger.info("Stopping renewal scheduler")
        self.running = False

    async def run_pending(self) -> int:
        """Run every due task concurrently; returns how many ran."""
        pending = [task for task in self.tasks.values() if task.should_run()]
        if not pending:
            return 0

        results = await asyncio.gather(*(task.run() for task in pending), return_exceptions=True)
        for task, result in zip(pending, results):
            if isinstance(result, Exception):
                logger.warning("Scheduled task raised", task=task.name, error=str(result))
        return len(pending)

    async def health_check(self) -> Dict[str, Any]:
        tasks_with_errors = sum(1 for task in self.tasks.values() if task.error_count > 0)
        return {
            "healthy": self.running and (not self.tasks or tasks_with_errors < len(self.tasks)),
            "running": self.running,
            "total_tasks": len(self.tasks),
            "enabled_tasks": sum(1 for task in self.tasks.values() if task.enabled),
            "tasks_with_errors": tasks_with_errors,
            "tasks": {name: task.snapshot() for name, task in self.tasks.items()},
        }
