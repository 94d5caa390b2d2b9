"""
Background renewal processing.
"""

from .renewal_worker import PhaseStats, RenewalWorker, WorkerRunReport
from .run_lock import DatabaseRunLock, RedisRunLock, RunLock, create_run_lock
from .task_scheduler import RenewalScheduler, ScheduledTask

__all__ = [
    "PhaseStats",
    "RenewalWorker",
    "WorkerRunReport",
    "DatabaseRunLock",
    "RedisRunLock",
    "RunLock",
    "create_run_lock",
    "RenewalScheduler",
    "ScheduledTask",
]
