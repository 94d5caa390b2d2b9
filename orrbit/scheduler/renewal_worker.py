"""
Renewal worker - periodic, time-driven billing transitions.

One pass runs these phases in order:
    1. renewal reminders for subscriptions billing in N days
    2. renewal requests for subscriptions that are due
    3. settlement of completed renewals whose clock was never advanced
    4. expiry of subscriptions past the grace period
    5. daily statistics

Every candidate row is handled in its own unit of work through the
reconciliation service, so one bad row never blocks the rest of the scan.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orrbit.core.config import BillingConfig
from orrbit.core.logging import log_context
from orrbit.scheduler.run_lock import RunLock
from orrbit.services.ledger_repository import LedgerRepository
from orrbit.services.reconciliation_service import ReconciliationService
from orrbit.utils.billing_calendar import day_bounds, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class PhaseStats:
    """Counters for one worker phase."""
    candidates: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    query_failed: bool = False

    def to_dict(self) -> Dict[str, int]:
        return {
            "candidates": self.candidates,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
        }


@dataclass
class WorkerRunReport:
    """Result of one worker pass."""
    started_at: datetime
    skipped: bool = False
    lease_lost: bool = False
    finished_at: Optional[datetime] = None
    phases: Dict[str, PhaseStats] = field(default_factory=dict)
    daily_stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed_rows(self) -> int:
        return sum(stats.failed for stats in self.phases.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skipped": self.skipped,
            "lease_lost": self.lease_lost,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "phases": {name: stats.to_dict() for name, stats in self.phases.items()},
            "daily_stats": {
                key: str(value) if isinstance(value, Decimal) else value
                for key, value in self.daily_stats.items()
            },
        }


class RenewalWorker:
    """
    Drives reminders, renewal requests, settlement repair and expiry.

    Args:
        reconciliation: the single ledger writer
        session_factory: used for read-only candidate queries
        lock: prevents overlapping passes; None runs unlocked
        billing: reminder thresholds and grace settings
    """

    def __init__(
        self,
        reconciliation: ReconciliationService,
        session_factory: async_sessionmaker[AsyncSession],
        lock: Optional[RunLock] = None,
        billing: Optional[BillingConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.reconciliation = reconciliation
        self.session_factory = session_factory
        self.lock = lock
        self.billing = billing or reconciliation.billing
        self.clock = clock
        self.logger = logger.bind(service="renewal_worker")

    async def run(self, now: Optional[datetime] = None) -> WorkerRunReport:
        """Run one full pass; returns a skipped report when another pass holds the lock."""
        with log_context(worker_run=uuid.uuid4().hex[:12]):
            return await self._run(now or self.clock())

    async def _run(self, now: datetime) -> WorkerRunReport:
        report = WorkerRunReport(started_at=now)

        if self.lock is None:
            await self._run_phases(report, now)
            return report

        async with self.lock.hold() as token:
            if token is None:
                report.skipped = True
                self.logger.info("Renewal pass skipped, lock not acquired")
                return report
            await self._run_phases(report, now, token)

        return report

    async def _run_phases(self, report: WorkerRunReport, now: datetime, token: Optional[str] = None) -> None:
        self.logger.info("Renewal pass started", now=now.isoformat())

        phases = (
            ("reminders", self._reminders),
            ("due_renewals", self._due_renewals),
            ("settlements", self._settlements),
            ("expiry", self._expiry),
        )
        for name, phase in phases:
            report.phases[name] = await phase(now)
            if token is not None and not await self._extend_lease(token, name):
                report.lease_lost = True
                break
        else:
            report.daily_stats = await self._daily_stats(now)
        report.finished_at = self.clock()

        self.logger.info(
            "Renewal pass finished",
            phases={name: stats.to_dict() for name, stats in report.phases.items()},
            failed_rows=report.failed_rows,
            lease_lost=report.lease_lost,
        )

    async def _extend_lease(self, token: str, after_phase: str) -> bool:
        """Refresh the run lock between phases; False stops the pass."""
        try:
            extended = await self.lock.extend(token)
        except Exception as e:
            # The lease may still be valid; keep going and let the TTL decide
            self.logger.error("Failed to extend run lock", phase=after_phase, error=str(e))
            return True
        if not extended:
            self.logger.error("Run lock lost, stopping renewal pass", phase=after_phase)
        return extended

    # Phases

    async def _reminders(self, now: datetime) -> PhaseStats:
        stats = PhaseStats()

        for days_until in self.billing.reminder_days:
            window_start, window_end = day_bounds(now.date() + timedelta(days=days_until))
            candidate_ids = await self._candidates(
                "reminders",
                stats,
                lambda repo: repo.reminder_candidate_ids(window_start, window_end),
            )
            for subscription_id in candidate_ids:
                await self._process(
                    "reminders",
                    stats,
                    {"subscription_id": subscription_id, "days_until": days_until},
                    lambda: self.reconciliation.send_renewal_reminder(subscription_id, days_until, now),
                )

        return stats

    async def _due_renewals(self, now: datetime) -> PhaseStats:
        stats = PhaseStats()
        grace_cutoff = now - timedelta(days=self.billing.grace_period_days)
        pending_since = now - timedelta(days=self.billing.pending_renewal_window_days)

        candidate_ids = await self._candidates(
            "due_renewals",
            stats,
            lambda repo: repo.due_renewal_candidate_ids(now, grace_cutoff, pending_since),
        )
        for subscription_id in candidate_ids:
            await self._process(
                "due_renewals",
                stats,
                {"subscription_id": subscription_id},
                lambda: self._requested(subscription_id, now),
            )

        return stats

    async def _settlements(self, now: datetime) -> PhaseStats:
        stats = PhaseStats()

        candidate_ids = await self._candidates(
            "settlements",
            stats,
            lambda repo: repo.unsettled_completed_renewal_ids(now),
        )
        for transaction_id in candidate_ids:
            await self._process(
                "settlements",
                stats,
                {"transaction_id": transaction_id},
                lambda: self.reconciliation.settle_completed_renewal(transaction_id, now),
            )

        return stats

    async def _expiry(self, now: datetime) -> PhaseStats:
        stats = PhaseStats()
        grace_cutoff = now - timedelta(days=self.billing.grace_period_days)

        candidate_ids = await self._candidates(
            "expiry",
            stats,
            lambda repo: repo.overdue_subscription_ids(grace_cutoff),
        )
        for subscription_id in candidate_ids:
            await self._process(
                "expiry",
                stats,
                {"subscription_id": subscription_id},
                lambda: self.reconciliation.expire_subscription(subscription_id, now),
            )

        return stats

    async def _daily_stats(self, now: datetime) -> Dict[str, Any]:
        day_start, day_end = day_bounds(now.date())
        try:
            async with self.session_factory() as session:
                stats = await LedgerRepository(session).daily_stats(day_start, day_end)
        except Exception as e:
            self.logger.error("Daily stats query failed", phase="daily_stats", error=str(e))
            return {}

        self.logger.info(
            "Daily billing stats",
            date=day_start.date().isoformat(),
            **{key: str(value) for key, value in stats.items()},
        )
        return stats

    # Helpers

    async def _requested(self, subscription_id: int, now: datetime) -> bool:
        transaction = await self.reconciliation.request_renewal(subscription_id, now)
        return transaction is not None

    async def _candidates(
        self,
        phase: str,
        stats: PhaseStats,
        query: Callable[[LedgerRepository], Awaitable[List[int]]],
    ) -> List[int]:
        """Run a candidate query; a failure is logged and yields no rows."""
        try:
            async with self.session_factory() as session:
                candidate_ids = await query(LedgerRepository(session))
        except Exception as e:
            stats.query_failed = True
            self.logger.error("Candidate query failed", phase=phase, error=str(e))
            return []

        stats.candidates += len(candidate_ids)
        return candidate_ids

    async def _process(
        self,
        phase: str,
        stats: PhaseStats,
        context: Dict[str, Any],
        action: Callable[[], Awaitable[bool]],
    ) -> None:
        try:
            changed = await action()
        except Exception as e:
            stats.failed += 1
            self.logger.error("Renewal worker row failed", phase=phase, error=str(e), **context)
            return

        if changed:
            stats.processed += 1
        else:
            stats.skipped += 1
