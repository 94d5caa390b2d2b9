"""
Tests for the renewal worker phases.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from orrbit.models import SubscriptionStatus, Transaction, TransactionStatus, TransactionType
from orrbit.scheduler.renewal_worker import RenewalWorker
from orrbit.scheduler.run_lock import DatabaseRunLock
from orrbit.services.ledger_repository import LedgerRepository
from tests.conftest import tx_hash


@pytest.fixture
def worker(reconciliation, session_factory, clock):
    return RenewalWorker(reconciliation, session_factory, clock=clock)


async def subscribe(reconciliation, seed, n=1, subscriber_id=None):
    result = await reconciliation.record_subscription_payment(
        subscriber_id or seed.subscriber_id, seed.creator_id, seed.tier_id, Decimal("10"), tx_hash(n)
    )
    return result.subscription


class TestReminders:

    async def test_three_day_reminder_once_per_day(self, worker, reconciliation, seed, ledger):
        subscription = await subscribe(reconciliation, seed)
        now = datetime(2026, 4, 7, 9, 0, 0)

        first = await worker.run(now)
        second = await worker.run(now + timedelta(hours=1))

        assert first.phases["reminders"].processed == 1
        assert second.phases["reminders"].processed == 0
        assert second.phases["reminders"].skipped == 1
        [reminder] = await ledger.notifications(type="renewal_reminder")
        assert reminder.subscription_id == subscription.id
        assert reminder.data["days_until"] == 3

    async def test_one_day_reminder(self, worker, reconciliation, seed, ledger):
        await subscribe(reconciliation, seed)

        await worker.run(datetime(2026, 4, 7, 9, 0, 0))
        two_days_out = await worker.run(datetime(2026, 4, 8, 9, 0, 0))

        assert two_days_out.phases["reminders"].candidates == 0
        assert two_days_out.phases["reminders"].processed == 0
        assert len(await ledger.notifications(type="renewal_reminder")) == 1

        await worker.run(datetime(2026, 4, 9, 23, 0, 0))

        days = sorted(n.data["days_until"] for n in await ledger.notifications(type="renewal_reminder"))
        assert days == [1, 3]

    async def test_no_reminder_for_cancelled(self, worker, reconciliation, seed, ledger):
        subscription = await subscribe(reconciliation, seed)
        await reconciliation.cancel_subscription(subscription.id)

        report = await worker.run(datetime(2026, 4, 7, 9, 0, 0))

        assert report.phases["reminders"].candidates == 0
        assert await ledger.notifications(type="renewal_reminder") == []


class TestDueRenewals:

    async def test_due_subscription_gets_pending_request(self, worker, reconciliation, seed, ledger):
        subscription = await subscribe(reconciliation, seed)
        now = datetime(2026, 4, 10, 12, 30, 0)

        report = await worker.run(now)
        rerun = await worker.run(now + timedelta(hours=1))

        assert report.phases["due_renewals"].processed == 1
        assert rerun.phases["due_renewals"].candidates == 0
        [pending] = await ledger.transactions(status=TransactionStatus.PENDING)
        assert pending.type == TransactionType.RENEWAL
        assert pending.tx_hash is None
        assert pending.amount == Decimal("10")
        assert (await ledger.subscription(subscription.id)).status == SubscriptionStatus.PAST_DUE
        assert (await ledger.creator(seed.creator_id)).subscriber_count == 0

    async def test_paid_renewal_restores_active(self, worker, reconciliation, seed, ledger):
        subscription = await subscribe(reconciliation, seed)
        await worker.run(datetime(2026, 4, 10, 12, 30, 0))

        await reconciliation.record_renewal_payment(subscription.id, tx_hash(2))

        stored = await ledger.subscription(subscription.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.next_billing_at == datetime(2026, 5, 10, 12, 0, 0)
        assert (await ledger.creator(seed.creator_id)).subscriber_count == 1


class TestSettlementRepair:

    async def test_completed_renewal_advances_overdue_subscription(self, worker, reconciliation, seed, ledger):
        subscription = await subscribe(reconciliation, seed)
        now = datetime(2026, 4, 18, 12, 0, 0)
        await ledger.add(Transaction(
            sender_id=seed.subscriber_id,
            recipient_id=seed.creator_user_id,
            subscription_id=subscription.id,
            type=TransactionType.RENEWAL,
            amount=Decimal("10"),
            platform_fee=Decimal("0.2"),
            tx_hash=tx_hash(2),
            status=TransactionStatus.COMPLETED,
        ))

        report = await worker.run(now)

        assert report.phases["due_renewals"].candidates == 0
        assert report.phases["settlements"].processed == 1
        assert report.phases["expiry"].candidates == 0
        stored = await ledger.subscription(subscription.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.next_billing_at == datetime(2026, 5, 10, 12, 0, 0)
        assert (await ledger.creator(seed.creator_id)).total_earnings == Decimal("19.6")


class TestExpiry:

    async def test_active_subscription_past_grace_expires(self, worker, reconciliation, seed, ledger):
        subscription = await subscribe(reconciliation, seed)
        now = datetime(2026, 4, 18, 12, 0, 0)

        report = await worker.run(now)

        assert report.phases["expiry"].processed == 1
        stored = await ledger.subscription(subscription.id)
        assert stored.status == SubscriptionStatus.EXPIRED
        assert (await ledger.creator(seed.creator_id)).subscriber_count == 0
        assert len(await ledger.notifications(type="subscription_expired")) == 1

    async def test_past_due_subscription_expires_without_double_decrement(self, worker, reconciliation, seed, ledger):
        subscription = await subscribe(reconciliation, seed)
        await subscribe(reconciliation, seed, n=2, subscriber_id=seed.second_subscriber_id)
        await ledger.set_subscription(subscription.id, next_billing_at=datetime(2026, 3, 20))
        await reconciliation.request_renewal(subscription.id, datetime(2026, 3, 21))

        await worker.run(datetime(2026, 3, 30))

        assert (await ledger.subscription(subscription.id)).status == SubscriptionStatus.EXPIRED
        creator = await ledger.creator(seed.creator_id)
        assert creator.subscriber_count == 1
        assert creator.subscriber_count == await ledger.active_count(seed.creator_id)

    async def test_row_failure_does_not_stop_scan(self, worker, reconciliation, seed, ledger, monkeypatch):
        first = await subscribe(reconciliation, seed)
        second = await subscribe(reconciliation, seed, n=2, subscriber_id=seed.second_subscriber_id)
        original = reconciliation.expire_subscription

        async def flaky(subscription_id, now):
            if subscription_id == first.id:
                raise RuntimeError("lock timeout")
            return await original(subscription_id, now)

        monkeypatch.setattr(reconciliation, "expire_subscription", flaky)

        report = await worker.run(datetime(2026, 4, 18, 12, 0, 0))

        assert report.phases["expiry"].failed == 1
        assert report.phases["expiry"].processed == 1
        assert report.failed_rows == 1
        assert (await ledger.subscription(first.id)).status == SubscriptionStatus.ACTIVE
        assert (await ledger.subscription(second.id)).status == SubscriptionStatus.EXPIRED

    async def test_failed_candidate_query_skips_only_that_phase(self, worker, reconciliation, seed, monkeypatch):
        await subscribe(reconciliation, seed)

        async def broken(self, *args):
            raise RuntimeError("statement timeout")

        monkeypatch.setattr(LedgerRepository, "reminder_candidate_ids", broken)

        report = await worker.run(datetime(2026, 4, 18, 12, 0, 0))

        assert report.phases["reminders"].query_failed is True
        assert report.phases["expiry"].processed == 1


class TestRunReport:

    async def test_daily_stats(self, worker, reconciliation, seed):
        await subscribe(reconciliation, seed)

        report = await worker.run(datetime(2026, 3, 10, 18, 0, 0))

        assert report.daily_stats["new_subscriptions"] == 1
        assert report.daily_stats["active_subscriptions"] == 1
        assert report.daily_stats["active_creators"] == 2

    async def test_report_serializes(self, worker, seed):
        report = await worker.run(datetime(2026, 4, 1))
        data = report.to_dict()

        assert data["skipped"] is False
        assert set(data["phases"]) == {"reminders", "due_renewals", "settlements", "expiry"}
        assert data["started_at"] == "2026-04-01T00:00:00"

    async def test_overlapping_run_is_skipped(self, reconciliation, session_factory, clock, seed):
        lock = DatabaseRunLock(session_factory, ttl_seconds=600, clock=clock)
        worker = RenewalWorker(reconciliation, session_factory, lock=lock, clock=clock)

        held = await DatabaseRunLock(session_factory, ttl_seconds=600, clock=clock).acquire()
        assert held is not None

        report = await worker.run()

        assert report.skipped is True
        assert report.phases == {}

    async def test_lease_extended_between_phases(self, reconciliation, session_factory, clock, seed):
        lock = DatabaseRunLock(session_factory, ttl_seconds=600, clock=clock)
        worker = RenewalWorker(reconciliation, session_factory, lock=lock, clock=clock)
        extended = []
        original = lock.extend

        async def tracking_extend(token):
            extended.append(token)
            return await original(token)

        lock.extend = tracking_extend

        report = await worker.run()

        assert report.lease_lost is False
        assert len(extended) == 4
        assert report.daily_stats != {}

    async def test_lost_lease_stops_pass(self, reconciliation, session_factory, clock, seed):
        lock = DatabaseRunLock(session_factory, ttl_seconds=600, clock=clock)
        worker = RenewalWorker(reconciliation, session_factory, lock=lock, clock=clock)

        async def lost(token):
            return False

        lock.extend = lost

        report = await worker.run()

        assert report.lease_lost is True
        assert list(report.phases) == ["reminders"]
        assert report.daily_stats == {}
        assert report.to_dict()["lease_lost"] is True
