"""
Reconciliation service - the single writer of ledger state.

Every public operation runs as one atomic unit of work: subscription,
transaction, earnings and notification writes either all commit or none do.
Realtime pushes collected during the unit are dispatched after commit.

The unique tx_hash is the idempotency key. A payment seen twice resolves to
the stored row; a concurrent insert that loses the race on a unique index is
resolved by re-reading the winner after the failed unit has rolled back.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncIterator, Callable, List, Optional, Tuple

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orrbit.core.config import BillingConfig
from orrbit.core.exceptions import (
    AlreadySubscribedError,
    CreatorNotFoundError,
    DuplicatePaymentError,
    InsufficientPlatformBalanceError,
    NotActiveError,
    SubscriptionNotFoundError,
    TierNotFoundError,
    TransactionNotFoundError,
)
from orrbit.models import (
    Creator, EarningStatus, FeeType, PlatformEarning, Subscription, SubscriptionStatus,
    Transaction, TransactionStatus, TransactionType,
)
from orrbit.notifications.notification_service import NotificationService, PendingPush
from orrbit.notifications.schemas import (
    NewSubscriberPayload,
    PaymentReceivedPayload,
    RenewalConfirmedPayload,
    RenewalDuePayload,
    RenewalReminderPayload,
    SubscriberExpiredPayload,
    SubscriptionCancelledPayload,
    SubscriptionExpiredPayload,
    TipReceivedPayload,
    TransactionConfirmedPayload,
)
from orrbit.services.fees import compute_fee_split
from orrbit.services.ledger_repository import LedgerRepository
from orrbit.utils.billing_calendar import add_billing_periods, calendar_days_until, utcnow
from orrbit.utils.validation import StellarValidator

logger = structlog.get_logger(__name__)

FEE_TYPES = {
    TransactionType.SUBSCRIPTION: FeeType.SUBSCRIPTION_FEE,
    TransactionType.RENEWAL: FeeType.RENEWAL_FEE,
    TransactionType.TIP: FeeType.TIP_FEE,
}


@dataclass
class PaymentResult:
    """Outcome of recording a payment. duplicate=True means the hash was already recorded."""
    transaction: Transaction
    subscription: Optional[Subscription] = None
    duplicate: bool = False


@dataclass
class ConfirmResult:
    transaction: Transaction
    status: str  # processed, already_processed or ignored


@dataclass
class WithdrawalResult:
    amount: Decimal
    destination: str
    reference: str
    earning_ids: List[int] = field(default_factory=list)
    remaining_balance: Decimal = Decimal("0")


@dataclass
class PlatformBalance:
    collected: Decimal
    withdrawn: Decimal

    @property
    def total_fees(self) -> Decimal:
        return self.collected + self.withdrawn


class ReconciliationService:
    """
    Converts payments and time-driven transitions into ledger mutations.

    Args:
        session_factory: factory producing sessions with expire_on_commit=False
        billing: fee and period configuration
        notifications: notification sink
        clock: source of naive UTC "now"
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        billing: Optional[BillingConfig] = None,
        notifications: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.billing = billing or BillingConfig.from_settings()
        self.notifications = notifications or NotificationService()
        self.clock = clock
        self.logger = logger.bind(service="reconciliation_service")

    @asynccontextmanager
    async def _unit(self) -> AsyncIterator[Tuple[AsyncSession, LedgerRepository]]:
        """One session, one transaction."""
        async with self.session_factory() as session:
            async with session.begin():
                yield session, LedgerRepository(session)

    # Payments

    async def record_subscription_payment(
        self,
        subscriber_id: int,
        creator_id: int,
        tier_id: Optional[int],
        gross_amount: Decimal,
        tx_hash: str,
    ) -> PaymentResult:
        """Create a subscription from its first on-chain payment."""
        tx_hash = StellarValidator.normalize_tx_hash(tx_hash)
        gross = StellarValidator.parse_amount(gross_amount)
        pushes: List[Optional[PendingPush]] = []

        try:
            async with self._unit() as (session, repo):
                existing = await repo.get_transaction_by_hash(tx_hash)
                if existing is not None:
                    return await self._subscription_duplicate(repo, existing, subscriber_id, creator_id)

                creator = await self._require_creator(repo, creator_id)

                if tier_id is not None:
                    tier = await repo.get_tier(tier_id)
                    if tier is None or tier.creator_id != creator_id or not tier.is_active:
                        raise TierNotFoundError(tier_id, creator_id)

                if await repo.get_live_subscription(subscriber_id, creator_id) is not None:
                    raise AlreadySubscribedError(subscriber_id, creator_id)

                now = self.clock()
                split = compute_fee_split(gross, self.billing.fee_percent)

                subscription = Subscription(
                    subscriber_id=subscriber_id,
                    creator_id=creator_id,
                    tier_id=tier_id,
                    amount=gross,
                    status=SubscriptionStatus.ACTIVE,
                    started_at=now,
                    next_billing_at=add_billing_periods(now, self.billing.billing_period_months),
                )
                session.add(subscription)
                await session.flush()

                transaction = Transaction(
                    sender_id=subscriber_id,
                    recipient_id=creator.user_id,
                    subscription_id=subscription.id,
                    type=TransactionType.SUBSCRIPTION,
                    amount=gross,
                    platform_fee=split.fee,
                    tx_hash=tx_hash,
                    status=TransactionStatus.COMPLETED,
                    memo=f"Subscription to creator {creator_id}",
                    settled_at=now,
                )
                session.add(transaction)
                await session.flush()

                await repo.adjust_creator_counters(creator_id, subscriber_delta=1, earnings_delta=split.net)
                await self._collect_fee(repo, transaction)

                pushes.append(await self.notifications.record(
                    session,
                    creator.user_id,
                    NewSubscriberPayload(
                        subscription_id=subscription.id,
                        subscriber_id=subscriber_id,
                        tier_id=tier_id,
                        amount=gross,
                    ),
                ))
        except IntegrityError as e:
            return await self._resolve_subscription_race(e, tx_hash, subscriber_id, creator_id)

        self.logger.info(
            "Subscription payment recorded",
            subscription_id=subscription.id,
            transaction_id=transaction.id,
            creator_id=creator_id,
            amount=str(gross),
            fee=str(split.fee),
        )
        await self.notifications.dispatch(pushes)
        return PaymentResult(transaction=transaction, subscription=subscription)

    async def record_renewal_payment(
        self,
        subscription_id: int,
        tx_hash: str,
        subscriber_id: Optional[int] = None,
    ) -> PaymentResult:
        """
        Apply a renewal payment: advance the billing clock by one period and credit earnings.

        A pending renewal request for the subscription is completed in place,
        keeping the fee stored when it was opened.
        """
        tx_hash = StellarValidator.normalize_tx_hash(tx_hash)
        pushes: List[Optional[PendingPush]] = []

        try:
            async with self._unit() as (session, repo):
                existing = await repo.get_transaction_by_hash(tx_hash)
                if existing is not None:
                    return await self._renewal_duplicate(repo, existing, subscription_id, subscriber_id)

                subscription = await repo.get_subscription(subscription_id, for_update=True)
                if subscription is None or (
                    subscriber_id is not None and subscription.subscriber_id != subscriber_id
                ):
                    raise SubscriptionNotFoundError(subscription_id)
                if subscription.is_terminal:
                    raise NotActiveError(subscription_id, subscription.status.value)

                creator = await repo.get_creator(subscription.creator_id)
                now = self.clock()

                transaction = await repo.get_pending_renewal_placeholder(subscription.id)
                if transaction is not None:
                    transaction.tx_hash = tx_hash
                    transaction.status = TransactionStatus.COMPLETED
                else:
                    split = compute_fee_split(subscription.amount, self.billing.fee_percent)
                    transaction = Transaction(
                        sender_id=subscription.subscriber_id,
                        recipient_id=creator.user_id,
                        subscription_id=subscription.id,
                        type=TransactionType.RENEWAL,
                        amount=subscription.amount,
                        platform_fee=split.fee,
                        tx_hash=tx_hash,
                        status=TransactionStatus.COMPLETED,
                        memo=f"Renewal: subscription {subscription.id}",
                    )
                    session.add(transaction)
                await session.flush()

                pushes.extend(await self._settle(session, repo, transaction, subscription, creator, now))
        except IntegrityError as e:
            winner = await self._reread_by_hash(tx_hash)
            if winner is None:
                raise
            self.logger.info("Renewal payment resolved to concurrent insert", tx_hash=tx_hash, error=str(e))
            async with self._unit() as (session, repo):
                return await self._renewal_duplicate(repo, winner, subscription_id, subscriber_id)

        self.logger.info(
            "Renewal payment recorded",
            subscription_id=subscription.id,
            transaction_id=transaction.id,
            next_billing_at=subscription.next_billing_at.isoformat(),
        )
        await self.notifications.dispatch(pushes)
        return PaymentResult(transaction=transaction, subscription=subscription)

    async def record_tip(
        self,
        sender_id: Optional[int],
        creator_id: int,
        amount: Decimal,
        tx_hash: str,
        message: Optional[str] = None,
    ) -> PaymentResult:
        """Record a one-off tip. sender_id is None for payments from unknown wallets."""
        tx_hash = StellarValidator.normalize_tx_hash(tx_hash)
        gross = StellarValidator.parse_amount(amount)
        pushes: List[Optional[PendingPush]] = []

        try:
            async with self._unit() as (session, repo):
                existing = await repo.get_transaction_by_hash(tx_hash)
                if existing is not None:
                    creator = await repo.get_creator(creator_id)
                    self._ensure_same_payment(
                        existing, TransactionType.TIP, sender_id,
                        creator.user_id if creator else None, tx_hash,
                    )
                    return PaymentResult(transaction=existing, duplicate=True)

                creator = await self._require_creator(repo, creator_id)
                now = self.clock()
                split = compute_fee_split(gross, self.billing.fee_percent)

                transaction = Transaction(
                    sender_id=sender_id,
                    recipient_id=creator.user_id,
                    type=TransactionType.TIP,
                    amount=gross,
                    platform_fee=split.fee,
                    tx_hash=tx_hash,
                    status=TransactionStatus.COMPLETED,
                    memo=message,
                )
                session.add(transaction)
                await session.flush()

                pushes.extend(await self._settle(session, repo, transaction, None, creator, now))
                pushes.append(await self.notifications.record(
                    session,
                    creator.user_id,
                    TipReceivedPayload(
                        transaction_id=transaction.id,
                        sender_id=sender_id,
                        amount=gross,
                        tip_message=message,
                    ),
                ))
        except IntegrityError as e:
            winner = await self._reread_by_hash(tx_hash)
            if winner is None:
                raise
            self.logger.info("Tip resolved to concurrent insert", tx_hash=tx_hash, error=str(e))
            async with self._unit() as (session, repo):
                creator = await repo.get_creator(creator_id)
            self._ensure_same_payment(
                winner, TransactionType.TIP, sender_id, creator.user_id if creator else None, tx_hash,
            )
            return PaymentResult(transaction=winner, duplicate=True)

        self.logger.info(
            "Tip recorded",
            transaction_id=transaction.id,
            creator_id=creator_id,
            amount=str(gross),
        )
        await self.notifications.dispatch(pushes)
        return PaymentResult(transaction=transaction)

    async def confirm_payment(self, tx_hash: str, amount: Optional[Decimal] = None) -> ConfirmResult:
        """
        Confirm a stored transaction from a chain event.

        pending -> completed and settled in the same unit; completed rows are
        reported as already processed with no writes. The stored amount and fee
        stay authoritative; a differing on-chain amount is only logged.
        """
        tx_hash = StellarValidator.normalize_tx_hash(tx_hash)
        pushes: List[Optional[PendingPush]] = []

        async with self._unit() as (session, repo):
            transaction = await repo.get_transaction_by_hash(tx_hash, for_update=True)
            if transaction is None:
                raise TransactionNotFoundError(tx_hash)

            if transaction.status == TransactionStatus.COMPLETED:
                return ConfirmResult(transaction=transaction, status="already_processed")
            if transaction.status != TransactionStatus.PENDING:
                return ConfirmResult(transaction=transaction, status="ignored")

            if amount is not None and Decimal(amount) != transaction.amount:
                self.logger.warning(
                    "Confirmed amount differs from stored amount",
                    transaction_id=transaction.id,
                    stored=str(transaction.amount),
                    confirmed=str(amount),
                )

            transaction.status = TransactionStatus.COMPLETED
            await session.flush()
            pushes.extend(await self._complete_pending(session, repo, transaction))

        self.logger.info("Pending transaction confirmed", transaction_id=transaction.id, tx_hash=tx_hash)
        await self.notifications.dispatch(pushes)
        return ConfirmResult(transaction=transaction, status="processed")

    async def match_pending_renewal(
        self,
        sender_id: int,
        creator_id: int,
        amount: Decimal,
        tx_hash: str,
    ) -> Optional[ConfirmResult]:
        """
        Attach an unseen chain payment to an open renewal request.

        Matches the oldest hashless pending renewal of the sender's live
        subscription to the creator when the amount equals the request.
        Returns None when nothing matches.
        """
        tx_hash = StellarValidator.normalize_tx_hash(tx_hash)
        pushes: List[Optional[PendingPush]] = []

        try:
            async with self._unit() as (session, repo):
                subscription = await repo.get_live_subscription(sender_id, creator_id)
                if subscription is None:
                    return None
                placeholder = await repo.get_pending_renewal_placeholder(subscription.id)
                if placeholder is None or placeholder.amount != amount:
                    return None

                placeholder.tx_hash = tx_hash
                placeholder.status = TransactionStatus.COMPLETED
                await session.flush()
                pushes.extend(await self._complete_pending(session, repo, placeholder))
        except IntegrityError:
            # Hash recorded concurrently by another path
            winner = await self._reread_by_hash(tx_hash)
            if winner is None:
                raise
            return ConfirmResult(transaction=winner, status="already_processed")

        self.logger.info(
            "Chain payment matched to renewal request",
            transaction_id=placeholder.id,
            subscription_id=subscription.id,
            tx_hash=tx_hash,
        )
        await self.notifications.dispatch(pushes)
        return ConfirmResult(transaction=placeholder, status="processed")

    async def settle_completed_renewal(self, transaction_id: int, now: Optional[datetime] = None) -> bool:
        """
        Repair pass: settle a completed renewal whose billing clock was never advanced.

        Returns False when the row no longer needs settling.
        """
        pushes: List[Optional[PendingPush]] = []

        async with self._unit() as (session, repo):
            transaction = await repo.get_transaction(transaction_id, for_update=True)
            if transaction is None:
                raise TransactionNotFoundError(transaction_id)
            if (
                transaction.type != TransactionType.RENEWAL
                or transaction.status != TransactionStatus.COMPLETED
                or transaction.settled_at is not None
            ):
                return False

            subscription = await repo.get_subscription(transaction.subscription_id, for_update=True)
            creator = await repo.get_creator(subscription.creator_id)
            pushes.extend(await self._settle(
                session, repo, transaction, subscription, creator, now or self.clock()
            ))

        self.logger.info(
            "Completed renewal settled",
            transaction_id=transaction_id,
            subscription_id=subscription.id,
        )
        await self.notifications.dispatch(pushes)
        return True

    # Subscription lifecycle

    async def cancel_subscription(
        self,
        subscription_id: int,
        reason: Optional[str] = None,
        subscriber_id: Optional[int] = None,
    ) -> Subscription:
        pushes: List[Optional[PendingPush]] = []

        async with self._unit() as (session, repo):
            subscription = await repo.get_subscription(subscription_id, for_update=True)
            if subscription is None or (
                subscriber_id is not None and subscription.subscriber_id != subscriber_id
            ):
                raise SubscriptionNotFoundError(subscription_id)
            if subscription.status != SubscriptionStatus.ACTIVE:
                raise NotActiveError(subscription_id, subscription.status.value)

            subscription.status = SubscriptionStatus.CANCELLED
            subscription.cancelled_at = self.clock()
            subscription.cancel_reason = reason
            await repo.adjust_creator_counters(subscription.creator_id, subscriber_delta=-1)

            creator = await repo.get_creator(subscription.creator_id)
            pushes.append(await self.notifications.record(
                session,
                creator.user_id,
                SubscriptionCancelledPayload(
                    subscription_id=subscription.id,
                    subscriber_id=subscription.subscriber_id,
                    reason=reason,
                ),
            ))

        self.logger.info("Subscription cancelled", subscription_id=subscription_id, reason=reason)
        await self.notifications.dispatch(pushes)
        return subscription

    async def send_renewal_reminder(self, subscription_id: int, days_until: int, now: datetime) -> bool:
        """Record a one-time reminder; False when not due or already sent."""
        pushes: List[Optional[PendingPush]] = []

        try:
            async with self._unit() as (session, repo):
                subscription = await repo.get_subscription(subscription_id)
                if subscription is None or subscription.status != SubscriptionStatus.ACTIVE:
                    return False
                if calendar_days_until(subscription.next_billing_at, now) != days_until:
                    return False

                pushes.append(await self.notifications.record(
                    session,
                    subscription.subscriber_id,
                    RenewalReminderPayload(
                        subscription_id=subscription.id,
                        creator_id=subscription.creator_id,
                        days_until=days_until,
                        amount=subscription.amount,
                        next_billing_at=subscription.next_billing_at,
                    ),
                ))
        except IntegrityError:
            # Same dedup key inserted by an overlapping run
            self.logger.debug(
                "Reminder already recorded concurrently",
                subscription_id=subscription_id,
                days_until=days_until,
            )
            return False

        if pushes[0] is None:
            return False
        await self.notifications.dispatch(pushes)
        return True

    async def request_renewal(self, subscription_id: int, now: datetime) -> Optional[Transaction]:
        """
        Open a pending renewal request for a due subscription.

        The subscription moves active -> past_due until the payment lands.
        Returns None when the subscription is not due or already has a recent request.
        """
        pushes: List[Optional[PendingPush]] = []
        grace_cutoff = now - timedelta(days=self.billing.grace_period_days)
        pending_since = now - timedelta(days=self.billing.pending_renewal_window_days)

        async with self._unit() as (session, repo):
            subscription = await repo.get_subscription(subscription_id, for_update=True)
            if subscription is None or not subscription.is_live:
                return None
            if not (grace_cutoff < subscription.next_billing_at <= now):
                return None
            if await repo.has_recent_pending_renewal(subscription.id, pending_since):
                return None

            creator = await repo.get_creator(subscription.creator_id)
            split = compute_fee_split(subscription.amount, self.billing.fee_percent)
            transaction = Transaction(
                sender_id=subscription.subscriber_id,
                recipient_id=creator.user_id,
                subscription_id=subscription.id,
                type=TransactionType.RENEWAL,
                amount=subscription.amount,
                platform_fee=split.fee,
                status=TransactionStatus.PENDING,
                memo=f"Renewal: subscription {subscription.id}",
            )
            session.add(transaction)
            await session.flush()

            if subscription.status == SubscriptionStatus.ACTIVE:
                subscription.status = SubscriptionStatus.PAST_DUE
                await repo.adjust_creator_counters(subscription.creator_id, subscriber_delta=-1)

            pushes.append(await self.notifications.record(
                session,
                subscription.subscriber_id,
                RenewalDuePayload(
                    subscription_id=subscription.id,
                    creator_id=subscription.creator_id,
                    transaction_id=transaction.id,
                    amount=subscription.amount,
                ),
            ))

        self.logger.info(
            "Renewal requested",
            subscription_id=subscription_id,
            transaction_id=transaction.id,
        )
        await self.notifications.dispatch(pushes)
        return transaction

    async def expire_subscription(self, subscription_id: int, now: datetime) -> bool:
        """Expire a live subscription whose grace period has run out."""
        pushes: List[Optional[PendingPush]] = []
        grace_cutoff = now - timedelta(days=self.billing.grace_period_days)

        async with self._unit() as (session, repo):
            subscription = await repo.get_subscription(subscription_id, for_update=True)
            if subscription is None or not subscription.is_live:
                return False
            if subscription.next_billing_at >= grace_cutoff:
                return False

            was_active = subscription.status == SubscriptionStatus.ACTIVE
            subscription.status = SubscriptionStatus.EXPIRED
            subscription.expired_at = now
            if was_active:
                await repo.adjust_creator_counters(subscription.creator_id, subscriber_delta=-1)

            creator = await repo.get_creator(subscription.creator_id)
            pushes.append(await self.notifications.record(
                session,
                subscription.subscriber_id,
                SubscriptionExpiredPayload(
                    subscription_id=subscription.id,
                    creator_id=subscription.creator_id,
                ),
            ))
            pushes.append(await self.notifications.record(
                session,
                creator.user_id,
                SubscriberExpiredPayload(
                    subscription_id=subscription.id,
                    subscriber_id=subscription.subscriber_id,
                ),
            ))

        self.logger.info("Subscription expired", subscription_id=subscription_id, was_active=was_active)
        await self.notifications.dispatch(pushes)
        return True

    # Platform earnings

    async def get_platform_balance(self) -> PlatformBalance:
        async with self._unit() as (session, repo):
            totals = await repo.platform_totals()
        return PlatformBalance(
            collected=totals[EarningStatus.COLLECTED],
            withdrawn=totals[EarningStatus.WITHDRAWN],
        )

    async def withdraw_platform_earnings(
        self,
        amount: Decimal,
        destination: str,
        reference: Optional[str] = None,
    ) -> WithdrawalResult:
        """
        Mark collected fees as withdrawn, oldest first.

        The last row is split when it is only partly consumed, so the sum of
        collected plus withdrawn always equals total fees.
        """
        amount = StellarValidator.parse_amount(amount)
        reference = reference or destination

        async with self._unit() as (session, repo):
            rows = await repo.collected_earnings_oldest_first()
            available = sum((row.amount for row in rows), Decimal("0"))
            if amount > available:
                raise InsufficientPlatformBalanceError(amount, available)

            now = self.clock()
            remaining = amount
            earning_ids: List[int] = []

            for row in rows:
                if remaining <= 0:
                    break
                if row.amount > remaining:
                    session.add(PlatformEarning(
                        transaction_id=row.transaction_id,
                        amount=row.amount - remaining,
                        fee_type=row.fee_type,
                        status=EarningStatus.COLLECTED,
                        created_at=row.created_at,
                    ))
                    row.amount = remaining
                remaining -= row.amount
                row.status = EarningStatus.WITHDRAWN
                row.withdrawn_at = now
                row.withdrawal_reference = reference
                earning_ids.append(row.id)

        self.logger.info(
            "Platform earnings withdrawn",
            amount=str(amount),
            destination=destination,
            rows=len(earning_ids),
        )
        return WithdrawalResult(
            amount=amount,
            destination=destination,
            reference=reference,
            earning_ids=earning_ids,
            remaining_balance=available - amount,
        )

    # Internals

    async def _require_creator(self, repo: LedgerRepository, creator_id: int) -> Creator:
        creator = await repo.get_creator(creator_id)
        if creator is None or not creator.is_active:
            raise CreatorNotFoundError(creator_id)
        return creator

    async def _collect_fee(self, repo: LedgerRepository, transaction: Transaction) -> None:
        if transaction.platform_fee > 0:
            await repo.add_platform_earning(
                transaction.id, transaction.platform_fee, FEE_TYPES[transaction.type]
            )

    async def _settle(
        self,
        session: AsyncSession,
        repo: LedgerRepository,
        transaction: Transaction,
        subscription: Optional[Subscription],
        creator: Creator,
        now: datetime,
    ) -> List[Optional[PendingPush]]:
        """
        Credit a completed transaction and, for renewals, advance the billing clock.

        Uses the stored fee. Late renewals on terminal subscriptions are
        credited without resurrecting the subscription.
        """
        pushes: List[Optional[PendingPush]] = []
        subscriber_delta = 0

        if transaction.type == TransactionType.RENEWAL and subscription is not None:
            if subscription.is_live:
                subscription.next_billing_at = add_billing_periods(
                    subscription.next_billing_at,
                    self.billing.billing_period_months,
                    anchor_day=subscription.started_at.day,
                )
                if subscription.status == SubscriptionStatus.PAST_DUE:
                    subscription.status = SubscriptionStatus.ACTIVE
                    subscriber_delta = 1
                pushes.append(await self.notifications.record(
                    session,
                    creator.user_id,
                    RenewalConfirmedPayload(
                        subscription_id=subscription.id,
                        transaction_id=transaction.id,
                        subscriber_id=subscription.subscriber_id,
                        next_billing_at=subscription.next_billing_at,
                    ),
                ))
            else:
                self.logger.warning(
                    "Renewal paid for terminal subscription; crediting without reactivation",
                    subscription_id=subscription.id,
                    status=subscription.status.value,
                    transaction_id=transaction.id,
                )

        await repo.adjust_creator_counters(
            creator.id, subscriber_delta=subscriber_delta, earnings_delta=transaction.net_amount
        )
        await self._collect_fee(repo, transaction)
        transaction.settled_at = now
        return pushes

    async def _complete_pending(
        self,
        session: AsyncSession,
        repo: LedgerRepository,
        transaction: Transaction,
    ) -> List[Optional[PendingPush]]:
        """Settle a just-completed pending row and notify both parties."""
        subscription = None
        if transaction.subscription_id is not None:
            subscription = await repo.get_subscription(transaction.subscription_id, for_update=True)
        creator = await repo.get_creator_by_user(transaction.recipient_id)

        pushes: List[Optional[PendingPush]] = []
        if creator is not None:
            pushes.extend(await self._settle(session, repo, transaction, subscription, creator, self.clock()))
        else:
            self.logger.warning(
                "Confirmed payment recipient is not a creator; no earnings credited",
                transaction_id=transaction.id,
                recipient_id=transaction.recipient_id,
            )
            transaction.settled_at = self.clock()

        if transaction.sender_id is not None:
            pushes.append(await self.notifications.record(
                session,
                transaction.sender_id,
                TransactionConfirmedPayload(
                    transaction_id=transaction.id,
                    tx_hash=transaction.tx_hash,
                    amount=transaction.amount,
                ),
            ))
        pushes.append(await self.notifications.record(
            session,
            transaction.recipient_id,
            PaymentReceivedPayload(
                transaction_id=transaction.id,
                tx_hash=transaction.tx_hash,
                amount=transaction.amount,
                sender_id=transaction.sender_id,
            ),
        ))
        return pushes

    @staticmethod
    def _ensure_same_payment(
        existing: Transaction,
        tx_type: TransactionType,
        sender_id: Optional[int],
        recipient_id: Optional[int],
        tx_hash: str,
    ) -> None:
        if (
            existing.type != tx_type
            or existing.sender_id != sender_id
            or existing.recipient_id != recipient_id
        ):
            raise DuplicatePaymentError(tx_hash, existing.id)

    async def _subscription_duplicate(
        self,
        repo: LedgerRepository,
        existing: Transaction,
        subscriber_id: int,
        creator_id: int,
    ) -> PaymentResult:
        creator = await repo.get_creator(creator_id)
        self._ensure_same_payment(
            existing, TransactionType.SUBSCRIPTION, subscriber_id,
            creator.user_id if creator else None, existing.tx_hash,
        )
        subscription = await repo.get_subscription(existing.subscription_id)
        return PaymentResult(transaction=existing, subscription=subscription, duplicate=True)

    async def _renewal_duplicate(
        self,
        repo: LedgerRepository,
        existing: Transaction,
        subscription_id: int,
        subscriber_id: Optional[int],
    ) -> PaymentResult:
        subscription = await repo.get_subscription(subscription_id)
        if subscription is None or (
            subscriber_id is not None and subscription.subscriber_id != subscriber_id
        ):
            raise SubscriptionNotFoundError(subscription_id)
        if existing.type != TransactionType.RENEWAL or existing.subscription_id != subscription_id:
            raise DuplicatePaymentError(existing.tx_hash, existing.id)
        return PaymentResult(transaction=existing, subscription=subscription, duplicate=True)

    async def _reread_by_hash(self, tx_hash: str) -> Optional[Transaction]:
        async with self._unit() as (session, repo):
            return await repo.get_transaction_by_hash(tx_hash)

    async def _resolve_subscription_race(
        self,
        error: IntegrityError,
        tx_hash: str,
        subscriber_id: int,
        creator_id: int,
    ) -> PaymentResult:
        """Interpret a unique violation after the losing unit rolled back."""
        async with self._unit() as (session, repo):
            winner = await repo.get_transaction_by_hash(tx_hash)
            if winner is not None:
                self.logger.info(
                    "Subscription payment resolved to concurrent insert",
                    tx_hash=tx_hash,
                    transaction_id=winner.id,
                )
                return await self._subscription_duplicate(repo, winner, subscriber_id, creator_id)
            if await repo.get_live_subscription(subscriber_id, creator_id) is not None:
                raise AlreadySubscribedError(subscriber_id, creator_id)
        raise error
