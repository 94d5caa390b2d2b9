"""
Ledger repository - typed queries over the billing tables.

Wraps a single AsyncSession; callers own the transaction boundary.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, exists, extract, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orrbit.models import (
    Creator, EarningStatus, FeeType, LIVE_STATUSES, PlatformEarning, Subscription,
    SubscriptionStatus, Tier, Transaction, TransactionStatus, TransactionType, User,
)


@dataclass
class TransactionFilter:
    """Known filters for transaction listings; each maps to one bound predicate."""
    user_id: Optional[int] = None
    subscription_id: Optional[int] = None
    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    page: int = 1
    limit: int = 20

    def predicates(self) -> List[Any]:
        clauses = []
        if self.user_id is not None:
            clauses.append(
                or_(Transaction.sender_id == self.user_id, Transaction.recipient_id == self.user_id)
            )
        if self.subscription_id is not None:
            clauses.append(Transaction.subscription_id == self.subscription_id)
        if self.type is not None:
            clauses.append(Transaction.type == self.type)
        if self.status is not None:
            clauses.append(Transaction.status == self.status)
        return clauses

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.limit


@dataclass
class SubscriptionFilter:
    subscriber_id: Optional[int] = None
    creator_id: Optional[int] = None
    status: Optional[SubscriptionStatus] = None
    page: int = 1
    limit: int = 20

    def predicates(self) -> List[Any]:
        clauses = []
        if self.subscriber_id is not None:
            clauses.append(Subscription.subscriber_id == self.subscriber_id)
        if self.creator_id is not None:
            clauses.append(Subscription.creator_id == self.creator_id)
        if self.status is not None:
            clauses.append(Subscription.status == self.status)
        return clauses

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.limit


class LedgerRepository:
    """Queries and counter updates used by reconciliation and the renewal worker."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Accounts

    async def get_user(self, user_id: int) -> Optional[User]:
        return await self.session.get(User, user_id)

    async def get_user_by_wallet(self, wallet_address: str) -> Optional[User]:
        return await self.session.scalar(
            select(User).where(User.wallet_address == wallet_address)
        )

    async def get_creator(self, creator_id: int) -> Optional[Creator]:
        return await self.session.get(Creator, creator_id)

    async def get_creator_by_user(self, user_id: int) -> Optional[Creator]:
        return await self.session.scalar(select(Creator).where(Creator.user_id == user_id))

    async def get_creator_by_wallet(self, wallet_address: str) -> Optional[Creator]:
        return await self.session.scalar(
            select(Creator)
            .join(User, User.id == Creator.user_id)
            .where(User.wallet_address == wallet_address)
        )

    async def get_creator_wallet(self, creator_id: int) -> Optional[str]:
        """Payout address of a creator: the owning user's wallet."""
        return await self.session.scalar(
            select(User.wallet_address)
            .join(Creator, Creator.user_id == User.id)
            .where(Creator.id == creator_id)
        )

    async def get_tier(self, tier_id: int) -> Optional[Tier]:
        return await self.session.get(Tier, tier_id)

    async def adjust_creator_counters(
        self,
        creator_id: int,
        subscriber_delta: int = 0,
        earnings_delta: Decimal = Decimal("0")
    ) -> None:
        """Apply counter deltas as SQL expressions, never read-modify-write."""
        values: Dict[str, Any] = {}
        if subscriber_delta:
            values["subscriber_count"] = Creator.subscriber_count + subscriber_delta
        if earnings_delta:
            values["total_earnings"] = Creator.total_earnings + earnings_delta
        if not values:
            return
        await self.session.execute(
            update(Creator).where(Creator.id == creator_id).values(**values)
        )

    # Subscriptions

    async def get_subscription(self, subscription_id: int, for_update: bool = False) -> Optional[Subscription]:
        stmt = select(Subscription).where(Subscription.id == subscription_id)
        if for_update:
            stmt = stmt.with_for_update()
        return await self.session.scalar(stmt.execution_options(populate_existing=True))

    async def get_live_subscription(self, subscriber_id: int, creator_id: int) -> Optional[Subscription]:
        return await self.session.scalar(
            select(Subscription).where(
                Subscription.subscriber_id == subscriber_id,
                Subscription.creator_id == creator_id,
                Subscription.status.in_(LIVE_STATUSES),
            )
        )

    async def list_subscriptions(self, filters: SubscriptionFilter) -> Tuple[Sequence[Subscription], int]:
        clauses = filters.predicates()
        total = await self.session.scalar(
            select(func.count()).select_from(Subscription).where(*clauses)
        )
        rows = await self.session.scalars(
            select(Subscription)
            .where(*clauses)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        return rows.all(), total or 0

    async def reminder_candidate_ids(self, window_start: datetime, window_end: datetime) -> List[int]:
        """Active subscriptions whose next billing falls in [window_start, window_end)."""
        rows = await self.session.scalars(
            select(Subscription.id)
            .where(
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.next_billing_at >= window_start,
                Subscription.next_billing_at < window_end,
            )
            .order_by(Subscription.id)
        )
        return list(rows)

    async def due_renewal_candidate_ids(
        self,
        now: datetime,
        grace_cutoff: datetime,
        pending_since: datetime
    ) -> List[int]:
        """Live subscriptions due inside the grace window without a recent pending renewal."""
        recent_pending = self._recent_pending_renewal_clause(pending_since)
        rows = await self.session.scalars(
            select(Subscription.id)
            .where(
                Subscription.status.in_(LIVE_STATUSES),
                Subscription.next_billing_at <= now,
                Subscription.next_billing_at > grace_cutoff,
                ~recent_pending,
            )
            .order_by(Subscription.next_billing_at, Subscription.id)
        )
        return list(rows)

    async def has_recent_pending_renewal(self, subscription_id: int, pending_since: datetime) -> bool:
        stmt = select(Transaction.id).where(
            Transaction.subscription_id == subscription_id,
            Transaction.type == TransactionType.RENEWAL,
            Transaction.status == TransactionStatus.PENDING,
            Transaction.created_at >= pending_since,
        ).limit(1)
        return (await self.session.scalar(stmt)) is not None

    async def overdue_subscription_ids(self, grace_cutoff: datetime) -> List[int]:
        """Live subscriptions whose billing date is past the grace window."""
        rows = await self.session.scalars(
            select(Subscription.id)
            .where(
                Subscription.status.in_(LIVE_STATUSES),
                Subscription.next_billing_at < grace_cutoff,
            )
            .order_by(Subscription.id)
        )
        return list(rows)

    def _recent_pending_renewal_clause(self, pending_since: datetime):
        return exists().where(
            Transaction.subscription_id == Subscription.id,
            Transaction.type == TransactionType.RENEWAL,
            Transaction.status == TransactionStatus.PENDING,
            Transaction.created_at >= pending_since,
        )

    # Transactions

    async def get_transaction(self, transaction_id: int, for_update: bool = False) -> Optional[Transaction]:
        stmt = select(Transaction).where(Transaction.id == transaction_id)
        if for_update:
            stmt = stmt.with_for_update()
        return await self.session.scalar(stmt.execution_options(populate_existing=True))

    async def get_transaction_by_hash(self, tx_hash: str, for_update: bool = False) -> Optional[Transaction]:
        stmt = select(Transaction).where(Transaction.tx_hash == tx_hash)
        if for_update:
            stmt = stmt.with_for_update()
        return await self.session.scalar(stmt.execution_options(populate_existing=True))

    async def get_pending_renewal_placeholder(self, subscription_id: int) -> Optional[Transaction]:
        """Oldest unpaid renewal request for a subscription."""
        return await self.session.scalar(
            select(Transaction)
            .where(
                Transaction.subscription_id == subscription_id,
                Transaction.type == TransactionType.RENEWAL,
                Transaction.status == TransactionStatus.PENDING,
                Transaction.tx_hash.is_(None),
            )
            .order_by(Transaction.created_at, Transaction.id)
            .limit(1)
            .with_for_update()
        )

    async def unsettled_completed_renewal_ids(self, now: datetime) -> List[int]:
        """Completed renewals whose subscription clock was never advanced."""
        rows = await self.session.scalars(
            select(Transaction.id)
            .join(Subscription, Subscription.id == Transaction.subscription_id)
            .where(
                Transaction.type == TransactionType.RENEWAL,
                Transaction.status == TransactionStatus.COMPLETED,
                Transaction.tx_hash.is_not(None),
                Transaction.settled_at.is_(None),
                Subscription.next_billing_at <= now,
            )
            .order_by(Transaction.id)
        )
        return list(rows)

    async def list_transactions(self, filters: TransactionFilter) -> Tuple[Sequence[Transaction], int]:
        clauses = filters.predicates()
        total = await self.session.scalar(
            select(func.count()).select_from(Transaction).where(*clauses)
        )
        rows = await self.session.scalars(
            select(Transaction)
            .where(*clauses)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        return rows.all(), total or 0

    async def get_transaction_for_party(self, transaction_id: int, user_id: int) -> Optional[Transaction]:
        """A transaction visible to the user: sent or received by them."""
        return await self.session.scalar(
            select(Transaction).where(
                Transaction.id == transaction_id,
                or_(Transaction.sender_id == user_id, Transaction.recipient_id == user_id),
            )
        )

    async def user_transaction_stats(self, user_id: int, months_since: datetime) -> Dict[str, Any]:
        """Completed earnings and spending for one user, with a per-month breakdown since a date."""
        net = Transaction.amount - Transaction.platform_fee
        completed = Transaction.status == TransactionStatus.COMPLETED
        subscription_types = (TransactionType.SUBSCRIPTION, TransactionType.RENEWAL)

        earnings_row = (await self.session.execute(
            select(
                func.coalesce(func.sum(net), 0),
                func.coalesce(func.sum(case((Transaction.type.in_(subscription_types), net), else_=0)), 0),
                func.coalesce(func.sum(case((Transaction.type == TransactionType.TIP, net), else_=0)), 0),
            ).where(Transaction.recipient_id == user_id, completed)
        )).one()
        spent_row = (await self.session.execute(
            select(
                func.coalesce(func.sum(Transaction.amount), 0),
                func.count(Transaction.id),
            ).where(Transaction.sender_id == user_id, completed)
        )).one()

        year = extract("year", Transaction.created_at)
        month = extract("month", Transaction.created_at)
        monthly_rows = await self.session.execute(
            select(
                year,
                month,
                func.coalesce(func.sum(case((Transaction.recipient_id == user_id, net), else_=0)), 0),
                func.coalesce(func.sum(case((Transaction.sender_id == user_id, Transaction.amount), else_=0)), 0),
            )
            .where(
                or_(Transaction.sender_id == user_id, Transaction.recipient_id == user_id),
                completed,
                Transaction.created_at >= months_since,
            )
            .group_by(year, month)
            .order_by(year.desc(), month.desc())
        )

        return {
            "earnings": {
                "total": Decimal(str(earnings_row[0])),
                "subscriptions": Decimal(str(earnings_row[1])),
                "tips": Decimal(str(earnings_row[2])),
            },
            "spent": {
                "total": Decimal(str(spent_row[0])),
                "transaction_count": spent_row[1] or 0,
            },
            "monthly": [
                {
                    "month": f"{int(row_year):04d}-{int(row_month):02d}",
                    "earnings": Decimal(str(earned)),
                    "spent": Decimal(str(spent)),
                }
                for row_year, row_month, earned, spent in monthly_rows
            ],
        }

    # Platform earnings

    async def add_platform_earning(self, transaction_id: int, amount: Decimal, fee_type: FeeType) -> PlatformEarning:
        earning = PlatformEarning(
            transaction_id=transaction_id,
            amount=amount,
            fee_type=fee_type,
            status=EarningStatus.COLLECTED,
        )
        self.session.add(earning)
        return earning

    async def platform_totals(self) -> Dict[EarningStatus, Decimal]:
        rows = await self.session.execute(
            select(PlatformEarning.status, func.coalesce(func.sum(PlatformEarning.amount), 0))
            .group_by(PlatformEarning.status)
        )
        totals = {status: Decimal("0") for status in EarningStatus}
        for status, amount in rows:
            totals[status] = Decimal(str(amount))
        return totals

    async def collected_earnings_oldest_first(self) -> Sequence[PlatformEarning]:
        rows = await self.session.scalars(
            select(PlatformEarning)
            .where(PlatformEarning.status == EarningStatus.COLLECTED)
            .order_by(PlatformEarning.created_at, PlatformEarning.id)
            .with_for_update()
        )
        return rows.all()

    # Reporting

    async def daily_stats(self, day_start: datetime, day_end: datetime) -> Dict[str, Any]:
        """Aggregates for one calendar day plus current totals."""
        in_day = and_(Transaction.created_at >= day_start, Transaction.created_at < day_end)

        new_subscriptions = await self.session.scalar(
            select(func.count()).select_from(Subscription).where(
                Subscription.started_at >= day_start,
                Subscription.started_at < day_end,
            )
        )
        volume_row = (await self.session.execute(
            select(
                func.count(Transaction.id),
                func.coalesce(func.sum(Transaction.amount), 0),
                func.coalesce(func.sum(Transaction.platform_fee), 0),
            ).where(in_day, Transaction.status == TransactionStatus.COMPLETED)
        )).one()
        active_subscriptions = await self.session.scalar(
            select(func.count()).select_from(Subscription).where(
                Subscription.status == SubscriptionStatus.ACTIVE
            )
        )
        active_creators = await self.session.scalar(
            select(func.count()).select_from(Creator).where(Creator.is_active.is_(True))
        )

        return {
            "new_subscriptions": new_subscriptions or 0,
            "completed_transactions": volume_row[0] or 0,
            "volume": Decimal(str(volume_row[1])),
            "platform_fees": Decimal(str(volume_row[2])),
            "active_subscriptions": active_subscriptions or 0,
            "active_creators": active_creators or 0,
        }
