"""
Shared fixtures: an in-memory ledger seeded with one creator and two subscribers.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, List

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from orrbit.core.config import BillingConfig
from orrbit.core.database import build_session_maker
from orrbit.models import (
    Base, Creator, Notification, Subscription, SubscriptionStatus, Tier, Transaction, User, UserRole,
)
from orrbit.notifications.connection_manager import ConnectionManager
from orrbit.notifications.notification_service import NotificationService
from orrbit.services.reconciliation_service import ReconciliationService


def wallet(char: str) -> str:
    """A syntactically valid Stellar account id."""
    return "G" + char * 55


def tx_hash(n: int) -> str:
    return f"{n:064x}"


SUBSCRIBER_WALLET = wallet("S")
SECOND_SUBSCRIBER_WALLET = wallet("T")
CREATOR_WALLET = wallet("C")
OTHER_CREATOR_WALLET = wallet("D")
STRANGER_WALLET = wallet("X")

NOW = datetime(2026, 3, 10, 12, 0, 0)


class FixedClock:
    """Mutable stand-in for utcnow()."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeConnection:
    """Collects frames sent to a websocket."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.frames: List[Any] = []

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.frames.append(data)


@dataclass
class Seed:
    subscriber_id: int
    second_subscriber_id: int
    creator_user_id: int
    creator_id: int
    other_creator_user_id: int
    other_creator_id: int
    tier_id: int
    other_tier_id: int


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_maker(engine)


@pytest.fixture
async def seed(session_factory) -> Seed:
    async with session_factory() as session:
        async with session.begin():
            subscriber = User(wallet_address=SUBSCRIBER_WALLET, display_name="sam")
            second = User(wallet_address=SECOND_SUBSCRIBER_WALLET, display_name="tess")
            creator_user = User(wallet_address=CREATOR_WALLET, display_name="cleo", role=UserRole.CREATOR)
            other_user = User(wallet_address=OTHER_CREATOR_WALLET, display_name="dax", role=UserRole.CREATOR)
            session.add_all([subscriber, second, creator_user, other_user])
            await session.flush()

            creator = Creator(user_id=creator_user.id)
            other_creator = Creator(user_id=other_user.id)
            session.add_all([creator, other_creator])
            await session.flush()

            tier = Tier(creator_id=creator.id, name="Supporter", price=Decimal("10"))
            other_tier = Tier(creator_id=other_creator.id, name="Backer", price=Decimal("5"))
            session.add_all([tier, other_tier])
            await session.flush()

            return Seed(
                subscriber_id=subscriber.id,
                second_subscriber_id=second.id,
                creator_user_id=creator_user.id,
                creator_id=creator.id,
                other_creator_user_id=other_user.id,
                other_creator_id=other_creator.id,
                tier_id=tier.id,
                other_tier_id=other_tier.id,
            )


@pytest.fixture
def billing() -> BillingConfig:
    return BillingConfig(
        fee_percent=Decimal("2"),
        billing_period_months=1,
        grace_period_days=7,
        reminder_days=(3, 1),
        pending_renewal_window_days=7,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def manager() -> ConnectionManager:
    return ConnectionManager()


@pytest.fixture
def notifications(manager) -> NotificationService:
    return NotificationService(manager)


@pytest.fixture
def reconciliation(session_factory, billing, notifications, clock) -> ReconciliationService:
    return ReconciliationService(session_factory, billing=billing, notifications=notifications, clock=clock)


class Ledger:
    """Read helpers for assertions."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def creator(self, creator_id: int) -> Creator:
        async with self.session_factory() as session:
            return await session.get(Creator, creator_id)

    async def subscription(self, subscription_id: int) -> Subscription:
        async with self.session_factory() as session:
            return await session.get(Subscription, subscription_id)

    async def transactions(self, **filters) -> List[Transaction]:
        async with self.session_factory() as session:
            rows = await session.scalars(select(Transaction).filter_by(**filters).order_by(Transaction.id))
            return list(rows)

    async def notifications(self, **filters) -> List[Notification]:
        async with self.session_factory() as session:
            rows = await session.scalars(select(Notification).filter_by(**filters).order_by(Notification.id))
            return list(rows)

    async def active_count(self, creator_id: int) -> int:
        async with self.session_factory() as session:
            return await session.scalar(
                select(func.count()).select_from(Subscription).where(
                    Subscription.creator_id == creator_id,
                    Subscription.status == SubscriptionStatus.ACTIVE,
                )
            )

    async def set_subscription(self, subscription_id: int, **values) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                subscription = await session.get(Subscription, subscription_id)
                for key, value in values.items():
                    setattr(subscription, key, value)

    async def add(self, *rows) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                session.add_all(rows)


@pytest.fixture
def ledger(session_factory) -> Ledger:
    return Ledger(session_factory)
