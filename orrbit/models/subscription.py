"""
Subscription model - recurring billing relationship between a subscriber and a creator.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, MONEY, enum_column


class SubscriptionStatus(str, Enum):
    """
    Subscription lifecycle.

    active -> past_due -> active, active/past_due -> expired,
    active -> cancelled. Expired and cancelled are terminal.
    """
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


LIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE)
TERMINAL_STATUSES = (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)

_LIVE_PREDICATE = text("status IN ('active', 'past_due')")


class Subscription(BaseModel, TimestampMixin):
    """Subscription owned by the subscriber."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    subscriber_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        comment="Paying user"
    )

    creator_id: Mapped[int] = mapped_column(
        ForeignKey("creators.id"),
        comment="Creator receiving payments"
    )

    tier_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tiers.id"),
        comment="Tier subscribed to, if any"
    )

    amount: Mapped[Decimal] = mapped_column(
        MONEY,
        comment="Amount charged per billing period"
    )

    status: Mapped[SubscriptionStatus] = mapped_column(
        enum_column(SubscriptionStatus, "subscription_status"),
        default=SubscriptionStatus.ACTIVE,
        comment="Lifecycle status"
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime,
        comment="First successful payment time"
    )

    next_billing_at: Mapped[datetime] = mapped_column(
        DateTime,
        comment="Next renewal due date (anchored cycle)"
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="Cancellation time"
    )

    cancel_reason: Mapped[Optional[str]] = mapped_column(
        String(255),
        comment="Reason given at cancellation"
    )

    expired_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="Time the grace period ran out"
    )

    __table_args__ = (
        # At most one live subscription per pair; terminal rows stay as history
        Index(
            "uq_subscription_live_pair",
            "subscriber_id",
            "creator_id",
            unique=True,
            postgresql_where=_LIVE_PREDICATE,
            sqlite_where=_LIVE_PREDICATE,
        ),
        Index("idx_subscription_status_next_billing", "status", "next_billing_at"),
        Index("idx_subscription_creator_status", "creator_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, subscriber={self.subscriber_id}, "
            f"creator={self.creator_id}, status={self.status.value})>"
        )

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
