"""
Account models: users, creators and their tiers.

Profile management lives outside the billing engine; these tables carry only
the fields reconciliation reads or maintains.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, MONEY, enum_column


class UserRole(str, Enum):
    """Account roles."""
    SUBSCRIBER = "subscriber"
    CREATOR = "creator"
    ADMIN = "admin"


class User(BaseModel, TimestampMixin):
    """Platform account identified by a Stellar wallet."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    wallet_address: Mapped[str] = mapped_column(
        String(56),
        unique=True,
        comment="Stellar account id (G...)"
    )

    display_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        comment="Public display name"
    )

    role: Mapped[UserRole] = mapped_column(
        enum_column(UserRole, "user_role"),
        default=UserRole.SUBSCRIBER,
        comment="Account role"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, wallet={self.wallet_address[:8]}...)>"


class Creator(BaseModel, TimestampMixin):
    """Creator profile with denormalized billing counters."""

    __tablename__ = "creators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        unique=True,
        comment="Owning user; payouts go to this user's wallet"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        comment="Whether the creator accepts new subscriptions"
    )

    # Maintained inside the same unit of work as the rows they summarize
    subscriber_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Count of active subscriptions"
    )

    total_earnings: Mapped[Decimal] = mapped_column(
        MONEY,
        default=Decimal("0"),
        comment="Sum of net credits from completed transactions"
    )

    def __repr__(self) -> str:
        return f"<Creator(id={self.id}, user_id={self.user_id}, subscribers={self.subscriber_count})>"


class Tier(BaseModel, TimestampMixin):
    """Subscription tier offered by a creator."""

    __tablename__ = "tiers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    creator_id: Mapped[int] = mapped_column(
        ForeignKey("creators.id"),
        comment="Creator offering the tier"
    )

    name: Mapped[str] = mapped_column(String(100), comment="Tier name")

    price: Mapped[Decimal] = mapped_column(MONEY, comment="Price per billing period")

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        Index("idx_tier_creator", "creator_id"),
    )
