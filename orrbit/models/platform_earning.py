"""
Platform earnings - fees collected by the platform, tracked separately from creator earnings.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, MONEY, enum_column


class FeeType(str, Enum):
    SUBSCRIPTION_FEE = "subscription_fee"
    RENEWAL_FEE = "renewal_fee"
    TIP_FEE = "tip_fee"


class EarningStatus(str, Enum):
    COLLECTED = "collected"
    WITHDRAWN = "withdrawn"


class PlatformEarning(BaseModel, TimestampMixin):
    """Fee collected from one transaction. Collected rows form the withdrawable balance."""

    __tablename__ = "platform_earnings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id"),
        comment="Transaction that generated the fee"
    )

    amount: Mapped[Decimal] = mapped_column(MONEY, comment="Fee amount")

    fee_type: Mapped[FeeType] = mapped_column(
        enum_column(FeeType, "fee_type"),
        comment="Payment kind the fee came from"
    )

    status: Mapped[EarningStatus] = mapped_column(
        enum_column(EarningStatus, "earning_status"),
        default=EarningStatus.COLLECTED,
        comment="collected or withdrawn"
    )

    withdrawn_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    withdrawal_reference: Mapped[Optional[str]] = mapped_column(
        String(128),
        comment="Payout reference (destination or external id)"
    )

    __table_args__ = (
        Index("idx_platform_earning_status_created", "status", "created_at"),
        Index("idx_platform_earning_transaction", "transaction_id"),
    )

    def __repr__(self) -> str:
        return f"<PlatformEarning(id={self.id}, amount={self.amount}, status={self.status.value})>"
