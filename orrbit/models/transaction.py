"""
Transaction model - one row per on-chain payment (or pending renewal request).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, MONEY, enum_column


class TransactionType(str, Enum):
    SUBSCRIPTION = "subscription"
    RENEWAL = "renewal"
    TIP = "tip"
    REFUND = "refund"
    PAYOUT = "payout"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Transaction(BaseModel, TimestampMixin):
    """
    Ledger row for a payment.

    The unique tx_hash collapses repeated ingestion of the same chain payment
    into one row. Pending renewal placeholders carry no hash until paid.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    sender_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        comment="Paying user (null for unknown wallets and platform payouts)"
    )

    recipient_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        comment="Receiving user"
    )

    subscription_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subscriptions.id"),
        comment="Subscription funded by this payment"
    )

    type: Mapped[TransactionType] = mapped_column(
        enum_column(TransactionType, "transaction_type"),
        comment="Payment kind"
    )

    amount: Mapped[Decimal] = mapped_column(MONEY, comment="Gross amount")

    platform_fee: Mapped[Decimal] = mapped_column(
        MONEY,
        default=Decimal("0"),
        comment="Fee computed once at creation; authoritative thereafter"
    )

    tx_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        unique=True,
        comment="Chain transaction hash (idempotency key)"
    )

    status: Mapped[TransactionStatus] = mapped_column(
        enum_column(TransactionStatus, "transaction_status"),
        default=TransactionStatus.PENDING,
        comment="Payment status"
    )

    memo: Mapped[Optional[str]] = mapped_column(Text, comment="Memo or tip message")

    settled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When earnings were credited (and, for renewals, the billing clock advanced)"
    )

    __table_args__ = (
        Index("idx_transaction_recipient_created", "recipient_id", "created_at"),
        Index("idx_transaction_sender_created", "sender_id", "created_at"),
        Index("idx_transaction_subscription_type_status", "subscription_id", "type", "status"),
        Index("idx_transaction_unsettled", "type", "status", "settled_at"),
    )

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, type={self.type.value}, status={self.status.value})>"

    @property
    def net_amount(self) -> Decimal:
        """Amount credited to the recipient."""
        return self.amount - self.platform_fee

    @property
    def is_settled(self) -> bool:
        return self.settled_at is not None
