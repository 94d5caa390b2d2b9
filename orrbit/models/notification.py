"""
Notification model - append-only user-facing events.

Also serves as the reminder deduplication ledger through the unique dedup_key.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel
from orrbit.utils.billing_calendar import utcnow


class Notification(BaseModel):
    """Stored notification for one user."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        comment="Recipient"
    )

    type: Mapped[str] = mapped_column(String(50), comment="Notification kind")

    title: Mapped[str] = mapped_column(String(200))

    message: Mapped[str] = mapped_column(Text)

    data: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        comment="Typed payload rendered as JSON"
    )

    subscription_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subscriptions.id"),
        comment="Related subscription, copied from the payload"
    )

    dedup_key: Mapped[Optional[str]] = mapped_column(
        String(200),
        unique=True,
        comment="Idempotency key for one-time notifications"
    )

    is_read: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_notification_user_created", "user_id", "created_at"),
        Index("idx_notification_subscription_type", "subscription_id", "type"),
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, user_id={self.user_id}, type={self.type})>"
