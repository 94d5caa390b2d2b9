"""
Database models for the Orrbit billing backend.

The ledger store: subscriptions, transactions, platform earnings and
notifications, plus the minimal account tables they reference.
"""

from .base import Base, BaseModel, TimestampMixin
from .user import User, UserRole, Creator, Tier
from .subscription import Subscription, SubscriptionStatus, LIVE_STATUSES, TERMINAL_STATUSES
from .transaction import Transaction, TransactionType, TransactionStatus
from .platform_earning import PlatformEarning, FeeType, EarningStatus
from .notification import Notification
from .worker_lock import WorkerLock

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "User",
    "UserRole",
    "Creator",
    "Tier",
    "Subscription",
    "SubscriptionStatus",
    "LIVE_STATUSES",
    "TERMINAL_STATUSES",
    "Transaction",
    "TransactionType",
    "TransactionStatus",
    "PlatformEarning",
    "FeeType",
    "EarningStatus",
    "Notification",
    "WorkerLock",
]
