"""API routes package."""

from . import platform, subscriptions, transactions, webhooks

__all__ = ["platform", "subscriptions", "transactions", "webhooks"]
