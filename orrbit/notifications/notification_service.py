"""
Notification service: stores notifications inside the caller's unit of work
and pushes them to connected clients after commit.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orrbit.models.notification import Notification
from .connection_manager import ConnectionManager, connection_manager as default_manager
from .schemas import NotificationMessage, NotificationPayloadBase

logger = structlog.get_logger(__name__)


@dataclass
class PendingPush:
    """Realtime delivery deferred until the storing transaction commits."""
    user_id: int
    notification_id: int
    message: NotificationMessage


class NotificationService:
    """Service for storing and delivering user notifications."""

    def __init__(self, manager: Optional[ConnectionManager] = None):
        self.manager = manager or default_manager
        self.logger = logger.bind(service="notification_service")

    async def record(
        self,
        session: AsyncSession,
        user_id: int,
        payload: NotificationPayloadBase
    ) -> Optional[PendingPush]:
        """
        Insert a notification row in the current unit of work.

        Returns None when the payload carries a dedup key that was already
        recorded. A concurrent insert of the same key fails on the unique
        index when the unit flushes or commits.
        """
        dedup_key = payload.dedup_key()
        if dedup_key is not None:
            existing = await session.scalar(
                select(Notification.id).where(Notification.dedup_key == dedup_key)
            )
            if existing is not None:
                self.logger.debug(
                    "Notification already recorded",
                    user_id=user_id,
                    dedup_key=dedup_key
                )
                return None

        notification = Notification(
            user_id=user_id,
            type=payload.type,
            title=payload.title(),
            message=payload.message(),
            data=payload.model_dump(mode="json"),
            subscription_id=payload.subscription_ref,
            dedup_key=dedup_key,
        )
        session.add(notification)
        await session.flush()

        message = NotificationMessage(
            data={
                "id": notification.id,
                "kind": notification.type,
                "title": notification.title,
                "message": notification.message,
                "payload": notification.data,
            }
        )
        return PendingPush(user_id=user_id, notification_id=notification.id, message=message)

    async def dispatch(self, pushes: Iterable[Optional[PendingPush]]) -> int:
        """
        Deliver stored notifications to live connections.

        Fire-and-forget: delivery failures are logged and never propagate,
        the stored row remains the durable record.
        """
        delivered = 0
        for push in pushes:
            if push is None:
                continue
            try:
                delivered += await self.manager.send(push.user_id, push.message)
            except Exception as e:
                self.logger.error(
                    "Error delivering notification",
                    user_id=push.user_id,
                    notification_id=push.notification_id,
                    error=str(e)
                )
        return delivered


# Global notification service instance
notification_service = NotificationService()


def get_notification_service() -> NotificationService:
    return notification_service
