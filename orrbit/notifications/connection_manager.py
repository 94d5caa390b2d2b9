"""
WebSocket connection registry for realtime notification delivery.
"""

from collections import defaultdict
from typing import Any, Dict, Protocol, Set

import structlog

from .schemas import WebSocketMessage
from orrbit.utils.billing_calendar import utcnow

logger = structlog.get_logger(__name__)


class ConnectionHandle(Protocol):
    """Anything that can receive JSON frames (a FastAPI WebSocket in production)."""

    async def send_json(self, data: Any) -> None:
        ...


class ConnectionManager:
    """
    Registry of live connections keyed by user id.

    Lifetime of an entry is bound to the connection: the websocket endpoint
    registers on open and unregisters on close. Handles that fail on send are
    dropped from the registry.
    """

    def __init__(self):
        self._connections: Dict[int, Set[ConnectionHandle]] = defaultdict(set)
        self._messages_sent = 0
        self._send_failures = 0
        self.started_at = utcnow()

    def register(self, user_id: int, handle: ConnectionHandle) -> None:
        self._connections[user_id].add(handle)
        logger.info(
            "WebSocket connection registered",
            user_id=user_id,
            user_connections=len(self._connections[user_id]),
            total_connections=self.total_connections
        )

    def unregister(self, user_id: int, handle: ConnectionHandle) -> None:
        handles = self._connections.get(user_id)
        if not handles:
            return

        handles.discard(handle)
        if not handles:
            del self._connections[user_id]

        logger.info(
            "WebSocket connection unregistered",
            user_id=user_id,
            total_connections=self.total_connections
        )

    async def send(self, user_id: int, message: WebSocketMessage) -> int:
        """
        Send a message to every connection of a user.

        Returns:
            Number of connections the message reached
        """
        handles = list(self._connections.get(user_id, ()))
        sent_count = 0

        for handle in handles:
            try:
                await handle.send_json(message.model_dump(mode="json"))
                sent_count += 1
            except Exception as e:
                self._send_failures += 1
                logger.warning(
                    "Dropping connection after failed send",
                    user_id=user_id,
                    error=str(e)
                )
                self.unregister(user_id, handle)

        self._messages_sent += sent_count
        return sent_count

    def is_connected(self, user_id: int) -> bool:
        return bool(self._connections.get(user_id))

    @property
    def total_connections(self) -> int:
        return sum(len(handles) for handles in self._connections.values())

    def stats(self) -> Dict[str, Any]:
        """Get current connection statistics."""
        return {
            "total_connections": self.total_connections,
            "connected_users": len(self._connections),
            "messages_sent": self._messages_sent,
            "send_failures": self._send_failures,
            "started_at": self.started_at.isoformat(),
        }


# Global connection manager instance
connection_manager = ConnectionManager()


def get_connection_manager() -> ConnectionManager:
    """Get the global connection manager instance."""
    return connection_manager
