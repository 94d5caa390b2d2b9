"""
Notification sink: stored notifications plus realtime WebSocket delivery.
"""

from .connection_manager import ConnectionManager, connection_manager, get_connection_manager
from .notification_service import NotificationService, PendingPush, get_notification_service
from .websocket_handler import websocket_router

__all__ = [
    "ConnectionManager",
    "connection_manager",
    "get_connection_manager",
    "NotificationService",
    "PendingPush",
    "get_notification_service",
    "websocket_router",
]
