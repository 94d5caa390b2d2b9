"""
WebSocket endpoint handler for realtime notifications.
"""

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from .connection_manager import connection_manager
from .schemas import ConnectionStatusMessage, ErrorMessage, PongMessage
from orrbit.utils.billing_calendar import utcnow

import structlog

logger = structlog.get_logger(__name__)


async def websocket_handler(websocket: WebSocket, user_id: int):
    """
    WebSocket endpoint for a user's notification stream.

    The socket is registered on open and unregistered on close. Clients may
    send {"type": "ping"} and receive a pong.
    """
    await websocket.accept()
    connection_manager.register(user_id, websocket)

    try:
        await websocket.send_json(
            ConnectionStatusMessage(
                data={"status": "connected", "user_id": user_id}
            ).model_dump(mode="json")
        )

        while True:
            message_text = await websocket.receive_text()
            await _handle_client_message(websocket, user_id, message_text)

    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected", user_id=user_id)
    except Exception as e:
        logger.error("WebSocket connection error", user_id=user_id, error=str(e))
    finally:
        connection_manager.unregister(user_id, websocket)


async def _handle_client_message(websocket: WebSocket, user_id: int, message_text: str):
    """Handle incoming client messages."""
    try:
        message_data = json.loads(message_text)
    except json.JSONDecodeError:
        logger.warning("Invalid JSON received from client", user_id=user_id)
        await websocket.send_json(
            ErrorMessage(
                data={"code": "INVALID_JSON", "message": "Invalid JSON format in message"}
            ).model_dump(mode="json")
        )
        return

    message_type = message_data.get("type") if isinstance(message_data, dict) else None

    if message_type == "ping":
        await websocket.send_json(PongMessage().model_dump(mode="json"))
    else:
        logger.warning(
            "Unknown message type received",
            user_id=user_id,
            message_type=message_type
        )


async def get_websocket_stats():
    """Get WebSocket connection statistics."""
    return JSONResponse(
        content={
            "success": True,
            "data": connection_manager.stats(),
            "timestamp": utcnow().isoformat()
        }
    )


websocket_router = APIRouter()
websocket_router.add_api_websocket_route("/ws/{user_id}", websocket_handler)
websocket_router.add_api_route("/ws/stats", get_websocket_stats, methods=["GET"])
