"""
WebSocket endpoints for real-time command outcomes

Clients either wait on one submitted command (by correlation id) or open a
channel for every outcome of a user's commands.
"""

import json
import logging
import re
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from bridge_shared.models.commands import USER_ID_PATTERN
from bridge_shared.observability.metrics import get_metrics
from bridge_shared.services.websocket_service import WebSocketConnectionManager, get_connection_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])

_IDENTIFIER = re.compile(r"^[a-zA-Z0-9_-]+$")
_MAX_IDENTIFIER_LENGTH = 64
_USER_ID = re.compile(USER_ID_PATTERN)


def get_ws_manager() -> WebSocketConnectionManager:
    return get_connection_manager()


def _valid_identifier(value: str) -> bool:
    return len(value) <= _MAX_IDENTIFIER_LENGTH and bool(_IDENTIFIER.match(value))


async def _send(websocket: WebSocket, message: Dict[str, Any]) -> None:
    await websocket.send_text(json.dumps(message))


@router.websocket("/commands/{correlation_id}")
async def websocket_command_outcome(
    websocket: WebSocket,
    correlation_id: str,
    client_id: Optional[str] = Query(default=None),
    manager: WebSocketConnectionManager = Depends(get_ws_manager),
):
    """Wait for the outcome of one command"""
    if not _valid_identifier(correlation_id):
        await websocket.close(code=4000, reason="Invalid correlation_id format")
        return
    if client_id:
        if not _valid_identifier(client_id):
            await websocket.close(code=4000, reason="Invalid client_id format")
            return
    else:
        client_id = f"client_{uuid.uuid4().hex[:8]}"

    await manager.connect(websocket, client_id)
    manager.subscribe(client_id, correlation_id)
    await _send(websocket, {
        "type": "connection_established",
        "client_id": client_id,
        "correlation_id": correlation_id,
        "message": f"Waiting for the outcome of command {correlation_id}",
    })
    await _serve(websocket, client_id, manager)


@router.websocket("/users/{user_id}")
async def websocket_user_outcomes(
    websocket: WebSocket,
    user_id: str,
    client_id: Optional[str] = Query(default=None),
    manager: WebSocketConnectionManager = Depends(get_ws_manager),
):
    """Receive every outcome for commands submitted by ``user_id``"""
    # Path parameters arrive URL-decoded; accept what a command's user context accepts
    if not _USER_ID.fullmatch(user_id):
        await websocket.close(code=4000, reason="Invalid user_id format")
        return
    if client_id:
        if not _valid_identifier(client_id):
            await websocket.close(code=4000, reason="Invalid client_id format")
            return
    else:
        client_id = f"user_{user_id}_{uuid.uuid4().hex[:8]}"

    await manager.connect(websocket, client_id, user_id)
    await _send(websocket, {
        "type": "connection_established",
        "client_id": client_id,
        "user_id": user_id,
        "message": f"Connected to command outcomes of user {user_id}",
    })
    await _serve(websocket, client_id, manager)


async def _serve(websocket: WebSocket, client_id: str, manager: WebSocketConnectionManager) -> None:
    gauge = get_metrics("feedback-notifier").websocket_connections
    gauge.inc()
    try:
        while True:
            try:
                data = await websocket.receive_text()
                message = json.loads(data)
                await handle_client_message(websocket, client_id, message, manager)
            except WebSocketDisconnect:
                break
            except json.JSONDecodeError:
                await _send(websocket, {"type": "error", "message": "Invalid JSON format"})
    except Exception as e:
        logger.error(f"WebSocket connection error for client {client_id}: {e}")
    finally:
        gauge.dec()
        await manager.disconnect(client_id)


async def handle_client_message(
    websocket: WebSocket,
    client_id: str,
    message: Any,
    manager: WebSocketConnectionManager,
) -> None:
    """Client control messages: ping, subscribe, unsubscribe, get_subscriptions"""
    if not isinstance(message, dict):
        await _send(websocket, {"type": "error", "message": "Message must be a JSON object"})
        return

    message_type = message.get("type")

    if message_type == "ping":
        await _send(websocket, {"type": "pong", "timestamp": message.get("timestamp")})

    elif message_type in ("subscribe", "unsubscribe"):
        correlation_id = message.get("correlation_id")
        if not isinstance(correlation_id, str) or not _valid_identifier(correlation_id):
            await _send(websocket, {"type": "error", "message": f"correlation_id is required for {message_type}"})
            return
        if message_type == "subscribe":
            success = manager.subscribe(client_id, correlation_id)
        else:
            success = manager.unsubscribe(client_id, correlation_id)
        await _send(websocket, {
            "type": "subscription_result",
            "action": message_type,
            "correlation_id": correlation_id,
            "success": success,
        })

    elif message_type == "get_subscriptions":
        connection = manager.active_connections.get(client_id)
        if connection is None:
            await _send(websocket, {"type": "error", "message": "Connection not found"})
            return
        await _send(websocket, {
            "type": "subscriptions",
            "correlation_ids": sorted(connection.correlation_ids),
        })

    else:
        await _send(websocket, {"type": "error", "message": f"Unknown message type: {message_type}"})
