"""
WebSocket connection registry for real-time outcome notifications

Connections are indexed two ways:
- by correlation id, for a client waiting on one submitted command
- by user id, for a client that wants every outcome of its own commands

Nothing here is durable. A notification for which no connection is
registered is simply not delivered.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClientConnection:
    websocket: WebSocket
    client_id: str
    user_id: Optional[str] = None
    correlation_ids: Set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=utc_now)
    last_ping: datetime = field(default_factory=utc_now)


class WebSocketConnectionManager:
    """In-memory registry of live notification channels"""

    def __init__(self):
        # client_id -> connection
        self.active_connections: Dict[str, ClientConnection] = {}
        # correlation_id -> client_ids
        self.correlation_subscribers: Dict[str, Set[str]] = {}
        # user_id -> client_ids
        self.user_connections: Dict[str, Set[str]] = {}

    async def connect(self, websocket: WebSocket, client_id: str,
                      user_id: Optional[str] = None) -> ClientConnection:
        await websocket.accept()
        connection = ClientConnection(websocket=websocket, client_id=client_id, user_id=user_id)
        self.active_connections[client_id] = connection
        if user_id:
            self.user_connections.setdefault(user_id, set()).add(client_id)
        logger.info(f"WebSocket client {client_id} connected (user: {user_id})")
        return connection

    async def disconnect(self, client_id: str) -> None:
        connection = self.active_connections.pop(client_id, None)
        if connection is None:
            return
        for correlation_id in list(connection.correlation_ids):
            self._drop_subscriber(correlation_id, client_id)
        if connection.user_id:
            clients = self.user_connections.get(connection.user_id)
            if clients is not None:
                clients.discard(client_id)
                if not clients:
                    del self.user_connections[connection.user_id]
        logger.info(f"WebSocket client {client_id} disconnected")

    def subscribe(self, client_id: str, correlation_id: str) -> bool:
        connection = self.active_connections.get(client_id)
        if connection is None:
            return False
        connection.correlation_ids.add(correlation_id)
        self.correlation_subscribers.setdefault(correlation_id, set()).add(client_id)
        logger.debug(f"Client {client_id} waiting on command {correlation_id}")
        return True

    def unsubscribe(self, client_id: str, correlation_id: str) -> bool:
        connection = self.active_connections.get(client_id)
        if connection is None:
            return False
        connection.correlation_ids.discard(correlation_id)
        self._drop_subscriber(correlation_id, client_id)
        return True

    def _drop_subscriber(self, correlation_id: str, client_id: str) -> None:
        clients = self.correlation_subscribers.get(correlation_id)
        if clients is None:
            return
        clients.discard(client_id)
        if not clients:
            del self.correlation_subscribers[correlation_id]

    async def send_to_client(self, client_id: str, message: Dict[str, Any]) -> bool:
        connection = self.active_connections.get(client_id)
        if connection is None:
            return False
        try:
            await connection.websocket.send_text(json.dumps(message))
            return True
        except Exception as e:
            logger.warning(f"Failed to send message to client {client_id}: {e}")
            await self.disconnect(client_id)
            return False

    async def _send_many(self, client_ids: List[str], message: Dict[str, Any]) -> int:
        sent = 0
        for client_id in client_ids:
            if await self.send_to_client(client_id, message):
                sent += 1
        return sent

    async def send_to_correlation(self, correlation_id: str, message: Dict[str, Any]) -> int:
        """Push to every client waiting on ``correlation_id``; returns deliveries"""
        return await self._send_many(list(self.correlation_subscribers.get(correlation_id, ())), message)

    async def send_to_user(self, user_id: str, message: Dict[str, Any]) -> int:
        return await self._send_many(list(self.user_connections.get(user_id, ())), message)

    async def ping_all_clients(self) -> None:
        """Keepalive; dead connections are removed"""
        now = utc_now()
        message = {"type": "ping", "timestamp": now.isoformat()}
        for client_id in list(self.active_connections):
            if await self.send_to_client(client_id, message):
                connection = self.active_connections.get(client_id)
                if connection is not None:
                    connection.last_ping = now

    def get_connection_stats(self) -> Dict[str, Any]:
        return {
            "total_connections": len(self.active_connections),
            "total_users": len(self.user_connections),
            "pending_commands": len(self.correlation_subscribers),
        }


_connection_manager: Optional[WebSocketConnectionManager] = None


def get_connection_manager() -> WebSocketConnectionManager:
    """Process-wide connection registry"""
    global _connection_manager
    if _connection_manager is None:
        _connection_manager = WebSocketConnectionManager()
    return _connection_manager
