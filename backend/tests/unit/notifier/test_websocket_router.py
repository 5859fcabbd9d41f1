from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from bridge_shared.services.websocket_service import WebSocketConnectionManager
from feedback_notifier.routers import websocket


@pytest.fixture
def manager() -> WebSocketConnectionManager:
    return WebSocketConnectionManager()


@pytest.fixture
def client(manager) -> TestClient:
    app = FastAPI()
    app.include_router(websocket.router)
    app.dependency_overrides[websocket.get_ws_manager] = lambda: manager
    return TestClient(app)


def test_command_channel_subscribes_to_correlation_id(client, manager) -> None:
    with client.websocket_connect("/ws/commands/cid-123?client_id=tab1") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connection_established"
        assert hello["correlation_id"] == "cid-123"
        assert manager.correlation_subscribers["cid-123"] == {"tab1"}

        ws.send_json({"type": "ping", "timestamp": "t0"})
        assert ws.receive_json() == {"type": "pong", "timestamp": "t0"}

    assert manager.active_connections == {}


def test_user_channel_and_subscription_messages(client, manager) -> None:
    with client.websocket_connect("/ws/users/vendor-user-1?client_id=tab2") as ws:
        assert ws.receive_json()["user_id"] == "vendor-user-1"
        assert manager.user_connections["vendor-user-1"] == {"tab2"}

        ws.send_json({"type": "subscribe", "correlation_id": "cid-9"})
        assert ws.receive_json() == {
            "type": "subscription_result",
            "action": "subscribe",
            "correlation_id": "cid-9",
            "success": True,
        }

        ws.send_json({"type": "get_subscriptions"})
        assert ws.receive_json() == {"type": "subscriptions", "correlation_ids": ["cid-9"]}

        ws.send_json({"type": "unsubscribe", "correlation_id": "cid-9"})
        assert ws.receive_json()["success"] is True
        assert "cid-9" not in manager.correlation_subscribers


def test_protocol_errors_keep_the_connection_open(client) -> None:
    with client.websocket_connect("/ws/commands/cid-1") as ws:
        ws.receive_json()
        ws.send_text("not json")
        assert ws.receive_json() == {"type": "error", "message": "Invalid JSON format"}

        ws.send_json({"type": "subscribe"})
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "dance"})
        assert ws.receive_json() == {"type": "error", "message": "Unknown message type: dance"}


def test_invalid_identifiers_are_refused(client) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws/users/bad%20user") as ws:
            ws.receive_json()
    assert exc_info.value.code == 4000


def test_user_channel_accepts_email_shaped_ids(client, manager) -> None:
    with client.websocket_connect("/ws/users/jane.doe%2Bap%40acme.com") as ws:
        hello = ws.receive_json()
        assert hello["user_id"] == "jane.doe+ap@acme.com"
        assert len(manager.user_connections["jane.doe+ap@acme.com"]) == 1
