from __future__ import annotations

import json

import pytest

from bridge_shared.services.websocket_service import WebSocketConnectionManager


class DummyWebSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


@pytest.mark.asyncio
async def test_connect_subscribe_and_send() -> None:
    manager = WebSocketConnectionManager()
    ws = DummyWebSocket()

    await manager.connect(ws, "c1", user_id="u1")
    assert ws.accepted
    assert manager.subscribe("c1", "cid-1") is True

    assert await manager.send_to_correlation("cid-1", {"type": "x"}) == 1
    assert await manager.send_to_user("u1", {"type": "y"}) == 1
    assert ws.sent == [{"type": "x"}, {"type": "y"}]
    assert manager.get_connection_stats() == {
        "total_connections": 1,
        "total_users": 1,
        "pending_commands": 1,
    }


@pytest.mark.asyncio
async def test_disconnect_cleans_every_index() -> None:
    manager = WebSocketConnectionManager()
    await manager.connect(DummyWebSocket(), "c1", user_id="u1")
    manager.subscribe("c1", "cid-1")

    await manager.disconnect("c1")

    assert manager.active_connections == {}
    assert manager.correlation_subscribers == {}
    assert manager.user_connections == {}
    assert manager.subscribe("c1", "cid-2") is False


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery() -> None:
    manager = WebSocketConnectionManager()
    ws = DummyWebSocket()
    await manager.connect(ws, "c1")
    manager.subscribe("c1", "cid-1")
    manager.unsubscribe("c1", "cid-1")

    assert await manager.send_to_correlation("cid-1", {"type": "x"}) == 0
    assert ws.sent == []


@pytest.mark.asyncio
async def test_failed_send_drops_the_connection() -> None:
    manager = WebSocketConnectionManager()
    await manager.connect(DummyWebSocket(fail=True), "c1")
    manager.subscribe("c1", "cid-1")

    assert await manager.send_to_correlation("cid-1", {"type": "x"}) == 0
    assert "c1" not in manager.active_connections

    await manager.connect(DummyWebSocket(), "c2")
    await manager.ping_all_clients()
    assert manager.active_connections["c2"].websocket.sent[0]["type"] == "ping"
