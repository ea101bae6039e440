"""Tests for the WebSocket transport."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from screenrelay.config.settings import ServerConfig, Settings
from screenrelay.relay.errors import ConnectionClosed, OutboxFull
from screenrelay.relay.routing import deliver
from screenrelay.relay.service import RelayService
from screenrelay.server import WebSocketConnection, create_app


def _send(ws: Any, event: str, data: dict | None = None) -> None:
    ws.send_json({"event": event, "data": data or {}})


def _barrier(ws: Any) -> None:
    """Wait until every message sent so far on ``ws`` has been handled."""
    ws.send_json({"event": "__barrier__", "data": {}})
    reply = ws.receive_json()
    assert reply["event"] == "error"
    assert reply["data"]["event"] == "__barrier__"


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(Settings(), service=RelayService()))


class TestRelaySocket:
    def test_consumer_receives_producer_list(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as producer:
            _send(producer, "client_type", {"type": "windows", "clientId": "pc-1", "hostname": "Desk"})
            _barrier(producer)
            with client.websocket_connect("/ws") as viewer:
                _send(viewer, "client_type", {"type": "web"})
                msg = viewer.receive_json()
                assert msg["event"] == "pc_list_update"
                assert [pc["clientId"] for pc in msg["data"]["pcs"]] == ["pc-1"]
                assert msg["data"]["pcs"][0]["hostname"] == "Desk"

    def test_watch_replays_and_streams(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as producer:
            _send(producer, "client_type", {"type": "windows", "clientId": "pc-1"})
            _send(producer, "screen_update", {"image": "S1", "timestamp": 100})
            _barrier(producer)
            with client.websocket_connect("/ws") as viewer:
                _send(viewer, "client_type", {"type": "web"})
                assert viewer.receive_json()["event"] == "pc_list_update"

                _send(viewer, "watch_pc", {"clientId": "pc-1"})
                msg = viewer.receive_json()
                assert msg == {
                    "event": "screen_update",
                    "data": {"image": "S1", "timestamp": 100, "clientId": "pc-1"},
                }

                _send(producer, "screen_update", {"image": "S2", "timestamp": 200})
                msg = viewer.receive_json()
                assert msg["data"]["image"] == "S2"

    def test_command_reaches_producer(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as producer:
            _send(producer, "client_type", {"type": "windows", "clientId": "pc-1"})
            _barrier(producer)
            with client.websocket_connect("/ws") as viewer:
                _send(viewer, "remote_command", {"clientId": "pc-1", "command": "lock"})
                msg = producer.receive_json()
                assert msg == {"event": "execute_command", "data": {"command": "lock"}}

    def test_http_update_reaches_socket_producer(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as producer:
            _send(producer, "client_type", {"type": "windows", "clientId": "pc-1"})
            _barrier(producer)
            resp = client.post("/update", json={"text": "hi", "clientId": "pc-1"})
            assert resp.json()["clientsNotified"] == 1
            assert producer.receive_json() == {"event": "update_overlay", "data": {"text": "hi"}}

    def test_producer_disconnect_updates_viewers(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as viewer:
            _send(viewer, "client_type", {"type": "web"})
            assert viewer.receive_json()["data"] == {"pcs": []}
            with client.websocket_connect("/ws") as producer:
                _send(producer, "client_type", {"type": "windows", "clientId": "pc-1"})
                assert len(viewer.receive_json()["data"]["pcs"]) == 1
            assert viewer.receive_json() == {"event": "pc_list_update", "data": {"pcs": []}}

    def test_malformed_json_answered_with_error(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_text("{not json")
            msg = ws.receive_json()
            assert msg["event"] == "error"
            assert "Malformed JSON" in msg["data"]["message"]

    def test_invalid_payload_answered_with_error(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            _send(ws, "watch_pc", {})
            msg = ws.receive_json()
            assert msg["event"] == "error"
            assert msg["data"]["event"] == "watch_pc"

    def test_oversize_message_closes_connection(self) -> None:
        settings = Settings(server=ServerConfig(max_payload_bytes=100))
        client = TestClient(create_app(settings, service=RelayService()))
        with client.websocket_connect("/ws") as ws:
            _send(ws, "screen_update", {"image": "x" * 500})
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
            assert exc_info.value.code == 1009

    def test_binary_frame_decoded(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_bytes(b'{"event": "watch_pc", "data": {}}')
            msg = ws.receive_json()
            assert msg["event"] == "error"
            assert msg["data"]["event"] == "watch_pc"

    def test_invalid_utf8_frame_answered_with_error(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_bytes(b'{"event": "client_type", "data": {"hostname": "\xff\xfe"}}')
            msg = ws.receive_json()
            assert msg == {
                "event": "error",
                "data": {"event": "", "message": "Frame is not valid UTF-8"},
            }
            # the connection stays usable
            _barrier(ws)


class TestWebSocketConnection:
    @pytest.mark.asyncio
    async def test_snapshots_coalesce_per_producer(self) -> None:
        conn = WebSocketConnection(AsyncMock(), connection_id="c1")
        await conn.emit("screen_update", {"image": "a1", "clientId": "pc-a"})
        await conn.emit("pc_list_update", {"pcs": []})
        await conn.emit("screen_update", {"image": "b1", "clientId": "pc-b"})
        await conn.emit("screen_update", {"image": "a2", "clientId": "pc-a"})
        assert conn.pending == 3
        assert [item.payload.get("image") for item in conn._pending] == ["a2", None, "b1"]

    @pytest.mark.asyncio
    async def test_outbox_limit_rejects_new_events(self) -> None:
        conn = WebSocketConnection(AsyncMock(), outbox_limit=2)
        await conn.emit("execute_command", {"command": 0})
        await conn.emit("execute_command", {"command": 1})
        with pytest.raises(OutboxFull):
            await conn.emit("execute_command", {"command": 2})
        assert conn.pending == 2
        assert [item.payload["command"] for item in conn._pending] == [0, 1]

    @pytest.mark.asyncio
    async def test_full_outbox_counts_as_failed_delivery(self) -> None:
        conn = WebSocketConnection(AsyncMock(), outbox_limit=1)
        assert await deliver(conn, "execute_command", {"command": "a"}) is True
        assert await deliver(conn, "execute_command", {"command": "b"}) is False

    @pytest.mark.asyncio
    async def test_full_outbox_not_counted_by_router(self, service: RelayService) -> None:
        full = WebSocketConnection(AsyncMock(), outbox_limit=1, connection_id="full")
        roomy = WebSocketConnection(AsyncMock(), connection_id="roomy")
        service.producers.register("pc-1", full)
        service.producers.register("pc-2", roomy)
        await full.emit("execute_command", {"command": "queued"})
        notified = await service.router.on_text_update(None, "hello")
        assert notified == 1
        assert roomy.pending == 1

    @pytest.mark.asyncio
    async def test_producer_list_coalesces(self) -> None:
        conn = WebSocketConnection(AsyncMock(), outbox_limit=1)
        await conn.emit("pc_list_update", {"pcs": []})
        await conn.emit("pc_list_update", {"pcs": [{"clientId": "pc-1"}]})
        assert conn.pending == 1
        assert conn._pending[0].payload == {"pcs": [{"clientId": "pc-1"}]}

    @pytest.mark.asyncio
    async def test_emit_after_close_raises(self) -> None:
        websocket = AsyncMock()
        conn = WebSocketConnection(websocket)
        await conn.close()
        await conn.close()
        websocket.close.assert_called_once_with(code=1000)
        with pytest.raises(ConnectionClosed):
            await conn.emit("pc_list_update", {"pcs": []})

    def test_connection_ids_are_unique(self) -> None:
        ids = {WebSocketConnection(AsyncMock()).connection_id for _ in range(50)}
        assert len(ids) == 50
