"""FastAPI server for the screen relay.

Hosts the WebSocket transport that producers and viewers connect to,
plus a small HTTP control surface. All routing decisions are delegated
to :class:`~screenrelay.relay.service.RelayService`; this module only
moves bytes, enforces size limits and validates payloads.

WebSocket (every frame is ``{"event": <name>, "data": {...}}``):

    WS   /ws                   <-> client_type, watch_pc, unwatch_pc,
                                   screen_update, request_screenshot,
                                   remote_command / pc_list_update, ...

HTTP endpoints:

    GET  /ping                 -> {"status": "online", ...counts}
    POST /update               <- {"text": "hello", "clientId": "pc-1"}
    POST /toggle-overlay       <- {"visible": true, "clientId": "pc-1"}
    GET  /latest-screenshot    ?clientId=pc-1
    GET  /connected-pcs        -> {"pcs": [...], "count": 1}
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, NamedTuple

import uvicorn
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from screenrelay.config.settings import Settings
from screenrelay.domain.events import ERROR, PC_LIST_UPDATE, SCREEN_UPDATE
from screenrelay.relay.connection import Connection
from screenrelay.relay.errors import ConnectionClosed, OutboxFull, ValidationError
from screenrelay.relay.producers import ProducerRegistry
from screenrelay.relay.routing import deliver
from screenrelay.relay.service import RelayService

logger = logging.getLogger(__name__)

# Close code for "message too big" (RFC 6455)
WS_CLOSE_TOO_LARGE = 1009


# ---------------------------------------------------------------------------
# WebSocket transport
# ---------------------------------------------------------------------------

class _Outgoing(NamedTuple):
    event: str
    payload: dict[str, Any]
    key: str | None


class WebSocketConnection(Connection):
    """A :class:`Connection` backed by a Starlette WebSocket.

    ``emit`` never waits on the network: events are queued in an outbox
    that :meth:`run_sender` drains. A queued ``screen_update`` is
    replaced in place by a newer one from the same producer, so a slow
    viewer only ever lags by one frame per producer. A queued
    ``pc_list_update`` is likewise replaced by the newer list.

    Any other event arriving while ``outbox_limit`` events are pending
    raises :class:`OutboxFull`, which ``deliver`` reports as a failed
    delivery.
    """

    def __init__(
        self,
        websocket: WebSocket,
        outbox_limit: int = 256,
        connection_id: str | None = None,
    ) -> None:
        self._websocket = websocket
        self._id = connection_id or uuid.uuid4().hex
        self._outbox_limit = outbox_limit
        self._pending: deque[_Outgoing] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False

    @property
    def connection_id(self) -> str:
        return self._id

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        if self._closed:
            raise ConnectionClosed(self._id)
        key = _coalesce_key(event, payload)
        if key is not None:
            for i, item in enumerate(self._pending):
                if item.key == key:
                    self._pending[i] = _Outgoing(event, payload, key)
                    return
        if len(self._pending) >= self._outbox_limit:
            raise OutboxFull(self._id, event)
        self._pending.append(_Outgoing(event, payload, key))
        self._wakeup.set()

    async def run_sender(self) -> None:
        """Drain the outbox until the connection closes."""
        try:
            while not self._closed:
                await self._wakeup.wait()
                self._wakeup.clear()
                while self._pending and not self._closed:
                    item = self._pending.popleft()
                    await self._websocket.send_json({"event": item.event, "data": item.payload})
        except Exception as e:
            logger.debug("Sender for %s stopped: %s", self._id, e)
        finally:
            self._closed = True

    async def close(self, code: int = 1000) -> None:
        if self._closed:
            return
        self._closed = True
        self._wakeup.set()
        try:
            await self._websocket.close(code=code)
        except (RuntimeError, OSError):
            # Socket already closed by the peer
            pass


def _coalesce_key(event: str, payload: dict[str, Any]) -> str | None:
    if event == SCREEN_UPDATE:
        return f"{SCREEN_UPDATE}:{payload.get('clientId')}"
    if event == PC_LIST_UPDATE:
        return PC_LIST_UPDATE
    return None


class BodySizeLimitMiddleware:
    """Reject HTTP request bodies larger than ``max_bytes`` with 413.

    The declared ``Content-Length`` is checked first; chunked bodies are
    buffered with a running count and refused as soon as they cross the
    limit, before the application sees any of it.
    """

    def __init__(self, app: ASGIApp, max_bytes: int) -> None:
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length", "")
        if length.isdigit() and int(length) > self.max_bytes:
            await self._reject(scope, receive, send)
            return

        buffered: list[Message] = []
        received = 0
        while True:
            message = await receive()
            buffered.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.max_bytes:
                await self._reject(scope, receive, send)
                return
            if not message.get("more_body", False):
                break

        async def replay() -> Message:
            if buffered:
                return buffered.pop(0)
            return await receive()

        await self.app(scope, replay, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send) -> None:
        logger.warning("Rejected %s %s: body exceeds %d bytes",
                       scope.get("method"), scope.get("path"), self.max_bytes)
        response = JSONResponse(status_code=413, content={"detail": "Payload too large"})
        await response(scope, receive, send)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TextUpdateRequest(_CamelModel):
    text: Any = Field(default=None, description="Overlay text; 0 and '' are valid")
    client_id: str | None = Field(default=None, alias="clientId")

    @field_validator("client_id", mode="before")
    @classmethod
    def blank_id_to_none(cls, value: Any) -> Any:
        return value or None


class ToggleOverlayRequest(_CamelModel):
    visible: bool = Field(description="Whether the overlay should be shown")
    client_id: str | None = Field(default=None, alias="clientId")

    @field_validator("client_id", mode="before")
    @classmethod
    def blank_id_to_none(cls, value: Any) -> Any:
        return value or None


class PingResponse(_CamelModel):
    status: str = "online"
    timestamp: str
    producers: int = Field(serialization_alias="windowsClients")
    consumers: int = Field(serialization_alias="webClients")
    environment: str


class TextUpdateResponse(_CamelModel):
    success: bool = True
    text: Any
    clients_notified: int = Field(serialization_alias="clientsNotified")


class ToggleOverlayResponse(_CamelModel):
    success: bool = True
    visible: bool
    clients_notified: int = Field(serialization_alias="clientsNotified")


class ConnectedPcsResponse(_CamelModel):
    pcs: list[dict[str, Any]]
    count: int


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    service: RelayService | None = None,
) -> FastAPI:
    """Create the relay application.

    Args:
        settings: Service configuration. Defaults to ``Settings()``.
        service: Optional pre-built RelayService (for testing).
    """
    settings = settings or Settings()
    server_cfg = settings.server

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.heartbeat_task = asyncio.create_task(
            _heartbeat(app.state.service, server_cfg.heartbeat_interval)
        )
        logger.info(
            "Relay started (environment=%s, ws=%s)", server_cfg.environment, server_cfg.ws_path
        )
        yield
        app.state.heartbeat_task.cancel()
        try:
            await app.state.heartbeat_task
        except asyncio.CancelledError:
            pass
        logger.info("Relay stopped")

    app = FastAPI(
        title="screenrelay",
        description="Relay between screen-streaming producers and viewers",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service or RelayService(
        producers=ProducerRegistry(default_display_name=settings.relay.default_display_name),
    )

    app.add_middleware(BodySizeLimitMiddleware, max_bytes=server_cfg.max_http_body_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_cfg.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------
    # WebSocket transport
    # -------------------------------------------------------------------

    @app.websocket(server_cfg.ws_path)
    async def relay_socket(websocket: WebSocket) -> None:
        svc: RelayService = app.state.service
        await websocket.accept()
        connection = WebSocketConnection(websocket, outbox_limit=settings.relay.outbox_limit)
        sender = asyncio.create_task(connection.run_sender())
        await svc.connect(connection)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                data = raw.encode("utf-8") if raw is not None else (message.get("bytes") or b"")
                size = len(data)
                if size > server_cfg.max_payload_bytes:
                    logger.warning(
                        "Closing %s: message of %d bytes exceeds limit",
                        connection.connection_id, size,
                    )
                    await connection.close(code=WS_CLOSE_TOO_LARGE)
                    break
                if raw is None:
                    try:
                        raw = data.decode("utf-8")
                    except UnicodeDecodeError as e:
                        logger.warning(
                            "Rejected binary frame from %s: %s", connection.connection_id, e
                        )
                        await deliver(
                            connection, ERROR, {"event": "", "message": "Frame is not valid UTF-8"}
                        )
                        continue
                await _dispatch_message(svc, connection, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await svc.disconnect(connection)
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            await connection.close()
            logger.info("Connection closed: %s", connection.connection_id)

    # -------------------------------------------------------------------
    # HTTP control surface
    # -------------------------------------------------------------------

    @app.get("/ping")
    async def ping() -> PingResponse:
        svc: RelayService = app.state.service
        return PingResponse(
            timestamp=datetime.now(timezone.utc).isoformat(),
            producers=svc.producer_count,
            consumers=svc.consumer_count,
            environment=server_cfg.environment,
        )

    @app.post("/update")
    async def update_text(request: TextUpdateRequest) -> TextUpdateResponse:
        svc: RelayService = app.state.service
        try:
            notified = await svc.router.on_text_update(request.client_id, request.text)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return TextUpdateResponse(text=request.text, clients_notified=notified)

    @app.post("/toggle-overlay")
    async def toggle_overlay(request: ToggleOverlayRequest) -> ToggleOverlayResponse:
        svc: RelayService = app.state.service
        notified = await svc.router.on_toggle_overlay(request.client_id, request.visible)
        return ToggleOverlayResponse(visible=request.visible, clients_notified=notified)

    @app.get("/latest-screenshot")
    async def latest_screenshot(
        client_id: str | None = Query(default=None, alias="clientId"),
    ) -> dict[str, Any]:
        svc: RelayService = app.state.service
        if not client_id:
            raise HTTPException(status_code=400, detail="clientId required")
        entry = svc.producers.get(client_id)
        if entry is None or entry.latest_snapshot is None:
            raise HTTPException(status_code=404, detail="No screenshot available")
        return entry.latest_snapshot.to_wire()

    @app.get("/connected-pcs")
    async def connected_pcs() -> ConnectedPcsResponse:
        svc: RelayService = app.state.service
        pcs = [p.to_wire(include_connection=True) for p in svc.producers.list_all()]
        return ConnectedPcsResponse(pcs=pcs, count=len(pcs))

    return app


async def _dispatch_message(service: RelayService, connection: Connection, raw: str) -> None:
    """Decode one envelope and hand it to the service.

    Malformed input is answered with an ``error`` event to the sender only.
    """
    name = ""
    try:
        try:
            envelope = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Malformed JSON: {e}") from e
        if not isinstance(envelope, dict) or not isinstance(envelope.get("event"), str):
            raise ValidationError("Expected an object with an 'event' name")
        name = envelope["event"]
        await service.dispatch(connection, name, envelope.get("data"))
    except ValidationError as e:
        logger.warning("Rejected event from %s: %s", connection.connection_id, e)
        await deliver(connection, ERROR, {"event": name, "message": str(e)})


async def _heartbeat(service: RelayService, interval: float) -> None:
    """Periodically log how many peers are connected."""
    while True:
        try:
            await asyncio.sleep(interval)
            logger.info(
                "Heartbeat: producers=%d consumers=%d",
                service.producer_count, service.consumer_count,
            )
        except asyncio.CancelledError:
            break


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

def run_server(settings: Settings) -> None:
    """Run the relay under uvicorn with the configured transport limits."""
    server_cfg = settings.server
    app = create_app(settings)
    uvicorn.run(
        app,
        host=server_cfg.host,
        port=server_cfg.port,
        ws_max_size=server_cfg.max_payload_bytes,
        ws_ping_interval=server_cfg.ping_interval,
        ws_ping_timeout=server_cfg.ping_timeout,
    )


def main() -> None:
    """Entry point for running the relay standalone."""
    from screenrelay.config.settings import load_settings
    from screenrelay.utils.logging import setup_logging

    settings = load_settings()
    setup_logging(settings.logging)
    run_server(settings)


if __name__ == "__main__":
    main()
