"""Process-level relay service.

Owns the two registries, built once at startup, and threads them into
the router and lifecycle manager. The transport hands every validated
inbound event to :meth:`RelayService.handle`.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from screenrelay.domain.events import (
    ClientTypeEvent,
    InboundEvent,
    RemoteCommandEvent,
    RequestScreenshotEvent,
    ScreenUpdateEvent,
    UnwatchPcEvent,
    WatchPcEvent,
    parse_event,
)
from screenrelay.domain.models import Snapshot
from screenrelay.relay.connection import Connection
from screenrelay.relay.consumers import ConsumerRegistry
from screenrelay.relay.errors import UnknownConsumer
from screenrelay.relay.lifecycle import LifecycleManager
from screenrelay.relay.producers import ProducerChange, ProducerRegistry
from screenrelay.relay.routing import Router

logger = logging.getLogger(__name__)


class RelayService:
    """Facade over the registries, router and lifecycle manager.

    Example usage::

        service = RelayService()
        await service.connect(conn)
        await service.dispatch(conn, "client_type", {"type": "web"})
        await service.disconnect(conn)
    """

    def __init__(
        self,
        producers: ProducerRegistry | None = None,
        consumers: ConsumerRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.producers = producers if producers is not None else ProducerRegistry()
        self.consumers = consumers if consumers is not None else ConsumerRegistry()
        self.router = Router(self.producers, self.consumers)
        self.lifecycle = LifecycleManager(self.producers, self.consumers)
        self._clock = clock
        self.producers.add_listener(self._log_change)

    @property
    def producer_count(self) -> int:
        return len(self.producers)

    @property
    def consumer_count(self) -> int:
        return len(self.consumers)

    async def connect(self, connection: Connection) -> None:
        await self.lifecycle.on_connect(connection)

    async def disconnect(self, connection: Connection) -> None:
        await self.lifecycle.on_disconnect(connection)

    async def dispatch(self, connection: Connection, name: str, data: Any) -> None:
        """Validate a raw transport event and handle it.

        Raises:
            ValidationError: If the event is unknown or malformed.
        """
        await self.handle(connection, parse_event(name, data))

    async def handle(self, connection: Connection, event: InboundEvent) -> None:
        """Route one typed inbound event from ``connection``."""
        try:
            await self._handle(connection, event)
        except UnknownConsumer as e:
            logger.warning("Ignoring %s: %s", event.event, e)

    async def _handle(self, connection: Connection, event: InboundEvent) -> None:
        if isinstance(event, ClientTypeEvent):
            await self.lifecycle.on_role_declared(
                connection, event.role, event.client_id, event.hostname
            )
        elif isinstance(event, WatchPcEvent):
            await self.router.on_watch_request(connection.connection_id, event.client_id)
        elif isinstance(event, UnwatchPcEvent):
            await self.router.on_unwatch_request(connection.connection_id)
        elif isinstance(event, ScreenUpdateEvent):
            await self._on_screen_update(connection, event)
        elif isinstance(event, RequestScreenshotEvent):
            await self.router.on_screenshot_request(event.client_id)
        elif isinstance(event, RemoteCommandEvent):
            await self.router.on_command(event.client_id, event.command)

    async def _on_screen_update(self, connection: Connection, event: ScreenUpdateEvent) -> None:
        # The producer id comes from the registry, never from the payload.
        entry = self.producers.find_by_connection(connection.connection_id)
        if entry is None:
            logger.debug("Ignoring screen_update from non-producer %s", connection.connection_id)
            return
        timestamp = event.timestamp if event.timestamp is not None else self._clock() * 1000
        snapshot = Snapshot(payload=event.image, timestamp=timestamp, producer_id=entry.producer_id)
        await self.router.on_snapshot_update(entry.producer_id, snapshot)

    def _log_change(self, change: ProducerChange) -> None:
        logger.debug("Producer %s %s", change.producer_id, change.kind.value)
