"""Routing engine.

Decides which connections receive each event and delivers it. The
router owns no state; it reads and writes the two registries it is
given and copies target lists out of them before any I/O happens.

Control-plane operations follow the targeted-else-broadcast policy: an
explicit producer id reaches exactly that producer (or no one, if it is
not connected), and no id reaches every registered producer.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Iterable

from screenrelay.domain.events import (
    EXECUTE_COMMAND,
    REQUEST_SCREENSHOT,
    SCREEN_UPDATE,
    TOGGLE_OVERLAY,
    UPDATE_OVERLAY,
)
from screenrelay.domain.models import Snapshot
from screenrelay.relay.connection import Connection
from screenrelay.relay.consumers import ConsumerRegistry
from screenrelay.relay.errors import ValidationError
from screenrelay.relay.producers import ProducerRegistry

logger = logging.getLogger(__name__)


class Router:
    """Resolves destinations for inbound events and forwards them.

    Every ``on_*`` coroutine returns the number of connections the event
    was successfully handed to.
    """

    def __init__(self, producers: ProducerRegistry, consumers: ConsumerRegistry) -> None:
        self._producers = producers
        self._consumers = consumers

    # -------------------------------------------------------------------
    # Snapshot stream
    # -------------------------------------------------------------------

    async def on_snapshot_update(self, producer_id: str, snapshot: Snapshot) -> int:
        """Store the snapshot and forward it to the producer's watchers."""
        if not self._producers.update_snapshot(producer_id, snapshot):
            return 0
        watchers = self._consumers.list_watching(producer_id)
        logger.debug("Snapshot from %s -> %d watcher(s)", producer_id, len(watchers))
        return await self._fan_out(watchers, SCREEN_UPDATE, snapshot.to_wire())

    async def on_watch_request(self, connection_id: str, producer_id: str) -> int:
        """Point a consumer at ``producer_id`` and replay its cached snapshot.

        Raises:
            UnknownConsumer: If the connection is not a registered consumer.
        """
        self._consumers.set_watch(connection_id, producer_id)
        logger.info("Consumer %s now watching %s", connection_id, producer_id)

        entry = self._producers.get(producer_id)
        consumer = self._consumers.get(connection_id)
        if entry is None or entry.latest_snapshot is None or consumer is None:
            return 0
        return await self._fan_out(
            [consumer.connection], SCREEN_UPDATE, entry.latest_snapshot.to_wire()
        )

    async def on_unwatch_request(self, connection_id: str) -> None:
        """Clear a consumer's watch target.

        Raises:
            UnknownConsumer: If the connection is not a registered consumer.
        """
        self._consumers.set_watch(connection_id, None)
        logger.info("Consumer %s stopped watching", connection_id)

    # -------------------------------------------------------------------
    # Control plane (targeted-else-broadcast)
    # -------------------------------------------------------------------

    async def on_screenshot_request(self, producer_id: str | None) -> int:
        return await self._to_producers(producer_id, REQUEST_SCREENSHOT, {})

    async def on_command(self, producer_id: str | None, command: Any) -> int:
        return await self._to_producers(producer_id, EXECUTE_COMMAND, {"command": command})

    async def on_text_update(self, producer_id: str | None, text: Any) -> int:
        """Send overlay text. Empty strings and zero are valid; None is not.

        Raises:
            ValidationError: If ``text`` is missing.
        """
        if text is None:
            raise ValidationError("Text required", event=UPDATE_OVERLAY)
        return await self._to_producers(producer_id, UPDATE_OVERLAY, {"text": _as_text(text)})

    async def on_toggle_overlay(self, producer_id: str | None, visible: bool) -> int:
        return await self._to_producers(producer_id, TOGGLE_OVERLAY, {"visible": visible})

    async def _to_producers(
        self, producer_id: str | None, event: str, payload: dict[str, Any]
    ) -> int:
        if producer_id is None:
            targets = self._producers.connections()
        else:
            entry = self._producers.get(producer_id)
            if entry is None:
                logger.debug("Dropped %s for unknown producer %s", event, producer_id)
                return 0
            targets = [entry.connection]
        return await self._fan_out(targets, event, payload)

    # -------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------

    async def _fan_out(
        self, targets: Iterable[Connection], event: str, payload: dict[str, Any]
    ) -> int:
        results = await asyncio.gather(*(deliver(c, event, payload) for c in targets))
        return sum(results)


async def deliver(connection: Connection, event: str, payload: dict[str, Any]) -> bool:
    """Emit one event, logging and absorbing any failure.

    A failing peer must never abort delivery to the others.
    """
    try:
        await connection.emit(event, payload)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning("Delivery of %s to %s failed: %s", event, connection.connection_id, e)
        return False
    return True


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)
