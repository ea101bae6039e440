"""Lifecycle manager.

Handles role declaration and disconnect, keeps both registries
consistent, and tells consumers when the set of producers changes.
"""

from __future__ import annotations

import logging

from screenrelay.domain.events import PC_LIST_UPDATE
from screenrelay.domain.models import ClientRole
from screenrelay.relay.connection import Connection
from screenrelay.relay.consumers import ConsumerRegistry
from screenrelay.relay.producers import ProducerRegistry
from screenrelay.relay.routing import deliver

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Join/leave handling for producers and consumers."""

    def __init__(self, producers: ProducerRegistry, consumers: ConsumerRegistry) -> None:
        self._producers = producers
        self._consumers = consumers

    async def on_connect(self, connection: Connection) -> None:
        # Nothing is registered until the peer declares its role.
        logger.info("Connection opened: %s", connection.connection_id)

    async def on_role_declared(
        self,
        connection: Connection,
        role: ClientRole,
        producer_id: str | None = None,
        display_name: str | None = None,
    ) -> None:
        """Register the connection under its declared role.

        Producers without an explicit id are keyed by their connection id.
        """
        if role is ClientRole.PRODUCER:
            entry = self._producers.register(
                producer_id or connection.connection_id, connection, display_name
            )
            logger.info("Producer registered: %s (%s)", entry.producer_id, entry.display_name)
            await self.broadcast_producer_list()
        else:
            self._consumers.register(connection)
            logger.info("Consumer registered: %s", connection.connection_id)
            await deliver(connection, PC_LIST_UPDATE, self.producer_list_payload())

    async def on_disconnect(self, connection: Connection) -> None:
        """Drop whatever the connection registered. Safe to call twice."""
        removed = self._producers.unregister_by_connection(connection.connection_id)
        if removed is not None:
            logger.info("Producer disconnected: %s", removed.producer_id)
            await self.broadcast_producer_list()
        if self._consumers.unregister(connection.connection_id):
            logger.info("Consumer disconnected: %s", connection.connection_id)

    def producer_list_payload(self) -> dict[str, list[dict]]:
        return {"pcs": [p.to_wire() for p in self._producers.list_all()]}

    async def broadcast_producer_list(self) -> int:
        """Send the current producer list to every registered consumer."""
        payload = self.producer_list_payload()
        consumers = self._consumers.list_all()
        delivered = 0
        for consumer in consumers:
            if await deliver(consumer.connection, PC_LIST_UPDATE, payload):
                delivered += 1
        logger.debug("Producer list (%d) sent to %d consumer(s)", len(payload["pcs"]), delivered)
        return delivered
