"""Consumer registry.

Maps a viewer's connection id to the producer it watches. A watch may
point at a producer that is not (or no longer) connected; that is valid
and just means nothing is forwarded until the producer shows up.
"""

from __future__ import annotations

import logging
import threading

from screenrelay.domain.models import ConsumerEntry
from screenrelay.relay.connection import Connection
from screenrelay.relay.errors import UnknownConsumer

logger = logging.getLogger(__name__)


class ConsumerRegistry:
    """Lock-guarded map of connection id -> :class:`ConsumerEntry`."""

    def __init__(self) -> None:
        self._entries: dict[str, ConsumerEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._entries

    def register(self, connection: Connection) -> ConsumerEntry:
        """Create an entry watching nothing. Re-registering resets the watch."""
        entry = ConsumerEntry(connection_id=connection.connection_id, connection=connection)
        with self._lock:
            self._entries[entry.connection_id] = entry
        return entry

    def unregister(self, connection_id: str) -> bool:
        with self._lock:
            return self._entries.pop(connection_id, None) is not None

    def set_watch(self, connection_id: str, producer_id: str | None) -> None:
        """Set or clear the watch target.

        The target producer does not need to exist.

        Raises:
            UnknownConsumer: If ``connection_id`` never registered as a consumer.
        """
        with self._lock:
            entry = self._entries.get(connection_id)
            if entry is None:
                raise UnknownConsumer(connection_id)
            entry.watched_producer_id = producer_id

    def get(self, connection_id: str) -> ConsumerEntry | None:
        with self._lock:
            entry = self._entries.get(connection_id)
            return entry.model_copy() if entry is not None else None

    def list_watching(self, producer_id: str) -> list[Connection]:
        """Connections of every consumer currently watching ``producer_id``."""
        with self._lock:
            return [
                e.connection for e in self._entries.values()
                if e.watched_producer_id == producer_id
            ]

    def list_all(self) -> list[ConsumerEntry]:
        """Copies of every entry, safe to iterate while the registry changes."""
        with self._lock:
            return [e.model_copy() for e in self._entries.values()]
