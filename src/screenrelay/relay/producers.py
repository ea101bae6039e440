"""Producer registry.

Maps each producer id to its entry: the borrowed connection, display
name, registration time and the single latest snapshot. All mutations
happen under one lock; nothing in here performs I/O, so callers can
copy out what they need and deliver outside the lock.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Callable, NamedTuple

from screenrelay.domain.models import ProducerEntry, ProducerSummary, Snapshot
from screenrelay.relay.connection import Connection

logger = logging.getLogger(__name__)


class ChangeKind(str, enum.Enum):
    REGISTERED = "registered"
    UNREGISTERED = "unregistered"
    SNAPSHOT = "snapshot"


class ProducerChange(NamedTuple):
    kind: ChangeKind
    producer_id: str


ChangeListener = Callable[[ProducerChange], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


class ProducerRegistry:
    """Lock-guarded map of producer id -> :class:`ProducerEntry`.

    Iteration order is registration order. Re-registering an existing id
    keeps its position but resets the entry (last writer wins, and the
    old snapshot is discarded).

    Every mutating call emits a :class:`ProducerChange` to registered
    listeners after the lock is released.
    """

    def __init__(
        self,
        default_display_name: str = "Unknown",
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._entries: dict[str, ProducerEntry] = {}
        self._lock = threading.Lock()
        self._listeners: list[ChangeListener] = []
        self._default_display_name = default_display_name
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, producer_id: object) -> bool:
        with self._lock:
            return producer_id in self._entries

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def register(
        self,
        producer_id: str,
        connection: Connection,
        display_name: str | None = None,
    ) -> ProducerEntry:
        """Insert or replace the entry for ``producer_id``.

        A connection backs at most one producer, so any other entry the
        same connection registered earlier is dropped.
        """
        entry = ProducerEntry(
            producer_id=producer_id,
            connection_id=connection.connection_id,
            connection=connection,
            display_name=display_name or self._default_display_name,
            connected_at=self._clock(),
        )
        with self._lock:
            previous = self._entries.get(producer_id)
            stale = [
                pid for pid, e in self._entries.items()
                if e.connection_id == entry.connection_id and pid != producer_id
            ]
            for pid in stale:
                del self._entries[pid]
            self._entries[producer_id] = entry

        if previous is not None and previous.connection_id != entry.connection_id:
            logger.warning(
                "Producer %s re-registered from connection %s, replacing %s",
                producer_id, entry.connection_id, previous.connection_id,
            )
        for pid in stale:
            self._notify(ProducerChange(ChangeKind.UNREGISTERED, pid))
        self._notify(ProducerChange(ChangeKind.REGISTERED, producer_id))
        return entry

    def unregister(self, producer_id: str) -> bool:
        """Remove ``producer_id`` if present. Returns whether anything was removed."""
        with self._lock:
            removed = self._entries.pop(producer_id, None)
        if removed is None:
            return False
        self._notify(ProducerChange(ChangeKind.UNREGISTERED, producer_id))
        return True

    def unregister_by_connection(self, connection_id: str) -> ProducerEntry | None:
        """Remove whichever entry is backed by ``connection_id``.

        Returns the removed entry, or None if the connection backs no
        producer (never registered, or replaced by a newer connection).
        """
        with self._lock:
            producer_id = self._find_id_locked(connection_id)
            removed = self._entries.pop(producer_id) if producer_id is not None else None
        if removed is not None:
            self._notify(ProducerChange(ChangeKind.UNREGISTERED, removed.producer_id))
        return removed

    def update_snapshot(self, producer_id: str, snapshot: Snapshot) -> bool:
        """Replace the producer's latest snapshot.

        Updates for unknown producers (typically a late push from one
        that just disconnected) are dropped and False is returned.
        """
        with self._lock:
            entry = self._entries.get(producer_id)
            if entry is None:
                dropped = True
            else:
                self._entries[producer_id] = entry.model_copy(
                    update={"latest_snapshot": snapshot}
                )
                dropped = False
        if dropped:
            logger.debug("Dropped snapshot for unknown producer %s", producer_id)
            return False
        self._notify(ProducerChange(ChangeKind.SNAPSHOT, producer_id))
        return True

    def get(self, producer_id: str) -> ProducerEntry | None:
        with self._lock:
            return self._entries.get(producer_id)

    def find_by_connection(self, connection_id: str) -> ProducerEntry | None:
        with self._lock:
            producer_id = self._find_id_locked(connection_id)
            return self._entries[producer_id] if producer_id is not None else None

    def connections(self) -> list[Connection]:
        """Copy of every registered producer's connection, in registration order."""
        with self._lock:
            return [e.connection for e in self._entries.values()]

    def list_all(self) -> list[ProducerSummary]:
        """Projection of every entry, in registration order, without payloads."""
        with self._lock:
            return [e.summary() for e in self._entries.values()]

    def _find_id_locked(self, connection_id: str) -> str | None:
        for producer_id, entry in self._entries.items():
            if entry.connection_id == connection_id:
                return producer_id
        return None

    def _notify(self, change: ProducerChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Producer change listener failed for %s", change)
