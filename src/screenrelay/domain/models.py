"""Core domain models for the screenrelay system.

These models describe the state the relay keeps per connection: producer
entries with their most recent snapshot, consumer subscriptions, and the
read-only producer summaries that are broadcast to viewers.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ClientRole(str, enum.Enum):
    """Role a connection declares with its ``client_type`` event.

    The wire values are the historical ones: producers were Windows
    machines and consumers were web viewers.
    """

    PRODUCER = "windows"
    CONSUMER = "web"


# ---------------------------------------------------------------------------
# Producer models
# ---------------------------------------------------------------------------


class Snapshot(BaseModel):
    """The latest screen capture published by a producer.

    Only one is ever retained per producer; a new one replaces the old.
    """

    model_config = ConfigDict(frozen=True)

    payload: str = Field(description="Opaque image blob, usually a base64 data URL")
    timestamp: float = Field(description="Producer-supplied capture time (ms since epoch)")
    producer_id: str = Field(description="Id of the producer that generated it")

    def to_wire(self) -> dict[str, Any]:
        """Serialize as the ``screen_update`` payload sent to viewers."""
        return {
            "image": self.payload,
            "timestamp": self.timestamp,
            "clientId": self.producer_id,
        }


class ProducerEntry(BaseModel):
    """A registered producer and its borrowed connection.

    The registry owns the entry but not the connection: the transport
    decides when a connection dies.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    producer_id: str = Field(description="Stable producer identity (registry key)")
    connection_id: str = Field(description="Identity of the current connection")
    connection: Any = Field(repr=False, description="Borrowed Connection used for delivery")
    display_name: str = Field(default="Unknown", description="Human-readable label")
    connected_at: int = Field(description="Registration time (ms since epoch)")
    latest_snapshot: Snapshot | None = Field(default=None)

    @property
    def has_snapshot(self) -> bool:
        return self.latest_snapshot is not None

    def summary(self) -> ProducerSummary:
        return ProducerSummary(
            producer_id=self.producer_id,
            connection_id=self.connection_id,
            display_name=self.display_name,
            connected_at=self.connected_at,
            has_snapshot=self.has_snapshot,
        )


class ProducerSummary(BaseModel):
    """Read-only projection of a ProducerEntry.

    Never carries the snapshot payload, so it is safe to broadcast.
    """

    model_config = ConfigDict(frozen=True)

    producer_id: str
    connection_id: str
    display_name: str
    connected_at: int
    has_snapshot: bool

    def to_wire(self, include_connection: bool = False) -> dict[str, Any]:
        """Serialize for ``pc_list_update`` (and ``/connected-pcs``)."""
        data: dict[str, Any] = {
            "clientId": self.producer_id,
            "hostname": self.display_name,
            "connectedAt": self.connected_at,
            "hasScreenshot": self.has_snapshot,
        }
        if include_connection:
            data["socketId"] = self.connection_id
        return data


# ---------------------------------------------------------------------------
# Consumer models
# ---------------------------------------------------------------------------


class ConsumerEntry(BaseModel):
    """A registered viewer and the producer it is watching, if any.

    ``watched_producer_id`` may name a producer that has since left;
    such a consumer simply receives nothing until that id comes back.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    connection_id: str
    connection: Any = Field(repr=False)
    watched_producer_id: str | None = None
