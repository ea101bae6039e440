"""Exception taxonomy for the relay core.

None of these are fatal to the process. Registries tolerate missing
entries wherever a lookup happens; these exceptions only mark the
places where a caller needs to be told something went wrong.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all relay errors."""


class UnknownConsumer(RelayError):
    """An operation named a connection with no consumer registration.

    This is a protocol error on the caller's side (e.g. ``watch_pc``
    before ``client_type``). It is logged and the event is ignored.
    """

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Connection {connection_id} is not a registered consumer")
        self.connection_id = connection_id


class UnknownProducer(RelayError):
    """A lookup named a producer id that is not registered.

    Routing never raises this; targeted operations to unknown producers
    are silent drops. Read paths outside the core may use it.
    """

    def __init__(self, producer_id: str) -> None:
        super().__init__(f"Producer {producer_id} is not connected")
        self.producer_id = producer_id


class ValidationError(RelayError):
    """A required field is missing or an inbound payload is malformed."""

    def __init__(self, message: str, event: str = "") -> None:
        super().__init__(message)
        self.event = event


class ConnectionClosed(RelayError):
    """Delivery was attempted on a connection that is already closed."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Connection {connection_id} is closed")
        self.connection_id = connection_id


class OutboxFull(RelayError):
    """A connection's pending-event queue is at capacity; the event was dropped."""

    def __init__(self, connection_id: str, event: str) -> None:
        super().__init__(f"Outbox full for {connection_id}, dropped {event}")
        self.connection_id = connection_id
        self.event = event
