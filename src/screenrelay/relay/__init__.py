"""Connection registry and routing engine.

Public API:
    RelayService -- Process-level facade wiring everything together
    ProducerRegistry / ConsumerRegistry -- Lock-guarded connection state
    Router -- Targeted-else-broadcast event routing
    LifecycleManager -- Join/leave handling
    Connection -- Abstract peer channel
"""

from screenrelay.relay.connection import Connection
from screenrelay.relay.errors import (
    ConnectionClosed,
    OutboxFull,
    RelayError,
    UnknownConsumer,
    UnknownProducer,
    ValidationError,
)

__all__ = [
    "Connection",
    "ConnectionClosed",
    "ConsumerRegistry",
    "LifecycleManager",
    "OutboxFull",
    "ProducerRegistry",
    "RelayError",
    "RelayService",
    "Router",
    "UnknownConsumer",
    "UnknownProducer",
    "ValidationError",
]


def __getattr__(name: str) -> type:
    """Lazy import for components that depend on the typed event module."""
    if name == "RelayService":
        from screenrelay.relay.service import RelayService
        return RelayService
    if name == "Router":
        from screenrelay.relay.routing import Router
        return Router
    if name == "LifecycleManager":
        from screenrelay.relay.lifecycle import LifecycleManager
        return LifecycleManager
    if name == "ProducerRegistry":
        from screenrelay.relay.producers import ProducerRegistry
        return ProducerRegistry
    if name == "ConsumerRegistry":
        from screenrelay.relay.consumers import ConsumerRegistry
        return ConsumerRegistry
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
