"""Shared test fixtures for the screenrelay test suite.

Provides a recording fake connection plus ready-wired registries,
router, lifecycle manager and service.
"""

from __future__ import annotations

from typing import Any

import pytest

from screenrelay.domain.models import Snapshot
from screenrelay.relay.connection import Connection
from screenrelay.relay.consumers import ConsumerRegistry
from screenrelay.relay.errors import ConnectionClosed
from screenrelay.relay.lifecycle import LifecycleManager
from screenrelay.relay.producers import ProducerRegistry
from screenrelay.relay.routing import Router
from screenrelay.relay.service import RelayService


class FakeConnection(Connection):
    """A Connection that records every emitted event."""

    def __init__(self, connection_id: str) -> None:
        self._id = connection_id
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    @property
    def connection_id(self) -> str:
        return self._id

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionClosed(self._id)
        self.sent.append((event, payload))

    async def close(self) -> None:
        self.closed = True

    def events(self, name: str) -> list[dict[str, Any]]:
        """Payloads of every emitted event called ``name``."""
        return [payload for event, payload in self.sent if event == name]


# ---------------------------------------------------------------------------
# Connection Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_connection():
    """Factory for named fake connections."""

    def _make(connection_id: str) -> FakeConnection:
        return FakeConnection(connection_id)

    return _make


@pytest.fixture
def producer_conn() -> FakeConnection:
    return FakeConnection("sock-p1")


@pytest.fixture
def consumer_conn() -> FakeConnection:
    return FakeConnection("sock-c1")


# ---------------------------------------------------------------------------
# Relay Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> list[int]:
    """A controllable millisecond clock; append to advance it."""
    return [1_000]


@pytest.fixture
def producers(clock: list[int]) -> ProducerRegistry:
    return ProducerRegistry(clock=lambda: clock[-1])


@pytest.fixture
def consumers() -> ConsumerRegistry:
    return ConsumerRegistry()


@pytest.fixture
def router(producers: ProducerRegistry, consumers: ConsumerRegistry) -> Router:
    return Router(producers, consumers)


@pytest.fixture
def lifecycle(producers: ProducerRegistry, consumers: ConsumerRegistry) -> LifecycleManager:
    return LifecycleManager(producers, consumers)


@pytest.fixture
def service(producers: ProducerRegistry, consumers: ConsumerRegistry) -> RelayService:
    return RelayService(producers=producers, consumers=consumers, clock=lambda: 42.0)


@pytest.fixture
def sample_snapshot() -> Snapshot:
    return Snapshot(payload="data:image/png;base64,AAAA", timestamp=100, producer_id="pc-1")
