"""Abstract base class for a peer connection.

The relay core never touches sockets directly. Every peer is reached
through this interface, so the WebSocket transport in
:mod:`screenrelay.server` and the recording fakes used in tests are
interchangeable.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class Connection(ABC):
    """A bidirectional channel to one remote peer.

    Implementations must make :meth:`emit` cheap: the routing engine
    fans out to many connections and must not stall on one slow peer.
    Inbound events are pushed into the relay by the transport, not
    pulled through this interface.

    Example usage::

        conn = WebSocketConnection(websocket)
        await conn.emit("pc_list_update", {"pcs": []})
        await conn.close()
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique identity of this connection for its whole lifetime."""
        ...

    @abstractmethod
    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        """Send a named event with a JSON-serializable payload.

        Raises:
            ConnectionClosed: If the connection is already closed.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.connection_id!r})"
