"""Typed inbound transport events.

Every event a peer may send is a closed variant with its required and
optional fields declared here. The transport validates raw payloads with
:func:`parse_event` before anything reaches the relay core, so the core
only ever sees well-typed inputs.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from screenrelay.domain.models import ClientRole
from screenrelay.relay.errors import ValidationError

# Event names on the wire
CLIENT_TYPE = "client_type"
PC_LIST_UPDATE = "pc_list_update"
WATCH_PC = "watch_pc"
UNWATCH_PC = "unwatch_pc"
SCREEN_UPDATE = "screen_update"
REQUEST_SCREENSHOT = "request_screenshot"
REMOTE_COMMAND = "remote_command"
EXECUTE_COMMAND = "execute_command"
UPDATE_OVERLAY = "update_overlay"
TOGGLE_OVERLAY = "toggle_overlay"
ERROR = "error"


class _InboundEvent(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


def _blank_to_none(value: Any) -> Any:
    # An empty id is treated as "no id", i.e. broadcast.
    if value == "":
        return None
    return value


class ClientTypeEvent(_InboundEvent):
    """Role declaration sent once after connecting."""

    event: Literal["client_type"] = CLIENT_TYPE
    role: ClientRole = Field(alias="type")
    client_id: str | None = Field(default=None, alias="clientId")
    hostname: str | None = None

    normalize_id = field_validator("client_id", "hostname", mode="before")(_blank_to_none)


class WatchPcEvent(_InboundEvent):
    event: Literal["watch_pc"] = WATCH_PC
    client_id: str = Field(alias="clientId", min_length=1)


class UnwatchPcEvent(_InboundEvent):
    event: Literal["unwatch_pc"] = UNWATCH_PC


class ScreenUpdateEvent(_InboundEvent):
    """A capture pushed by a producer. The producer id comes from the connection."""

    event: Literal["screen_update"] = SCREEN_UPDATE
    image: str
    timestamp: float | None = None


class RequestScreenshotEvent(_InboundEvent):
    event: Literal["request_screenshot"] = REQUEST_SCREENSHOT
    client_id: str | None = Field(default=None, alias="clientId")

    normalize_id = field_validator("client_id", mode="before")(_blank_to_none)


class RemoteCommandEvent(_InboundEvent):
    event: Literal["remote_command"] = REMOTE_COMMAND
    client_id: str | None = Field(default=None, alias="clientId")
    command: Any

    normalize_id = field_validator("client_id", mode="before")(_blank_to_none)


InboundEvent = Annotated[
    Union[
        ClientTypeEvent,
        WatchPcEvent,
        UnwatchPcEvent,
        ScreenUpdateEvent,
        RequestScreenshotEvent,
        RemoteCommandEvent,
    ],
    Field(discriminator="event"),
]

_INBOUND_ADAPTER: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)

INBOUND_EVENTS = frozenset(
    {CLIENT_TYPE, WATCH_PC, UNWATCH_PC, SCREEN_UPDATE, REQUEST_SCREENSHOT, REMOTE_COMMAND}
)


def parse_event(name: str, data: Any) -> InboundEvent:
    """Validate a raw ``(event, data)`` pair into its typed variant.

    Raises:
        ValidationError: If the event name is unknown or the payload
            does not match the event's shape.
    """
    if name not in INBOUND_EVENTS:
        raise ValidationError(f"Unknown event: {name!r}", event=name)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(f"Payload for {name} must be an object", event=name)
    try:
        return _INBOUND_ADAPTER.validate_python({**data, "event": name})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {name} payload: {e}", event=name) from e
