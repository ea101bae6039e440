"""Domain models for screenrelay.

This package contains the registry entries, snapshot value object and
the typed inbound event variants. All models use Pydantic v2.
"""

from screenrelay.domain.models import (
    ClientRole,
    ConsumerEntry,
    ProducerEntry,
    ProducerSummary,
    Snapshot,
)

__all__ = [
    "ClientRole",
    "ConsumerEntry",
    "ProducerEntry",
    "ProducerSummary",
    "Snapshot",
]
