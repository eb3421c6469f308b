"""
Event components: value objects and delivery.
"""

from ws_bridge.components.events.types import (
    ClosedEvent,
    ConnectionEvent,
    ConnectionHandle,
    DataEvent,
    Deliver,
    OutboundPayload,
    Payload,
)
from ws_bridge.components.events.dispatcher import EventDispatcher

__all__ = [
    "ClosedEvent",
    "ConnectionEvent",
    "ConnectionHandle",
    "DataEvent",
    "Deliver",
    "OutboundPayload",
    "Payload",
    "EventDispatcher",
]
