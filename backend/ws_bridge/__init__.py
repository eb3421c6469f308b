"""
WebSocket Bridge.

Connection registry for outbound WebSocket connections: lazy connect on first
use, per-connection event delivery, explicit closed-connection errors.
"""

from ws_bridge.registry import ConnectionRegistry
from ws_bridge.components.connection.state import ConnectionState
from ws_bridge.components.core.constants import WSCloseCode
from ws_bridge.components.events.types import (
    ClosedEvent,
    ConnectionEvent,
    ConnectionHandle,
    DataEvent,
    Deliver,
)
from shared.utils.exceptions import ConnectionClosedError

__all__ = [
    "ConnectionRegistry",
    "ConnectionState",
    "ConnectionHandle",
    "ConnectionEvent",
    "DataEvent",
    "ClosedEvent",
    "Deliver",
    "ConnectionClosedError",
    "WSCloseCode",
]
