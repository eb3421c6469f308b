"""
WebSocket Bridge Components.

Organized into domain-specific modules:
- core/       - Constants shared by all components
- connection/ - Record state machine and per-connection locks
- events/     - Event value objects and delivery dispatcher
- transport/  - Socket primitive and websockets-backed implementation
- metrics/    - Observability counters

All public symbols are re-exported here.
"""

# =============================================================================
# Core Components
# =============================================================================
from ws_bridge.components.core.constants import (
    WSCloseCode,
    WSConstants,
    EVENT_OPEN,
    EVENT_MESSAGE,
    EVENT_CLOSE,
)

# =============================================================================
# Connection Management
# =============================================================================
from ws_bridge.components.connection.locks import LockManager
from ws_bridge.components.connection.state import ConnectionRecord, ConnectionState

# =============================================================================
# Events
# =============================================================================
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

# =============================================================================
# Transport
# =============================================================================
from ws_bridge.components.transport.base import Socket, Transport
from ws_bridge.components.transport.websocket import ManagedSocket, WebSocketTransport

# =============================================================================
# Metrics
# =============================================================================
from ws_bridge.components.metrics.collector import MetricsCollector

__all__ = [
    # Core
    "WSCloseCode",
    "WSConstants",
    "EVENT_OPEN",
    "EVENT_MESSAGE",
    "EVENT_CLOSE",
    # Connection
    "LockManager",
    "ConnectionRecord",
    "ConnectionState",
    # Events
    "ClosedEvent",
    "ConnectionEvent",
    "ConnectionHandle",
    "DataEvent",
    "Deliver",
    "OutboundPayload",
    "Payload",
    "EventDispatcher",
    # Transport
    "Socket",
    "Transport",
    "ManagedSocket",
    "WebSocketTransport",
    # Metrics
    "MetricsCollector",
]
