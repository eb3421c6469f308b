"""
Transport components: the socket primitive and its websockets implementation.
"""

from ws_bridge.components.transport.base import Socket, Transport
from ws_bridge.components.transport.websocket import ManagedSocket, WebSocketTransport

__all__ = [
    "Socket",
    "Transport",
    "ManagedSocket",
    "WebSocketTransport",
]
