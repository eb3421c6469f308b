"""
Core components: constants shared across the bridge.
"""

from ws_bridge.components.core.constants import (
    WSCloseCode,
    WSConstants,
    EVENT_OPEN,
    EVENT_MESSAGE,
    EVENT_CLOSE,
    SOCKET_EVENT_KINDS,
)

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "EVENT_OPEN",
    "EVENT_MESSAGE",
    "EVENT_CLOSE",
    "SOCKET_EVENT_KINDS",
]
