"""
Utilities module: Exceptions.
"""

from shared.utils.exceptions import (
    WSBridgeError,
    ConnectionClosedError,
    InvalidStateTransition,
)

__all__ = [
    "WSBridgeError",
    "ConnectionClosedError",
    "InvalidStateTransition",
]
