"""
Connection management components.

Handles the per-connection record state machine and locking.
"""

from ws_bridge.components.connection.locks import LockManager
from ws_bridge.components.connection.state import ConnectionRecord, ConnectionState

__all__ = [
    "LockManager",
    "ConnectionRecord",
    "ConnectionState",
]
