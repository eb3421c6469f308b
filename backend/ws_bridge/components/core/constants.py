"""
WebSocket Bridge Constants.

Centralized constants with documentation explaining the choice of each value.
"""

from enum import IntEnum
from typing import Final

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "EVENT_OPEN",
    "EVENT_MESSAGE",
    "EVENT_CLOSE",
    "SOCKET_EVENT_KINDS",
]


class WSCloseCode(IntEnum):
    """
    WebSocket close codes reported in ClosedEvent.

    Standard codes (1000-1999) from RFC 6455. Codes 1005 and 1006 are never
    sent on the wire; they are reported locally when no status was received
    or the connection dropped without a closing handshake.
    """

    NORMAL = 1000  # Normal closure
    GOING_AWAY = 1001  # Peer or bridge shutting down
    PROTOCOL_ERROR = 1002  # Protocol error
    UNSUPPORTED_DATA = 1003  # Received data type not supported
    NO_STATUS_RECEIVED = 1005  # Closed without a status code, also used for registry reset
    ABNORMAL_CLOSURE = 1006  # Dropped without closing handshake, or never connected
    INVALID_PAYLOAD = 1007  # Inconsistent message data (e.g. bad UTF-8)
    POLICY_VIOLATION = 1008  # Generic policy violation
    MESSAGE_TOO_BIG = 1009  # Message too large to process
    SERVER_ERROR = 1011  # Unexpected server error
    SERVER_OVERLOADED = 1013  # Server overloaded, try again later


class WSConstants:
    """
    WebSocket Bridge operational constants.

    Values that operators may want to tune live in
    `shared.config.settings.Settings`; these are internal defaults.
    """

    # ==========================================================================
    # Close Reporting
    # ==========================================================================

    # RESET_CLOSE_CODE / RESET_CLOSE_REASON
    # A listen() on an identifier with no record reports the connection as
    # closed with "no status received" and an empty reason.
    RESET_CLOSE_CODE: Final[int] = WSCloseCode.NO_STATUS_RECEIVED
    RESET_CLOSE_REASON: Final[str] = ""

    # ABORTED_CONNECT_REASON
    # Reason reported when close() is called while the socket is still connecting.
    ABORTED_CONNECT_REASON: Final[str] = "Connection closed before it was established"

    # ==========================================================================
    # Lock Management Constants
    # ==========================================================================

    # MAX_CACHED_LOCKS: 5000
    # One lock per connection id. Each lock is ~200 bytes, so 5000 locks
    # use ~1MB.
    MAX_CACHED_LOCKS: Final[int] = 5000

    # LOCK_CLEANUP_THRESHOLD: 4000 (80% of MAX_CACHED_LOCKS)
    # Start cleanup before hitting the limit to avoid blocking.
    LOCK_CLEANUP_THRESHOLD: Final[int] = 4000

    # LOCK_CLEANUP_HYSTERESIS_RATIO: 0.8 (80%)
    # When cleanup runs, reduce lock count to 80% of threshold so that the
    # next cleanup does not trigger on the very next lock created.
    LOCK_CLEANUP_HYSTERESIS_RATIO: Final[float] = 0.8

    # LOCK_CLEANUP_SHUTDOWN_TIMEOUT: 5 seconds
    LOCK_CLEANUP_SHUTDOWN_TIMEOUT: Final[float] = 5.0

    # ==========================================================================
    # Event Queue Constants
    # ==========================================================================

    # DROP_LOG_INTERVAL: 100
    # Log every 100th event rejected after shutdown to avoid log spam.
    DROP_LOG_INTERVAL: Final[int] = 100

    # DISPATCHER_SHUTDOWN_TIMEOUT: 5 seconds
    # Time allowed for queued events to drain before workers are cancelled.
    DISPATCHER_SHUTDOWN_TIMEOUT: Final[float] = 5.0


# Socket event kinds accepted by Socket.add_listener()
EVENT_OPEN: Final[str] = "open"
EVENT_MESSAGE: Final[str] = "message"
EVENT_CLOSE: Final[str] = "close"
SOCKET_EVENT_KINDS: Final[frozenset[str]] = frozenset({EVENT_OPEN, EVENT_MESSAGE, EVENT_CLOSE})

