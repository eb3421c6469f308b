"""
Centralized exceptions for consistent error handling.

Usage:
    from shared.utils.exceptions import ConnectionClosedError

    try:
        await registry.send(handle, "hello")
    except ConnectionClosedError:
        ...  # connection is gone, open a new handle
"""

from typing import Any

from shared.config.logging import get_logger, mask_connection_id

logger = get_logger(__name__)


class WSBridgeError(Exception):
    """
    Base exception with automatic logging.

    All custom exceptions should inherit from this class
    to ensure consistent logging.
    """

    def __init__(
        self,
        detail: str,
        log_level: str = "warning",
        **log_context: Any,
    ):
        # Log the error with context
        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(detail, error=type(self).__name__, **log_context)

        self.detail = detail
        super().__init__(detail)


class ConnectionClosedError(WSBridgeError):
    """
    Write to a connection that is closed or was never registered.

    An expected outcome rather than a fault, so it is logged at info.

    Usage:
        raise ConnectionClosedError(handle.connection_id)
    """

    def __init__(self, connection_id: str, **log_context: Any):
        self.connection_id = connection_id
        super().__init__(
            f"Connection {mask_connection_id(connection_id)} is closed",
            log_level="info",
            connection_id=mask_connection_id(connection_id),
            **log_context,
        )


class InvalidStateTransition(WSBridgeError):
    """
    Illegal move in a connection record's state machine.

    Signals a bug in the registry, so it is logged at error.
    """

    def __init__(self, current: str, target: str, **log_context: Any):
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid connection state transition {current} -> {target}",
            log_level="error",
            current=current,
            target=target,
            **log_context,
        )
