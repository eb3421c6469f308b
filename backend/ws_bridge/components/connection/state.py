"""
Connection record state machine.

Each registry entry is a ConnectionRecord with a tagged state instead of
independent flags, so combinations such as "listening without a socket"
cannot be represented.

    ABSENT --bind_socket--> CONNECTING --mark_open--> OPEN
       |                        |                      |
       +-----------mark_closed--+----------------------+--> CLOSED (terminal)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from shared.utils.exceptions import InvalidStateTransition

if TYPE_CHECKING:
    from ws_bridge.components.transport.base import Socket


class ConnectionState(str, Enum):
    """Lifecycle state of a connection record."""

    ABSENT = "absent"  # Handle issued, no socket yet
    CONNECTING = "connecting"  # Socket created, opening handshake pending
    OPEN = "open"  # Socket established
    CLOSED = "closed"  # Terminal


@dataclass(slots=True)
class ConnectionRecord:
    """
    Registry entry for one connection id.

    Mutated only by the registry while holding the connection's lock.

    Attributes:
        address: Target address the socket connects to.
        state: Current lifecycle state.
        socket: Socket owned by this record, None until first use.
        listening: True once delivery listeners are attached to the socket.
    """

    address: str
    state: ConnectionState = ConnectionState.ABSENT
    socket: Socket | None = None
    listening: bool = False

    @classmethod
    def closed(cls, address: str) -> ConnectionRecord:
        """Terminal record with no socket (used for registry reset)."""
        return cls(address=address, state=ConnectionState.CLOSED)

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    @property
    def has_socket(self) -> bool:
        return self.socket is not None

    def bind_socket(self, socket: Socket) -> None:
        """Attach the record's one and only socket."""
        if self.state is not ConnectionState.ABSENT or self.socket is not None:
            raise InvalidStateTransition(self.state.value, ConnectionState.CONNECTING.value)
        self.socket = socket
        self.state = ConnectionState.CONNECTING

    def mark_open(self) -> None:
        # A local close can win the race against the opening handshake
        if self.state is ConnectionState.CLOSED:
            return
        if self.state is not ConnectionState.CONNECTING:
            raise InvalidStateTransition(self.state.value, ConnectionState.OPEN.value)
        self.state = ConnectionState.OPEN

    def mark_listening(self) -> None:
        """Record that delivery listeners were attached."""
        if self.socket is None:
            raise InvalidStateTransition(self.state.value, "listening")
        if self.listening:
            raise InvalidStateTransition("listening", "listening")
        self.listening = True

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED
