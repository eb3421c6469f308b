"""
Event Value Objects for the WebSocket Bridge.

Immutable objects handed to the subscriber: the connection handle and the
two event kinds a connection can produce.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeAlias, Union

# Raw frame payload: str for text frames, bytes for binary frames
Payload: TypeAlias = Union[str, bytes]

# Accepted by send(): bytes-like payloads are copied to bytes when queued
OutboundPayload: TypeAlias = Union[str, bytes, bytearray, memoryview]


@dataclass(frozen=True, slots=True)
class ConnectionHandle:
    """
    Caller-visible reference to a registry entry.

    Attributes:
        connection_id: Opaque unique token (UUID4 string).
        address: Target WebSocket URL.
    """

    connection_id: str
    address: str


@dataclass(frozen=True, slots=True)
class DataEvent:
    """A frame received from the peer, passed through untouched."""

    payload: Payload

    @property
    def is_binary(self) -> bool:
        return isinstance(self.payload, bytes)


@dataclass(frozen=True, slots=True)
class ClosedEvent:
    """
    The connection is closed.

    Attributes:
        code: Close code reported by the transport (see WSCloseCode).
        reason: Close reason, may be empty.
    """

    code: int
    reason: str = ""


ConnectionEvent: TypeAlias = Union[DataEvent, ClosedEvent]

# Host-supplied capability that hands an event to the subscriber
Deliver: TypeAlias = Callable[[ConnectionHandle, ConnectionEvent], Awaitable[None]]
