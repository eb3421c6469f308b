"""
Socket primitive consumed by the registry.

A Socket connects to one address, accepts outbound payloads, and emits
`open`, `message` and `close` to listeners attached with add_listener().
Listeners are coroutine functions awaited one after another in emission
order, so every message listener has run before the close listeners do.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from shared.config.logging import get_logger
from ws_bridge.components.core.constants import (
    EVENT_CLOSE,
    EVENT_MESSAGE,
    EVENT_OPEN,
    SOCKET_EVENT_KINDS,
    WSCloseCode,
)
from ws_bridge.components.events.types import Payload

logger = get_logger(__name__)

Listener = Callable[..., Awaitable[None]]


class Socket(ABC):
    """
    Base class for sockets.

    Subclasses implement start/send/close and report transport activity with
    _emit_open(), _emit_message() and _emit_close(). Close is reported at
    most once per socket.
    """

    def __init__(self, address: str) -> None:
        self.address = address
        self._listeners: dict[str, list[Listener]] = {kind: [] for kind in SOCKET_EVENT_KINDS}
        self._close_emitted = False
        self._closed = asyncio.Event()
        self.close_code: int | None = None
        self.close_reason: str | None = None

    @property
    def is_closed(self) -> bool:
        """True once the close event has been emitted."""
        return self._close_emitted

    def add_listener(self, kind: str, listener: Listener) -> None:
        """
        Subscribe to a socket event.

        Args:
            kind: "open" (no args), "message" (payload) or "close" (code, reason).
            listener: Coroutine function to await on each event.
        """
        if kind not in SOCKET_EVENT_KINDS:
            raise ValueError(f"Unknown socket event kind: {kind!r}")
        self._listeners[kind].append(listener)

    def listener_count(self, kind: str) -> int:
        return len(self._listeners.get(kind, ()))

    async def _emit(self, kind: str, *args: Any) -> None:
        for listener in list(self._listeners[kind]):
            try:
                await listener(*args)
            except Exception as e:
                logger.error(
                    "Socket listener failed",
                    kind=kind,
                    address=self.address,
                    error=str(e),
                    exc_info=True,
                )

    async def _emit_open(self) -> None:
        await self._emit(EVENT_OPEN)

    async def _emit_message(self, payload: Payload) -> None:
        await self._emit(EVENT_MESSAGE, payload)

    async def _emit_close(self, code: int, reason: str = "") -> None:
        if self._close_emitted:
            return
        self._close_emitted = True
        self.close_code = code
        self.close_reason = reason
        try:
            await self._emit(EVENT_CLOSE, code, reason)
        finally:
            self._closed.set()

    async def wait_closed(self) -> None:
        """Wait until the close event has been emitted and handled."""
        await self._closed.wait()

    @abstractmethod
    def start(self) -> None:
        """Begin connecting. Returns immediately."""

    @abstractmethod
    def send(self, payload: Payload) -> None:
        """
        Queue a payload for writing. Returns immediately.

        Payloads queued before the connection opens are written in order
        once it opens. Payloads sent after close are discarded.
        """

    @abstractmethod
    def close(self, code: int = WSCloseCode.NORMAL, reason: str = "") -> None:
        """Request the connection to close. Returns immediately."""


class Transport(Protocol):
    """Factory for sockets."""

    def create_socket(self, address: str, label: str | None = None) -> Socket:
        """
        Build an unstarted socket for the given address.

        Args:
            address: WebSocket URL to connect to.
            label: Optional name used in log lines and task names.
        """
        ...
