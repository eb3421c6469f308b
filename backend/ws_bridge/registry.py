"""
WebSocket Connection Registry.

Tracks outbound WebSocket connections by handle, opens the socket lazily on
the first send or listen, and pushes data/close events to the subscriber.

Composes:
- LockManager: one lock per connection id, so check-then-create-socket in
  send/listen and the close bookkeeping never interleave for one connection
- EventDispatcher: per-connection FIFO delivery through the injected deliver
- Transport: socket factory (websockets client by default)
- MetricsCollector: lifecycle counters for get_stats()

Records are never removed. A closed record stays as a terminal marker so later
calls on that id resolve to "closed" rather than "unknown".
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from functools import partial
from types import MappingProxyType
from typing import TYPE_CHECKING, AsyncIterator

from shared.config.logging import get_logger, log_lifecycle
from shared.config.settings import Settings, settings as default_settings
from shared.infrastructure.correlation import bind_connection_id
from shared.utils.exceptions import ConnectionClosedError
from ws_bridge.components.connection.locks import LockManager
from ws_bridge.components.connection.state import ConnectionRecord, ConnectionState
from ws_bridge.components.core.constants import (
    EVENT_CLOSE,
    EVENT_MESSAGE,
    EVENT_OPEN,
    WSCloseCode,
    WSConstants,
)
from ws_bridge.components.events.dispatcher import EventDispatcher
from ws_bridge.components.events.types import (
    ClosedEvent,
    ConnectionHandle,
    DataEvent,
    OutboundPayload,
    Payload,
)
from ws_bridge.components.metrics.collector import MetricsCollector
from ws_bridge.components.transport.websocket import WebSocketTransport

if TYPE_CHECKING:
    from ws_bridge.components.events.types import Deliver
    from ws_bridge.components.transport.base import Socket, Transport

logger = get_logger(__name__)


class ConnectionRegistry:
    """
    Owned table of connection id -> ConnectionRecord.

    Construct one per application (or per test) and pass it to whoever needs
    it; there is no module-level instance.

    Usage:
        async def deliver(handle, event):
            ...

        async with ConnectionRegistry(deliver) as registry:
            handle = await registry.create_handle("wss://example.org/feed")
            await registry.listen(handle)
            await registry.send(handle, "subscribe")
    """

    def __init__(
        self,
        deliver: Deliver,
        transport: Transport | None = None,
        settings: Settings | None = None,
        lock_manager: LockManager | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Args:
            deliver: Coroutine function receiving (handle, event) for every
                DataEvent and ClosedEvent.
            transport: Socket factory. Defaults to the websockets transport.
            settings: Settings override. Defaults to the environment settings.
            lock_manager: Lock manager override (tests).
            metrics: Metrics collector override (tests).
        """
        self._settings = settings or default_settings
        self._transport = transport or WebSocketTransport(self._settings)
        self._metrics = metrics or MetricsCollector()
        self._lock_manager = lock_manager or LockManager(can_evict=self._is_terminal)
        self._dispatcher = EventDispatcher(
            deliver,
            self._metrics,
            queue_size=self._settings.ws_event_queue_size,
            slow_callback_threshold=self._settings.ws_event_slow_callback_threshold,
        )
        self._records: dict[str, ConnectionRecord] = {}
        self._shutdown = False

    async def __aenter__(self) -> ConnectionRegistry:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    # =========================================================================
    # Public properties
    # =========================================================================

    @property
    def records(self) -> MappingProxyType[str, ConnectionRecord]:
        """Read-only view of all records."""
        return MappingProxyType(self._records)

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    # =========================================================================
    # Commands
    # =========================================================================

    async def create_handle(self, address: str) -> ConnectionHandle:
        """
        Register a new connection to `address` without connecting.

        Never fails. The returned handle's id is unique for the lifetime of
        the process.
        """
        connection_id = self._new_connection_id()
        self._records[connection_id] = ConnectionRecord(address=address)
        self._metrics.increment_connection("handles_created")
        log_lifecycle("HANDLE_CREATED", connection_id, address)
        return ConnectionHandle(connection_id=connection_id, address=address)

    async def send(self, handle: ConnectionHandle, payload: OutboundPayload) -> None:
        """
        Write a text (str) or binary (bytes, bytearray, memoryview) frame.

        Opens the socket on first use and returns without waiting for the
        connection; the payload is written once it opens. Success means the
        payload was queued, not that the peer received it. Bytes-like payloads
        are copied, so the caller may reuse its buffer right away.

        Raises:
            ConnectionClosedError: the id is unknown or the connection is closed.
            TypeError: payload is neither text nor bytes-like.
        """
        if isinstance(payload, (bytearray, memoryview)):
            payload = bytes(payload)
        elif not isinstance(payload, (str, bytes)):
            raise TypeError(
                f"payload must be str, bytes, bytearray or memoryview, not {type(payload).__name__}"
            )

        with bind_connection_id(handle.connection_id):
            # Records are never removed, so an unknown id can be rejected
            # without creating a lock for it
            if handle.connection_id not in self._records:
                self._metrics.increment_send("rejected")
                raise ConnectionClosedError(handle.connection_id, reason="unknown")

            async with self._locked(handle.connection_id):
                record = self._records[handle.connection_id]

                if not record.has_socket and self._shutdown:
                    record.mark_closed()

                if record.is_closed:
                    self._metrics.increment_send("rejected")
                    raise ConnectionClosedError(handle.connection_id, reason="closed")

                if record.socket is None:
                    socket = self._open_socket(handle, record)
                    socket.send(payload)
                    socket.start()
                else:
                    record.socket.send(payload)

                self._metrics.increment_send("accepted")

    async def listen(self, handle: ConnectionHandle) -> None:
        """
        Deliver this connection's events to the subscriber from now on.

        Idempotent. Opens the socket if nothing did yet. For an id the
        registry has no record of (state lost, e.g. after a restart), a closed
        record is created and ClosedEvent(1005, "") is delivered once.
        """
        with bind_connection_id(handle.connection_id):
            async with self._locked(handle.connection_id):
                record = self._records.get(handle.connection_id)

                if record is None:
                    self._records[handle.connection_id] = ConnectionRecord.closed(handle.address)
                    self._metrics.increment_connection("resets_detected")
                    log_lifecycle("RESET_DETECTED", handle.connection_id, handle.address)
                    await self._dispatcher.dispatch(
                        handle,
                        ClosedEvent(
                            code=WSConstants.RESET_CLOSE_CODE,
                            reason=WSConstants.RESET_CLOSE_REASON,
                        ),
                    )
                    return

                if record.is_closed:
                    return

                if record.socket is None:
                    if self._shutdown:
                        record.mark_closed()
                        return
                    socket = self._open_socket(handle, record)
                    await self._attach_listeners(handle, record)
                    socket.start()
                elif not record.listening:
                    await self._attach_listeners(handle, record)

    async def close(self, handle: ConnectionHandle) -> None:
        """
        Close the connection. Never fails.

        Closing an unknown, socket-less or already closed connection is a
        successful no-op. A listening subscriber receives the ClosedEvent the
        transport reports for the close.
        """
        with bind_connection_id(handle.connection_id):
            log_lifecycle("CLOSED_BY_USER", handle.connection_id, handle.address)
            if handle.connection_id not in self._records:
                return

            async with self._locked(handle.connection_id):
                record = self._records[handle.connection_id]
                if not record.is_closed:
                    self._metrics.increment_connection("closed_by_user")
                if record.socket is not None:
                    record.socket.close(WSCloseCode.NORMAL)
                record.mark_closed()

    # =========================================================================
    # Inspection
    # =========================================================================

    def get_state(self, handle: ConnectionHandle) -> ConnectionState | None:
        """Current state of the handle's record, None if there is none."""
        record = self._records.get(handle.connection_id)
        return record.state if record is not None else None

    def get_stats(self) -> dict[str, object]:
        """Aggregate record counts and component statistics."""
        by_state = {state.value: 0 for state in ConnectionState}
        listening = 0
        for record in self._records.values():
            by_state[record.state.value] += 1
            if record.listening:
                listening += 1

        return {
            "records_total": len(self._records),
            "records_by_state": by_state,
            "listening": listening,
            "shutdown": self._shutdown,
            "metrics": self._metrics.get_stats(),
            "locks": self._lock_manager.get_stats(),
            "dispatcher": self._dispatcher.get_stats(),
        }

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> None:
        """
        Close every live socket with GOING_AWAY and flush pending events.

        Idempotent. Handles created afterwards can never open a socket.
        """
        if self._shutdown:
            return
        self._shutdown = True
        logger.info("Registry shutdown started", records=len(self._records))

        closing: list[Socket] = []
        for connection_id in list(self._records):
            async with self._locked(connection_id):
                record = self._records[connection_id]
                socket = record.socket
                if not record.is_closed and socket is not None:
                    socket.close(WSCloseCode.GOING_AWAY)
                # Sockets closed earlier may still be finishing their handshake;
                # their close must reach the subscriber before delivery stops
                if socket is not None and not socket.is_closed:
                    closing.append(socket)
                record.mark_closed()

        if closing:
            timeout = self._settings.ws_close_timeout + self._settings.ws_open_timeout
            waiters = [asyncio.create_task(socket.wait_closed()) for socket in closing]
            _, pending = await asyncio.wait(waiters, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("Sockets did not close before shutdown timeout", pending=len(pending))

        await self._dispatcher.shutdown()
        await self._lock_manager.cleanup_stale_locks(set())
        await self._lock_manager.await_pending_cleanup()
        logger.info("Registry shutdown complete", sockets_closed=len(closing))

    # =========================================================================
    # Internals
    # =========================================================================

    def _new_connection_id(self) -> str:
        connection_id = str(uuid.uuid4())
        while connection_id in self._records:
            connection_id = str(uuid.uuid4())
        return connection_id

    def _is_terminal(self, connection_id: str) -> bool:
        """Closed records never change again, so their locks are evictable."""
        record = self._records.get(connection_id)
        return record is not None and record.is_closed

    @asynccontextmanager
    async def _locked(self, connection_id: str) -> AsyncIterator[None]:
        lock = await self._lock_manager.get_connection_lock(connection_id)
        async with lock:
            yield

    def _open_socket(self, handle: ConnectionHandle, record: ConnectionRecord) -> Socket:
        """Create the record's socket with the open/close bookkeeping listeners. Caller holds the lock."""
        socket = self._transport.create_socket(handle.address, label=handle.connection_id)
        record.bind_socket(socket)
        socket.add_listener(EVENT_OPEN, partial(self._on_socket_open, handle))
        socket.add_listener(EVENT_CLOSE, partial(self._on_socket_closed, handle))
        self._metrics.increment_connection("sockets_created")
        log_lifecycle("SOCKET_CREATED", handle.connection_id, handle.address)
        return socket

    async def _attach_listeners(self, handle: ConnectionHandle, record: ConnectionRecord) -> None:
        """Wire delivery of message and close events. Caller holds the lock."""
        socket = record.socket
        record.mark_listening()
        socket.add_listener(EVENT_MESSAGE, partial(self._deliver_data, handle))
        socket.add_listener(EVENT_CLOSE, partial(self._deliver_closed, handle))

        # The socket may be emitting its close right now, waiting on our lock
        # in _on_socket_closed; listeners added now would miss that emission.
        if socket.is_closed:
            await self._dispatcher.dispatch(
                handle,
                ClosedEvent(code=socket.close_code, reason=socket.close_reason or ""),
            )

    async def _on_socket_open(self, handle: ConnectionHandle) -> None:
        async with self._locked(handle.connection_id):
            record = self._records.get(handle.connection_id)
            if record is None or record.is_closed:
                # A local close won the race against the opening handshake
                return
            record.mark_open()
        self._metrics.increment_connection("sockets_opened")
        log_lifecycle("SOCKET_OPENED", handle.connection_id, handle.address)

    async def _on_socket_closed(self, handle: ConnectionHandle, code: int, reason: str) -> None:
        async with self._locked(handle.connection_id):
            record = self._records.get(handle.connection_id)
            if record is not None:
                record.mark_closed()
        self._metrics.increment_connection("sockets_closed")
        log_lifecycle("SOCKET_CLOSED", handle.connection_id, handle.address, code=code, reason=reason)

    async def _deliver_data(self, handle: ConnectionHandle, payload: Payload) -> None:
        await self._dispatcher.dispatch(handle, DataEvent(payload=payload))

    async def _deliver_closed(self, handle: ConnectionHandle, code: int, reason: str) -> None:
        await self._dispatcher.dispatch(handle, ClosedEvent(code=code, reason=reason))
