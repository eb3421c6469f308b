"""
WebSocket transport over the `websockets` asyncio client.

ManagedSocket runs one task per connection:
1. connect (bounded by open_timeout)
2. emit open, start the outbox writer
3. read frames and emit message for each
4. emit close with the code/reason the connection ended with

Connect failures (DNS, refused, handshake rejected, timeout) are not raised;
they are reported as a close with ABNORMAL_CLOSURE and the error text.
"""

from __future__ import annotations

import asyncio

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from shared.config.logging import get_logger, mask_connection_id
from shared.config.settings import Settings, settings as default_settings
from ws_bridge.components.core.constants import WSCloseCode, WSConstants
from ws_bridge.components.events.types import Payload
from ws_bridge.components.transport.base import Socket

logger = get_logger(__name__)


class ManagedSocket(Socket):
    """
    Socket backed by a websockets ClientConnection.

    Usage:
        socket = ManagedSocket("wss://example.org/feed")
        socket.add_listener("message", on_message)
        socket.start()
        socket.send("subscribe")   # written once the connection opens
    """

    def __init__(
        self,
        address: str,
        *,
        open_timeout: float = default_settings.ws_open_timeout,
        close_timeout: float = default_settings.ws_close_timeout,
        ping_interval: float = default_settings.ws_ping_interval,
        max_size: int = default_settings.ws_max_message_size,
        label: str | None = None,
    ) -> None:
        super().__init__(address)
        self._open_timeout = open_timeout
        self._close_timeout = close_timeout
        self._ping_interval = ping_interval if ping_interval > 0 else None
        self._max_size = max_size
        self._label = mask_connection_id(label) if label else address

        self._outbox: asyncio.Queue[Payload] = asyncio.Queue()
        self._connection: ClientConnection | None = None
        self._task: asyncio.Task | None = None
        self._connect_task: asyncio.Task | None = None
        self._closer_task: asyncio.Task | None = None
        self._close_requested: tuple[int, str] | None = None

    @property
    def is_open(self) -> bool:
        return self._connection is not None and not self.is_closed

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name=f"socket:{self._label}")

    def send(self, payload: Payload) -> None:
        if self.is_closed or self._close_requested is not None:
            logger.debug("Discarding payload for closed socket", socket=self._label)
            return
        self._outbox.put_nowait(payload)

    def close(self, code: int = WSCloseCode.NORMAL, reason: str = "") -> None:
        if self.is_closed or self._close_requested is not None:
            return
        self._close_requested = (int(code), reason)

        if self._task is None:
            # Never started: nothing to tear down, only report the close
            self._task = asyncio.create_task(
                self._emit_close(WSCloseCode.ABNORMAL_CLOSURE, WSConstants.ABORTED_CONNECT_REASON),
                name=f"socket-close:{self._label}",
            )
        elif self._connection is not None:
            self._closer_task = asyncio.create_task(
                self._connection.close(int(code), reason),
                name=f"socket-close:{self._label}",
            )
        elif self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        # Otherwise _run has not reached the connect yet, or the handshake just
        # finished; either way it checks _close_requested before going on

    async def wait_closed(self) -> None:
        """Wait until the close has been reported and the socket task has ended."""
        await super().wait_closed()
        task = self._task
        if task is not None and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)

    async def _open(self) -> ClientConnection:
        return await connect(
            self.address,
            open_timeout=self._open_timeout,
            close_timeout=self._close_timeout,
            ping_interval=self._ping_interval,
            max_size=self._max_size,
        )

    async def _run(self) -> None:
        try:
            connection = await self._connect()
            if connection is not None:
                await self._serve(connection)
        except Exception as e:
            logger.error(
                "Socket task failed",
                socket=self._label,
                error=str(e),
                exc_info=True,
            )
            await self._emit_close(WSCloseCode.ABNORMAL_CLOSURE, str(e))

    async def _connect(self) -> ClientConnection | None:
        """Open the connection, or report why it could not be opened."""
        if self._close_requested is not None:
            await self._emit_close(WSCloseCode.ABNORMAL_CLOSURE, WSConstants.ABORTED_CONNECT_REASON)
            return None

        self._connect_task = asyncio.create_task(self._open(), name=f"socket-connect:{self._label}")
        try:
            connection = await self._connect_task
        except asyncio.CancelledError:
            if self._close_requested is None:
                raise
            logger.debug("Connect aborted by local close", socket=self._label)
            await self._emit_close(WSCloseCode.ABNORMAL_CLOSURE, WSConstants.ABORTED_CONNECT_REASON)
            return None
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.warning(
                "Websocket connect failed",
                socket=self._label,
                address=self.address,
                error=str(e) or type(e).__name__,
            )
            await self._emit_close(WSCloseCode.ABNORMAL_CLOSURE, str(e) or type(e).__name__)
            return None

        self._connection = connection
        return connection

    async def _serve(self, connection: ClientConnection) -> None:
        """Pump frames until the connection ends, then report the close."""
        if self._close_requested is not None:
            # close() raced the end of the opening handshake
            await connection.close(*self._close_requested)
        else:
            await self._emit_open()

        writer = asyncio.create_task(
            self._drain_outbox(connection),
            name=f"socket-writer:{self._label}",
        )
        try:
            async for message in connection:
                await self._emit_message(message)
        except ConnectionClosed as e:
            logger.debug("Connection closed with error", socket=self._label, error=str(e))
        finally:
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)

        await connection.wait_closed()
        if self._closer_task is not None:
            try:
                await self._closer_task
            except Exception as e:
                logger.warning("Closing handshake failed", socket=self._label, error=str(e))
        code = connection.close_code
        if code is None:
            code = WSCloseCode.ABNORMAL_CLOSURE
        await self._emit_close(code, connection.close_reason or "")

    async def _drain_outbox(self, connection: ClientConnection) -> None:
        """Write queued payloads in order: str as text frames, bytes as binary."""
        while True:
            payload = await self._outbox.get()
            try:
                await connection.send(payload)
            except ConnectionClosed:
                logger.debug("Dropping payload, connection closed", socket=self._label)
                return


class WebSocketTransport:
    """
    Transport creating ManagedSocket instances configured from settings.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or default_settings

    def create_socket(self, address: str, label: str | None = None) -> ManagedSocket:
        return ManagedSocket(
            address,
            open_timeout=self._settings.ws_open_timeout,
            close_timeout=self._settings.ws_close_timeout,
            ping_interval=self._settings.ws_ping_interval,
            max_size=self._settings.ws_max_message_size,
            label=label,
        )
