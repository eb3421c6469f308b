"""
Pytest configuration and fixtures for the bridge tests.
"""

import asyncio

import pytest
import pytest_asyncio

from shared.config.settings import Settings
from ws_bridge import ConnectionRegistry
from ws_bridge.components.core.constants import WSCloseCode
from ws_bridge.components.events.types import ConnectionEvent, ConnectionHandle
from ws_bridge.components.metrics.collector import MetricsCollector
from ws_bridge.components.transport.base import Socket


# =============================================================================
# Fake transport
# =============================================================================


class FakeSocket(Socket):
    """
    In-memory socket. Tests drive it with open(), receive() and remote_close().
    """

    def __init__(self, address: str, label: str | None = None):
        super().__init__(address)
        self.label = label
        self.started = False
        self.sent: list = []
        self.close_calls: list[tuple[int, str]] = []
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        self.started = True

    def send(self, payload) -> None:
        self.sent.append(payload)

    def close(self, code: int = WSCloseCode.NORMAL, reason: str = "") -> None:
        self.close_calls.append((int(code), reason))
        if len(self.close_calls) == 1 and not self.is_closed:
            # Like a real transport, the close is reported later, not inline
            self._tasks.append(asyncio.create_task(self._emit_close(int(code), reason)))

    async def open(self) -> None:
        await self._emit_open()

    async def receive(self, payload) -> None:
        await self._emit_message(payload)

    async def remote_close(self, code: int, reason: str = "") -> None:
        await self._emit_close(code, reason)


class FakeTransport:
    """Records every socket the registry creates."""

    def __init__(self):
        self.sockets: list[FakeSocket] = []

    def create_socket(self, address: str, label: str | None = None) -> FakeSocket:
        socket = FakeSocket(address, label=label)
        self.sockets.append(socket)
        return socket

    def sockets_for(self, handle: ConnectionHandle) -> list[FakeSocket]:
        return [s for s in self.sockets if s.label == handle.connection_id]


class EventRecorder:
    """Deliver coroutine that records (handle, event) pairs."""

    def __init__(self):
        self.events: list[tuple[ConnectionHandle, ConnectionEvent]] = []

    async def __call__(self, handle: ConnectionHandle, event: ConnectionEvent) -> None:
        self.events.append((handle, event))

    def for_handle(self, handle: ConnectionHandle) -> list[ConnectionEvent]:
        return [event for h, event in self.events if h == handle]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_settings():
    """Settings with short timeouts."""
    return Settings(
        environment="test",
        debug=False,
        ws_open_timeout=2.0,
        ws_close_timeout=1.0,
        ws_ping_interval=0,
        ws_event_queue_size=100,
        ws_event_slow_callback_threshold=1.0,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest_asyncio.fixture
async def registry(transport, recorder, test_settings, metrics):
    """Registry over the fake transport, shut down after the test."""
    registry = ConnectionRegistry(
        recorder,
        transport=transport,
        settings=test_settings,
        metrics=metrics,
    )
    yield registry
    await registry.shutdown()
