"""
Tests for ConnectionRegistry.

Tests verify:
- Unique handle ids and lazy socket creation
- Closed/unknown connections reject sends
- One socket per connection under concurrent calls
- Idempotent listen and single close delivery
- Registry reset detection on listen
- Event ordering per connection, with backpressure instead of drops
- Shutdown delivers closes still in progress
"""

import asyncio
import uuid

import pytest

from shared.utils.exceptions import ConnectionClosedError
from ws_bridge import ConnectionRegistry
from ws_bridge.components.connection.state import ConnectionState
from ws_bridge.components.core.constants import WSCloseCode
from ws_bridge.components.events.types import ClosedEvent, ConnectionHandle, DataEvent

ADDRESS = "ws://example.test/feed"


# =============================================================================
# create_handle
# =============================================================================


class TestCreateHandle:
    """Tests for handle creation."""

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, registry):
        handles = [await registry.create_handle(ADDRESS) for _ in range(2000)]

        assert len({h.connection_id for h in handles}) == 2000

    @pytest.mark.asyncio
    async def test_id_is_uuid_string(self, registry):
        handle = await registry.create_handle(ADDRESS)

        assert str(uuid.UUID(handle.connection_id)) == handle.connection_id
        assert handle.address == ADDRESS

    @pytest.mark.asyncio
    async def test_does_not_connect(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)

        assert transport.sockets == []
        assert registry.get_state(handle) is ConnectionState.ABSENT


# =============================================================================
# send
# =============================================================================


class TestSend:
    """Tests for send and lazy connect."""

    @pytest.mark.asyncio
    async def test_unknown_handle_raises(self, registry, metrics):
        handle = ConnectionHandle(connection_id=str(uuid.uuid4()), address=ADDRESS)

        with pytest.raises(ConnectionClosedError) as exc_info:
            await registry.send(handle, "hello")

        assert exc_info.value.connection_id == handle.connection_id
        assert metrics.get_snapshot()["sends"]["rejected"] == 1

    @pytest.mark.asyncio
    async def test_unknown_handle_does_not_create_record(self, registry):
        handle = ConnectionHandle(connection_id=str(uuid.uuid4()), address=ADDRESS)

        with pytest.raises(ConnectionClosedError):
            await registry.send(handle, "hello")

        assert registry.get_state(handle) is None

    @pytest.mark.asyncio
    async def test_first_send_creates_and_starts_socket(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)

        await registry.send(handle, "hello")

        assert len(transport.sockets) == 1
        socket = transport.sockets[0]
        assert socket.address == ADDRESS
        assert socket.started is True
        assert socket.sent == ["hello"]
        assert registry.get_state(handle) is ConnectionState.CONNECTING

    @pytest.mark.asyncio
    async def test_open_moves_record_to_open(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)
        await registry.send(handle, "hello")

        await transport.sockets[0].open()

        assert registry.get_state(handle) is ConnectionState.OPEN

    @pytest.mark.asyncio
    async def test_later_sends_reuse_socket(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)

        await registry.send(handle, "one")
        await transport.sockets[0].open()
        await registry.send(handle, b"\x00\x01")

        assert len(transport.sockets) == 1
        assert transport.sockets[0].sent == ["one", b"\x00\x01"]

    @pytest.mark.asyncio
    async def test_concurrent_sends_create_one_socket(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)

        await asyncio.gather(*(registry.send(handle, f"m{i}") for i in range(20)))

        assert len(transport.sockets) == 1
        assert transport.sockets[0].sent == [f"m{i}" for i in range(20)]

    @pytest.mark.asyncio
    async def test_concurrent_send_and_listen_create_one_socket(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)

        await asyncio.gather(
            registry.send(handle, "hello"),
            registry.listen(handle),
            registry.send(handle, "again"),
        )

        assert len(transport.sockets) == 1
        assert transport.sockets[0].sent == ["hello", "again"]

    @pytest.mark.asyncio
    async def test_unknown_handle_creates_no_lock(self, registry):
        handle = ConnectionHandle(connection_id=str(uuid.uuid4()), address=ADDRESS)

        for _ in range(3):
            with pytest.raises(ConnectionClosedError):
                await registry.send(handle, "hello")

        assert registry.get_stats()["locks"]["connection_locks_count"] == 0

    @pytest.mark.asyncio
    async def test_bytes_like_payloads_are_copied(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)
        buffer = bytearray(b"abc")

        await registry.send(handle, buffer)
        await registry.send(handle, memoryview(b"xyz"))
        buffer[0] = ord("z")

        assert transport.sockets[0].sent == [b"abc", b"xyz"]
        assert all(type(p) is bytes for p in transport.sockets[0].sent)

    @pytest.mark.asyncio
    async def test_rejects_non_frame_payload(self, registry):
        handle = await registry.create_handle(ADDRESS)

        with pytest.raises(TypeError):
            await registry.send(handle, 42)

    @pytest.mark.asyncio
    async def test_send_after_remote_close_raises(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)
        await registry.send(handle, "hello")
        await transport.sockets[0].remote_close(WSCloseCode.GOING_AWAY, "bye")

        with pytest.raises(ConnectionClosedError):
            await registry.send(handle, "again")

        assert registry.get_state(handle) is ConnectionState.CLOSED


# =============================================================================
# listen
# =============================================================================


class TestListen:
    """Tests for listener attachment and event delivery."""

    @pytest.mark.asyncio
    async def test_listen_creates_socket_without_payload(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)

        await registry.listen(handle)

        assert len(transport.sockets) == 1
        assert transport.sockets[0].started is True
        assert transport.sockets[0].sent == []
        assert registry.records[handle.connection_id].listening is True

    @pytest.mark.asyncio
    async def test_listen_twice_attaches_listeners_once(self, registry, transport, recorder):
        handle = await registry.create_handle(ADDRESS)

        await registry.listen(handle)
        await registry.listen(handle)

        socket = transport.sockets[0]
        assert socket.listener_count("message") == 1
        # Record bookkeeping plus delivery
        assert socket.listener_count("close") == 2

        await socket.open()
        await socket.receive("tick")
        await registry.dispatcher.join()

        assert recorder.for_handle(handle) == [DataEvent(payload="tick")]

    @pytest.mark.asyncio
    async def test_listen_after_send_reuses_socket(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)

        await registry.send(handle, "hello")
        await registry.listen(handle)

        assert len(transport.sockets) == 1
        assert transport.sockets[0].listener_count("message") == 1

    @pytest.mark.asyncio
    async def test_remote_close_delivers_single_closed_event(self, registry, transport, recorder):
        handle = await registry.create_handle(ADDRESS)
        await registry.listen(handle)
        socket = transport.sockets[0]
        await socket.open()

        await socket.remote_close(WSCloseCode.SERVER_ERROR, "boom")
        await socket.remote_close(WSCloseCode.SERVER_ERROR, "boom")
        await registry.dispatcher.join()

        assert recorder.for_handle(handle) == [ClosedEvent(code=1011, reason="boom")]
        assert registry.get_state(handle) is ConnectionState.CLOSED
        with pytest.raises(ConnectionClosedError):
            await registry.send(handle, "late")

    @pytest.mark.asyncio
    async def test_events_arrive_in_transport_order(self, registry, transport, recorder):
        handle = await registry.create_handle(ADDRESS)
        await registry.listen(handle)
        socket = transport.sockets[0]
        await socket.open()

        await socket.receive("1")
        await socket.receive("2")
        await socket.receive(b"3")
        await socket.remote_close(WSCloseCode.NORMAL, "")
        await registry.dispatcher.join()

        assert recorder.for_handle(handle) == [
            DataEvent(payload="1"),
            DataEvent(payload="2"),
            DataEvent(payload=b"3"),
            ClosedEvent(code=1000, reason=""),
        ]

    @pytest.mark.asyncio
    async def test_connections_are_delivered_independently(self, registry, transport, recorder):
        first = await registry.create_handle(ADDRESS)
        second = await registry.create_handle(ADDRESS)
        await registry.listen(first)
        await registry.listen(second)
        sock_a = transport.sockets_for(first)[0]
        sock_b = transport.sockets_for(second)[0]

        await sock_a.receive("a1")
        await sock_b.receive("b1")
        await sock_a.receive("a2")
        await sock_b.remote_close(WSCloseCode.NORMAL)
        await registry.dispatcher.join()

        assert recorder.for_handle(first) == [DataEvent("a1"), DataEvent("a2")]
        assert recorder.for_handle(second) == [DataEvent("b1"), ClosedEvent(1000, "")]

    @pytest.mark.asyncio
    async def test_messages_before_listen_are_not_delivered(self, registry, transport, recorder):
        handle = await registry.create_handle(ADDRESS)
        await registry.send(handle, "hello")
        socket = transport.sockets[0]
        await socket.open()

        await socket.receive("early")
        await registry.listen(handle)
        await socket.receive("late")
        await registry.dispatcher.join()

        assert recorder.for_handle(handle) == [DataEvent(payload="late")]

    @pytest.mark.asyncio
    async def test_listen_on_closed_record_is_noop(self, registry, transport, recorder):
        handle = await registry.create_handle(ADDRESS)
        await registry.close(handle)

        await registry.listen(handle)
        await registry.dispatcher.join()

        assert transport.sockets == []
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_listen_while_close_is_being_emitted(self, registry, transport, recorder):
        """Listen that wins the lock while the socket is already reporting close."""
        handle = await registry.create_handle(ADDRESS)
        await registry.send(handle, "hello")
        socket = transport.sockets[0]

        lock = await registry._lock_manager.get_connection_lock(handle.connection_id)
        await lock.acquire()
        listen_task = asyncio.create_task(registry.listen(handle))
        for _ in range(3):
            await asyncio.sleep(0)
        close_task = asyncio.create_task(socket.remote_close(WSCloseCode.ABNORMAL_CLOSURE, "drop"))
        for _ in range(3):
            await asyncio.sleep(0)
        lock.release()

        await asyncio.gather(listen_task, close_task)
        await registry.dispatcher.join()

        assert recorder.for_handle(handle) == [ClosedEvent(code=1006, reason="drop")]
        assert registry.get_state(handle) is ConnectionState.CLOSED


# =============================================================================
# Registry reset detection
# =============================================================================


class TestResetDetection:
    """Tests for listen on ids the registry has no record of."""

    @pytest.mark.asyncio
    async def test_unknown_id_reports_1005_once(self, registry, transport, recorder, metrics):
        handle = ConnectionHandle(connection_id=str(uuid.uuid4()), address=ADDRESS)

        await registry.listen(handle)
        await registry.listen(handle)
        await registry.dispatcher.join()

        assert recorder.for_handle(handle) == [ClosedEvent(code=1005, reason="")]
        assert registry.get_state(handle) is ConnectionState.CLOSED
        assert transport.sockets == []
        assert metrics.get_snapshot()["connections"]["resets_detected"] == 1

    @pytest.mark.asyncio
    async def test_state_lost_after_restart(self, registry, transport, recorder, test_settings):
        """A handle from a previous registry is unknown to a fresh one."""
        old = ConnectionRegistry(recorder, transport=transport, settings=test_settings)
        handle = await old.create_handle(ADDRESS)
        await old.shutdown()

        await registry.listen(handle)
        await registry.dispatcher.join()

        assert recorder.for_handle(handle) == [ClosedEvent(code=1005, reason="")]
        with pytest.raises(ConnectionClosedError):
            await registry.send(handle, "hello")


# =============================================================================
# close
# =============================================================================


class TestClose:
    """Tests for close."""

    @pytest.mark.asyncio
    async def test_close_unknown_handle_succeeds(self, registry, recorder):
        handle = ConnectionHandle(connection_id=str(uuid.uuid4()), address=ADDRESS)

        await registry.close(handle)
        await registry.dispatcher.join()

        assert recorder.events == []
        assert registry.get_state(handle) is None

    @pytest.mark.asyncio
    async def test_close_without_socket(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)

        await registry.close(handle)

        assert transport.sockets == []
        assert registry.get_state(handle) is ConnectionState.CLOSED
        with pytest.raises(ConnectionClosedError):
            await registry.send(handle, "hello")

    @pytest.mark.asyncio
    async def test_close_listening_socket_delivers_one_event(self, registry, transport, recorder):
        handle = await registry.create_handle(ADDRESS)
        await registry.listen(handle)
        socket = transport.sockets[0]
        await socket.open()

        await registry.close(handle)
        await socket.wait_closed()
        await registry.close(handle)
        await registry.dispatcher.join()

        assert socket.close_calls[0] == (1000, "")
        assert recorder.for_handle(handle) == [ClosedEvent(code=1000, reason="")]
        assert registry.get_state(handle) is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_close_after_remote_close_adds_nothing(self, registry, transport, recorder):
        handle = await registry.create_handle(ADDRESS)
        await registry.listen(handle)
        socket = transport.sockets[0]
        await socket.remote_close(WSCloseCode.GOING_AWAY, "restart")

        await registry.close(handle)
        await registry.dispatcher.join()

        assert recorder.for_handle(handle) == [ClosedEvent(code=1001, reason="restart")]

    @pytest.mark.asyncio
    async def test_close_after_reset_adds_nothing(self, registry, recorder):
        handle = ConnectionHandle(connection_id=str(uuid.uuid4()), address=ADDRESS)
        await registry.listen(handle)

        await registry.close(handle)
        await registry.dispatcher.join()

        assert recorder.for_handle(handle) == [ClosedEvent(code=1005, reason="")]

    @pytest.mark.asyncio
    async def test_close_before_open_keeps_record_closed(self, registry, transport, metrics):
        handle = await registry.create_handle(ADDRESS)
        await registry.send(handle, "hello")
        socket = transport.sockets[0]

        await registry.close(handle)
        await socket.open()

        assert registry.get_state(handle) is ConnectionState.CLOSED
        assert metrics.get_snapshot()["connections"]["sockets_opened"] == 0

    @pytest.mark.asyncio
    async def test_close_unknown_handle_creates_no_lock(self, registry):
        handle = ConnectionHandle(connection_id=str(uuid.uuid4()), address=ADDRESS)

        await registry.close(handle)

        assert registry.get_stats()["locks"]["connection_locks_count"] == 0

    @pytest.mark.asyncio
    async def test_close_then_leaving_block_delivers_close(self, transport, recorder, test_settings):
        """The close still in its handshake at shutdown reaches the subscriber."""
        async with ConnectionRegistry(recorder, transport=transport, settings=test_settings) as registry:
            handle = await registry.create_handle(ADDRESS)
            await registry.listen(handle)
            socket = transport.sockets[0]
            await socket.open()
            await registry.close(handle)

        assert recorder.for_handle(handle) == [ClosedEvent(code=1000, reason="")]
        assert socket.close_calls == [(1000, "")]
        assert socket.is_closed


# =============================================================================
# Delivery faults
# =============================================================================


class TestDeliveryFaults:
    """Slow or failing subscribers must not break the registry."""

    @pytest.mark.asyncio
    async def test_failing_deliver_does_not_stop_delivery(self, transport, test_settings, metrics):
        received = []

        async def deliver(handle, event):
            if not received:
                received.append(None)
                raise RuntimeError("subscriber bug")
            received.append(event)

        async with ConnectionRegistry(deliver, transport=transport, settings=test_settings, metrics=metrics) as registry:
            handle = await registry.create_handle(ADDRESS)
            await registry.listen(handle)
            socket = transport.sockets[0]
            await socket.receive("first")
            await socket.receive("second")
            await registry.dispatcher.join()

        assert received[1:] == [DataEvent("second"), ClosedEvent(code=1001, reason="")]
        assert metrics.get_snapshot()["events"]["callback_errors"] == 1

    @pytest.mark.asyncio
    async def test_slow_subscriber_receives_every_frame(self, transport, test_settings, metrics):
        """A full event queue pauses the socket instead of dropping frames."""
        settings = test_settings.model_copy(update={"ws_event_queue_size": 2})
        gate = asyncio.Event()
        received = []

        async def deliver(handle, event):
            await gate.wait()
            received.append(event)

        async with ConnectionRegistry(deliver, transport=transport, settings=settings, metrics=metrics) as registry:
            handle = await registry.create_handle(ADDRESS)
            await registry.listen(handle)
            socket = transport.sockets[0]
            await socket.open()

            async def feed():
                for i in range(5):
                    await socket.receive(str(i))

            feeder = asyncio.create_task(feed())
            for _ in range(5):
                await asyncio.sleep(0)
            assert not feeder.done()

            gate.set()
            await asyncio.wait_for(feeder, timeout=1.0)
            await registry.dispatcher.join()

        assert received == [DataEvent(str(i)) for i in range(5)] + [ClosedEvent(code=1001, reason="")]
        assert metrics.get_snapshot()["events"]["dropped"] == 0


# =============================================================================
# Stats and shutdown
# =============================================================================


class TestStatsAndShutdown:
    """Tests for get_stats and shutdown."""

    @pytest.mark.asyncio
    async def test_stats_count_records_by_state(self, registry, transport):
        idle = await registry.create_handle(ADDRESS)
        connecting = await registry.create_handle(ADDRESS)
        opened = await registry.create_handle(ADDRESS)
        closed = await registry.create_handle(ADDRESS)
        await registry.send(connecting, "x")
        await registry.listen(opened)
        await transport.sockets_for(opened)[0].open()
        await registry.close(closed)

        stats = registry.get_stats()

        assert stats["records_total"] == 4
        assert stats["records_by_state"] == {
            "absent": 1,
            "connecting": 1,
            "open": 1,
            "closed": 1,
        }
        assert stats["listening"] == 1
        assert stats["metrics"]["connections_handles_created"] == 4
        assert stats["metrics"]["connections_sockets_created"] == 2
        assert registry.get_state(idle) is ConnectionState.ABSENT

    @pytest.mark.asyncio
    async def test_shutdown_closes_sockets_going_away(self, registry, transport, recorder):
        handle = await registry.create_handle(ADDRESS)
        await registry.listen(handle)
        socket = transport.sockets[0]
        await socket.open()

        await registry.shutdown()

        assert socket.close_calls == [(1001, "")]
        assert recorder.for_handle(handle) == [ClosedEvent(code=1001, reason="")]
        assert registry.is_shutdown is True

    @pytest.mark.asyncio
    async def test_no_sockets_after_shutdown(self, registry, transport, recorder):
        await registry.shutdown()
        handle = await registry.create_handle(ADDRESS)

        with pytest.raises(ConnectionClosedError):
            await registry.send(handle, "hello")
        await registry.listen(handle)

        assert transport.sockets == []
        assert registry.get_state(handle) is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, registry, transport):
        handle = await registry.create_handle(ADDRESS)
        await registry.send(handle, "hello")

        await registry.shutdown()
        await registry.shutdown()

        assert transport.sockets[0].close_calls == [(1001, "")]
