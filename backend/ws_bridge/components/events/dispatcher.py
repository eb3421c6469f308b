"""
Event Dispatcher.

Delivers connection events to the subscriber through the host-supplied
deliver coroutine. One bounded FIFO queue and one worker task per connection
keep events of a connection in emission order while connections never wait
on each other.

Nothing received is dropped while the registry runs. When a connection's
queue is full, dispatch() waits for room; since sockets await their listeners,
this pauses that socket's read loop and TCP pushes back on the peer.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from shared.config.logging import get_logger, mask_connection_id
from shared.config.settings import settings
from shared.infrastructure.correlation import bind_connection_id
from ws_bridge.components.core.constants import WSConstants
from ws_bridge.components.events.types import ClosedEvent

if TYPE_CHECKING:
    from ws_bridge.components.events.types import ConnectionEvent, ConnectionHandle, Deliver
    from ws_bridge.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)


class EventDispatcher:
    """
    Per-connection event queues drained by worker tasks.

    - Workers are started lazily on the first event of a connection.
    - A worker exits after delivering the connection's ClosedEvent.
    - Deliver calls are never cancelled. Slow ones and exceptions are
      logged and counted, never raised.
    - Events are only dropped once the dispatcher is shut down.
    """

    def __init__(
        self,
        deliver: Deliver,
        metrics: MetricsCollector,
        queue_size: int = settings.ws_event_queue_size,
        slow_callback_threshold: float = settings.ws_event_slow_callback_threshold,
    ) -> None:
        """
        Args:
            deliver: Coroutine function called as deliver(handle, event).
            metrics: Collector for delivery counters.
            queue_size: Max pending events per connection before dispatch waits.
            slow_callback_threshold: Deliver calls taking longer than this
                many seconds are logged as slow.
        """
        self._deliver = deliver
        self._metrics = metrics
        self._queue_size = queue_size
        self._slow_callback_threshold = slow_callback_threshold
        self._queues: dict[str, asyncio.Queue[ConnectionEvent]] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._dropped = 0
        self._shutdown = False

    @property
    def active_workers(self) -> int:
        """Number of connections with a running delivery worker."""
        return sum(1 for task in self._workers.values() if not task.done())

    async def dispatch(self, handle: ConnectionHandle, event: ConnectionEvent) -> bool:
        """
        Queue an event for delivery, waiting while the connection's queue is full.

        Returns:
            True if the event was queued, False if the dispatcher is shut down.
        """
        if self._shutdown:
            self._record_drop(handle, event, reason="dispatcher_shutdown")
            return False

        connection_id = handle.connection_id
        queue = self._queues.get(connection_id)
        if queue is None:
            queue = asyncio.Queue(maxsize=self._queue_size)
            self._queues[connection_id] = queue

        worker = self._workers.get(connection_id)
        if worker is None or worker.done():
            self._workers[connection_id] = asyncio.create_task(
                self._run_worker(handle, queue),
                name=f"deliver:{mask_connection_id(connection_id)}",
            )

        if queue.full():
            logger.debug(
                "Event queue full, waiting for subscriber",
                connection_id=mask_connection_id(connection_id),
                queue_size=self._queue_size,
            )
        await queue.put(event)
        return True

    async def _run_worker(self, handle: ConnectionHandle, queue: asyncio.Queue[ConnectionEvent]) -> None:
        with bind_connection_id(handle.connection_id):
            try:
                while True:
                    event = await queue.get()
                    try:
                        await self._deliver_one(handle, event)
                    finally:
                        queue.task_done()
                    if isinstance(event, ClosedEvent):
                        break
            finally:
                self._forget(handle.connection_id, queue)

    async def _deliver_one(self, handle: ConnectionHandle, event: ConnectionEvent) -> None:
        start = time.monotonic()
        try:
            await self._deliver(handle, event)
            self._metrics.increment_event("delivered")
        except Exception as e:
            self._metrics.increment_event("callback_errors")
            logger.error(
                "Deliver callback failed",
                event=type(event).__name__,
                error=str(e),
                exc_info=True,
            )

        elapsed = time.monotonic() - start
        if elapsed > self._slow_callback_threshold:
            self._metrics.increment_event("slow_callbacks")
            logger.warning(
                "Slow deliver callback",
                event=type(event).__name__,
                elapsed_seconds=round(elapsed, 3),
                threshold_seconds=self._slow_callback_threshold,
            )

    def _forget(self, connection_id: str, queue: asyncio.Queue[ConnectionEvent]) -> None:
        """Drop bookkeeping for a finished worker, unless a new queue replaced it."""
        if self._queues.get(connection_id) is queue and queue.empty():
            del self._queues[connection_id]
        task = self._workers.get(connection_id)
        if task is asyncio.current_task():
            del self._workers[connection_id]

    def _record_drop(self, handle: ConnectionHandle, event: ConnectionEvent, reason: str) -> None:
        self._dropped += 1
        self._metrics.increment_event("dropped")
        # Log the first drop and then every DROP_LOG_INTERVAL-th
        if self._dropped == 1 or self._dropped % WSConstants.DROP_LOG_INTERVAL == 0:
            logger.warning(
                "Event dropped",
                connection_id=mask_connection_id(handle.connection_id),
                event=type(event).__name__,
                reason=reason,
                dropped_total=self._dropped,
            )

    async def join(self) -> None:
        """Wait until every queued event has been handed to the subscriber."""
        while True:
            queues = list(self._queues.values())
            await asyncio.gather(*(q.join() for q in queues))
            # Deliveries may have queued more events or opened new queues meanwhile
            if all(q.empty() and any(q is seen for seen in queues) for q in self._queues.values()):
                return

    async def shutdown(self, timeout: float = WSConstants.DISPATCHER_SHUTDOWN_TIMEOUT) -> None:
        """
        Stop accepting events, drain what is queued, then cancel workers.

        Events still queued after the timeout are discarded, which also
        releases any dispatch() waiting for room.
        """
        self._shutdown = True
        try:
            await asyncio.wait_for(self.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Event queues did not drain before shutdown",
                timeout_seconds=timeout,
                pending_connections=len(self._queues),
            )

        workers = list(self._workers.items())
        for _, task in workers:
            task.cancel()
        if workers:
            await asyncio.gather(*(task for _, task in workers), return_exceptions=True)

        for connection_id, queue in list(self._queues.items()):
            handle_id = mask_connection_id(connection_id)
            while not queue.empty():
                event = queue.get_nowait()
                queue.task_done()
                self._dropped += 1
                self._metrics.increment_event("dropped")
                logger.warning(
                    "Event discarded at shutdown",
                    connection_id=handle_id,
                    event=type(event).__name__,
                )
        self._workers.clear()
        self._queues.clear()

    def get_stats(self) -> dict[str, int]:
        """Get dispatcher statistics."""
        return {
            "active_workers": self.active_workers,
            "pending_events": sum(q.qsize() for q in self._queues.values()),
            "dropped_total": self._dropped,
        }
