"""
Metrics Collector for the WebSocket Bridge.

Centralizes metrics collection for observability.
Thread-safe counter operations for concurrent access.
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class ConnectionMetrics:
    """Metrics for connection lifecycle."""
    handles_created: int = 0
    sockets_created: int = 0
    sockets_opened: int = 0
    sockets_closed: int = 0
    resets_detected: int = 0
    closed_by_user: int = 0


@dataclass
class SendMetrics:
    """Metrics for outbound writes."""
    accepted: int = 0
    rejected: int = 0


@dataclass
class EventMetrics:
    """Metrics for event delivery."""
    delivered: int = 0
    dropped: int = 0
    callback_errors: int = 0
    slow_callbacks: int = 0


class MetricsCollector:
    """
    Thread-safe metrics collector for the WebSocket Bridge.

    Provides atomic increment operations and snapshot retrieval.

    Usage:
        metrics = MetricsCollector()
        metrics.increment_connection("handles_created")
        stats = metrics.get_snapshot()
    """

    def __init__(self):
        self._sync_lock = threading.Lock()
        self._connection = ConnectionMetrics()
        self._send = SendMetrics()
        self._event = EventMetrics()

    # ==========================================================================
    # Increments
    # ==========================================================================

    def increment_connection(self, name: str, count: int = 1) -> None:
        """Increment a ConnectionMetrics counter by name."""
        self._increment(self._connection, name, count)

    def increment_send(self, name: str, count: int = 1) -> None:
        """Increment a SendMetrics counter by name."""
        self._increment(self._send, name, count)

    def increment_event(self, name: str, count: int = 1) -> None:
        """Increment an EventMetrics counter by name."""
        self._increment(self._event, name, count)

    def _increment(self, group: Any, name: str, count: int) -> None:
        if not hasattr(group, name):
            raise AttributeError(f"Unknown metric {type(group).__name__}.{name}")
        with self._sync_lock:
            setattr(group, name, getattr(group, name) + count)

    # ==========================================================================
    # Snapshot
    # ==========================================================================

    def get_snapshot(self) -> dict[str, dict[str, int]]:
        """Get a point-in-time copy of all counters."""
        with self._sync_lock:
            return {
                "connections": asdict(self._connection),
                "sends": asdict(self._send),
                "events": asdict(self._event),
            }

    def get_stats(self) -> dict[str, int]:
        """Flattened snapshot, e.g. {"connections_handles_created": 3, ...}."""
        snapshot = self.get_snapshot()
        return {
            f"{group}_{name}": value
            for group, counters in snapshot.items()
            for name, value in counters.items()
        }

    def reset(self) -> None:
        """Reset all counters (for testing)."""
        with self._sync_lock:
            self._connection = ConnectionMetrics()
            self._send = SendMetrics()
            self._event = EventMetrics()
