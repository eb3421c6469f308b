"""
Lock Manager for the WebSocket Bridge.

Manages one asyncio lock per connection id so that send, listen and close on
the same connection run one at a time, while different connections never
contend.

LOCK ORDERING CONSTRAINTS:
==========================
The _meta_lock is NON-REENTRANT. Methods that acquire _meta_lock MUST NOT call
other methods that also acquire _meta_lock. Violating this causes deadlock.

Safe call hierarchy (outer -> inner is OK):
- get_connection_lock() -> _schedule_cleanup() (schedules task, doesn't call locked methods)
- cleanup_stale_locks() acquires _meta_lock then calls _cleanup_* (internal only)

PROHIBITED patterns (will deadlock):
- _deferred_cleanup() -> get_connection_lock()  # Would try to re-acquire _meta_lock

A connection lock is never held while acquiring another connection's lock.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from shared.config.logging import get_logger
from ws_bridge.components.core.constants import WSConstants

if TYPE_CHECKING:
    from collections.abc import Callable, Set

logger = get_logger(__name__)


class LockManager:
    """
    Manages asyncio locks keyed by connection id.

    Includes cleanup mechanism to prevent unbounded memory growth: locks that
    are not held can always be dropped and recreated on demand.
    """

    def __init__(
        self,
        max_cached_locks: int = WSConstants.MAX_CACHED_LOCKS,
        cleanup_threshold: int = WSConstants.LOCK_CLEANUP_THRESHOLD,
        can_evict: Callable[[str], bool] | None = None,
    ):
        """
        Initialize the lock manager.

        Args:
            max_cached_locks: Maximum number of locks to cache before cleanup.
            cleanup_threshold: Number of locks that triggers cleanup.
            can_evict: Predicate telling whether a connection's lock may be
                dropped by threshold cleanup. A lock can be released and not
                yet re-acquired by a woken waiter, so only connections whose
                state can no longer change should be evictable.
        """
        self._max_cached_locks = max_cached_locks
        self._cleanup_threshold = cleanup_threshold
        self._can_evict = can_evict or (lambda connection_id: True)

        # Lock storage
        self._connection_locks: dict[str, asyncio.Lock] = {}

        # Meta-lock for managing the lock dictionary itself
        self._meta_lock = asyncio.Lock()

        # Metrics
        self._locks_cleaned = 0

        # Track pending cleanup task to avoid multiple concurrent cleanups
        self._cleanup_task: asyncio.Task | None = None
        self._cleanup_pending = False

    @property
    def connection_lock_count(self) -> int:
        """Number of connection locks currently cached."""
        return len(self._connection_locks)

    @property
    def locks_cleaned_total(self) -> int:
        """Total number of locks cleaned since startup."""
        return self._locks_cleaned

    async def get_connection_lock(self, connection_id: str) -> asyncio.Lock:
        """
        Get or create the lock for a connection.

        Always acquires meta_lock so the dict is never read while a cleanup
        is mutating it. Cleanup is scheduled but not executed under meta_lock.

        Args:
            connection_id: The connection id to get a lock for.

        Returns:
            asyncio.Lock for the specified connection.
        """
        needs_cleanup = False

        async with self._meta_lock:
            if connection_id in self._connection_locks:
                return self._connection_locks[connection_id]

            if len(self._connection_locks) >= self._cleanup_threshold:
                needs_cleanup = True
            self._connection_locks[connection_id] = asyncio.Lock()
            result = self._connection_locks[connection_id]

        if needs_cleanup:
            self._schedule_cleanup()

        return result

    def _schedule_cleanup(self) -> None:
        """Schedule a deferred cleanup task if one isn't already pending."""
        if self._cleanup_pending:
            return

        if self._cleanup_task is not None:
            if not self._cleanup_task.done():
                return
            self._cleanup_task = None

        self._cleanup_pending = True
        self._cleanup_task = asyncio.create_task(
            self._deferred_cleanup_wrapper(),
            name="deferred_lock_cleanup",
        )

    async def _deferred_cleanup_wrapper(self) -> None:
        """Run _deferred_cleanup and always clear the pending flag."""
        try:
            await self._deferred_cleanup()
        finally:
            self._cleanup_pending = False
            self._cleanup_task = None

    async def await_pending_cleanup(
        self,
        timeout: float = WSConstants.LOCK_CLEANUP_SHUTDOWN_TIMEOUT,
    ) -> None:
        """
        Wait for any pending cleanup task to complete.

        Call this during shutdown so cleanup is not interrupted halfway.
        """
        task = self._cleanup_task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Cleanup task timed out during shutdown")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    async def _deferred_cleanup(self) -> None:
        """
        Run cleanup in background without blocking lock creation.

        Only removes unheld locks, and only while over the threshold.
        """
        async with self._meta_lock:
            cleaned = self._cleanup_unheld_locks(self._connection_locks)
            if cleaned > 0:
                self._locks_cleaned += cleaned
                logger.debug("Deferred lock cleanup completed", cleaned=cleaned)

    def _cleanup_unheld_locks(self, lock_dict: dict[str, asyncio.Lock]) -> int:
        """
        Conservative cleanup that only removes unheld locks.

        Removes locks down to the hysteresis target, oldest first (dict
        insertion order), skipping any lock that is currently held.

        Args:
            lock_dict: Dictionary of locks to clean.

        Returns:
            Number of locks cleaned.
        """
        if len(lock_dict) < self._cleanup_threshold:
            return 0

        target_count = int(self._cleanup_threshold * WSConstants.LOCK_CLEANUP_HYSTERESIS_RATIO)
        to_remove = len(lock_dict) - target_count

        if to_remove <= 0:
            return 0

        keys_to_remove = [
            key for key, lock in list(lock_dict.items())
            if not lock.locked() and self._can_evict(key)
        ][:to_remove]

        cleaned = 0
        for key in keys_to_remove:
            lock = lock_dict.get(key)
            if lock is not None and not lock.locked():
                del lock_dict[key]
                cleaned += 1

        return cleaned

    async def cleanup_stale_locks(self, live_connections: Set[str]) -> int:
        """
        Remove locks for connections that are no longer live.

        Closed connections never need their lock again unless an operation
        arrives for them, in which case a fresh lock is created.

        Args:
            live_connections: Connection ids whose records are not closed.

        Returns:
            Number of locks cleaned up.
        """
        async with self._meta_lock:
            cleaned = 0
            stale = [cid for cid in self._connection_locks if cid not in live_connections]
            for cid in stale:
                lock = self._connection_locks.get(cid)
                # Only remove if not currently held
                if lock and not lock.locked():
                    del self._connection_locks[cid]
                    cleaned += 1

            if cleaned > 0:
                self._locks_cleaned += cleaned
                logger.info("Cleaned up stale locks", total_cleaned=cleaned)

            return cleaned

    def get_stats(self) -> dict[str, int]:
        """Get lock manager statistics."""
        return {
            "connection_locks_count": len(self._connection_locks),
            "locks_cleaned_total": self._locks_cleaned,
            "max_cached_locks": self._max_cached_locks,
            "cleanup_threshold": self._cleanup_threshold,
        }
