"""Per-window mutual exclusion.

Scheduler firings, sweep passes and enrollment changes all follow a
read-compute-write cycle against a window's state. ``WindowLocks`` makes
those cycles mutually exclusive per window while letting different
windows proceed concurrently.

Example:
    >>> locks = WindowLocks()
    >>> async with locks.hold(window_id):
    ...     window = await get_window(session, window_id)
    ...     ...
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

import structlog

logger = structlog.get_logger(__name__)


class WindowLocks:
    """Registry of asyncio locks keyed by window id.

    Locks are created on first use and dropped once nobody holds or waits
    for them, so the registry only grows with the number of windows being
    worked on at the same time.
    """

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._users: dict[UUID, int] = {}

    @asynccontextmanager
    async def hold(self, window_id: UUID) -> AsyncIterator[None]:
        """Hold the lock for ``window_id`` for the duration of the block."""
        lock = self._locks.get(window_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[window_id] = lock
        self._users[window_id] = self._users.get(window_id, 0) + 1

        if lock.locked():
            logger.debug("window_lock_contended", window_id=str(window_id))

        try:
            async with lock:
                yield
        finally:
            self._users[window_id] -= 1
            if self._users[window_id] == 0:
                del self._users[window_id]
                del self._locks[window_id]

    def is_locked(self, window_id: UUID) -> bool:
        """Whether some task currently holds the lock for ``window_id``."""
        lock = self._locks.get(window_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
