"""Per-key serialisation of read-then-write sequences."""

import asyncio
import logging
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager

from bursary.core.exceptions import ConcurrentModificationError

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    Registry of asyncio locks keyed by an arbitrary hashable.

    Locks are created on first use and dropped once nobody holds or waits
    for them, so the registry does not grow with the number of students.
    Only serialises callers inside one process; across processes the
    row locks taken by the callers' queries do the same job.
    """

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def acquire(self, key: Hashable, timeout: float | None = None) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout)
            except asyncio.TimeoutError:
                logger.warning("Timed out after %ss waiting for lock %s", timeout, key)
                raise ConcurrentModificationError(key=key)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


# One lock per (tenant_id, student_id, academic_year_id)
allocation_locks = KeyedLock()
