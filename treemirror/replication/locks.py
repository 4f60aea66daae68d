"""Per-key asyncio locks."""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class KeyedLocks:
    """
    At most one holder per key; distinct keys never block each other.

    Locks are dropped once no task holds or waits for them, so the table
    only grows with the number of keys in flight.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
