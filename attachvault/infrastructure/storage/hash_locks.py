"""
Per-hash mutual exclusion.

Marker increments, content writes and content removal of the same hash are
serialized inside the process. Locks are dropped once nobody waits on them.
"""

import asyncio
from contextlib import asynccontextmanager


class HashLocks:

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, hash: str):
        lock = self._locks.setdefault(hash, asyncio.Lock())
        self._waiters[hash] = self._waiters.get(hash, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[hash] -= 1
            if self._waiters[hash] == 0:
                del self._waiters[hash]
                del self._locks[hash]

    def __len__(self) -> int:
        return len(self._locks)
