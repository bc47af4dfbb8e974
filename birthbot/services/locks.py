"""
Per-conversant lock registry.

Events from one conversant are handled one at a time, in arrival order
(asyncio.Lock wakes waiters FIFO); different conversants run concurrently.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class ConversantLocks:
    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, conversant_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(conversant_id, asyncio.Lock())
        self._waiters[conversant_id] = self._waiters.get(conversant_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[conversant_id] -= 1
            # Drop idle locks so the registry doesn't grow with every conversant ever seen
            if self._waiters[conversant_id] == 0:
                del self._waiters[conversant_id]
                del self._locks[conversant_id]

    def __len__(self) -> int:
        return len(self._locks)
