"""Per-key asyncio locks."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable
import asyncio


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits for it.

    Waiters are served in arrival order, which keeps per-task events in the
    order they were handed in.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]
