"""Per-modpack mutual exclusion for long-running mutations.

One registry is created by the application lifespan and held by the
routers around each mutating call; nothing here is module-level state.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class ModpackLocks:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, modpack_id: str) -> asyncio.Lock:
        lock = self._locks.get(modpack_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[modpack_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, modpack_id: str) -> AsyncIterator[None]:
        async with self.get(modpack_id):
            yield

    def is_locked(self, modpack_id: str) -> bool:
        lock = self._locks.get(modpack_id)
        return lock is not None and lock.locked()

    def discard(self, modpack_id: str) -> None:
        lock = self._locks.get(modpack_id)
        if lock is not None and not lock.locked():
            del self._locks[modpack_id]
