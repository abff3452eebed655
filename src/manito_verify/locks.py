"""Per-provider single-writer locks."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class ProviderLockRegistry:
    """
    asyncio.Lock per provider id.

    Different providers never contend. A provider's lock is dropped from
    the registry once nobody holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, provider_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(provider_id, asyncio.Lock())
        self._users[provider_id] = self._users.get(provider_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[provider_id] -= 1
            if self._users[provider_id] == 0:
                del self._users[provider_id]
                del self._locks[provider_id]

    def is_locked(self, provider_id: str) -> bool:
        lock = self._locks.get(provider_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
