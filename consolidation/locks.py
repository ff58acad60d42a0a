"""In-process keyed locks serializing work per period and per document."""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict

from core.models import Period


def period_key(company_id: str, period: Period) -> str:
    return f"{company_id}:period:{period}"


def document_key(company_id: str, document_id: str) -> str:
    return f"{company_id}:document:{document_id}"


class KeyedLocks:
    """
    Registry of asyncio locks keyed by string.

    When both are needed, acquire the period lock before the document lock.
    Locks are created on first use and dropped once no task holds or awaits them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
