"""Named mutual exclusion for remote read-modify-write sequences.

The directory APIs have no optimistic-concurrency primitive. Credential
collections are replaced wholesale, so two tasks splicing the same
parent's collection must not overlap: the second would write back a copy
read before the first task's write, silently dropping it.

Keys are created on first use and kept for the registry's lifetime.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NamedLockRegistry:
    """Keyed locks: one holder per key, no serialization across keys.

    Waiters on a key are served in arrival order (asyncio.Lock is FIFO).
    One registry is built per process and shared by every reconciler.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    @staticmethod
    def key(name: str, namespace: str | None = None) -> str:
        return f"{namespace}:{name}" if namespace else name

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks.setdefault(key, asyncio.Lock())
        return lock

    @asynccontextmanager
    async def lock(self, name: str, namespace: str | None = None) -> AsyncIterator[None]:
        """Hold the lock for ``name`` for the duration of the block.

        Released on every exit path, including exceptions and cancellation.
        """
        key = self.key(name, namespace)
        lock = self._lock_for(key)
        if lock.locked():
            logger.debug("Waiting for named lock", extra={"lock_key": key})
        async with lock:
            yield

    async def with_lock(
        self,
        name: str,
        fn: Callable[[], Awaitable[T]],
        namespace: str | None = None,
    ) -> T:
        """Run ``fn`` while holding the lock for ``name``."""
        async with self.lock(name, namespace):
            return await fn()

    def is_locked(self, name: str, namespace: str | None = None) -> bool:
        lock = self._locks.get(self.key(name, namespace))
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
