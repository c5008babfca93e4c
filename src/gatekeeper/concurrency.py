"""Per-key mutual exclusion for asyncio tasks.

A fixed set of stripes is shared by all keys: two keys only contend when
they hash to the same stripe, so unrelated players are not serialized
behind one global lock.
"""

from __future__ import annotations

import asyncio
import zlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

DEFAULT_STRIPES = 64


class KeyedLock:
    """Striped asyncio locks addressed by string key."""

    def __init__(self, stripes: int = DEFAULT_STRIPES) -> None:
        if stripes < 1:
            msg = "stripes must be >= 1"
            raise ValueError(msg)
        self._locks = [asyncio.Lock() for _ in range(stripes)]

    def _stripe(self, key: str) -> asyncio.Lock:
        # crc32 is stable across processes, unlike hash() on str
        return self._locks[zlib.crc32(key.encode("utf-8")) % len(self._locks)]

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the stripe lock for ``key`` for the duration of the block."""
        lock = self._stripe(key)
        async with lock:
            yield

    def locked(self, key: str) -> bool:
        return self._stripe(key).locked()

    @property
    def stripes(self) -> int:
        return len(self._locks)
