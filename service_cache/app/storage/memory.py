"""
In-process storage with LRU eviction bounded by entry count and byte size.
"""

import re
import time
from collections import OrderedDict
from dataclasses import replace
from typing import Optional, Sequence

from .base import CacheEntry, CacheProvider


class MemoryProvider(CacheProvider):
    """
    In-memory cache with LRU eviction.

    Expired entries are dropped lazily on access. With ``allow_stale`` an
    expired entry is returned once, flagged ``stale``, and then removed.
    Data is lost when the process exits.
    """

    name = "memory"

    def __init__(
        self,
        *,
        max_entries: int = 1000,
        max_size_bytes: int = 10 * 1024 * 1024,
        allow_stale: bool = False,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.max_entries = max_entries
        self.max_size_bytes = max_size_bytes
        self.allow_stale = allow_stale
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._current_size_bytes = 0

    def __len__(self) -> int:
        return len(self._cache)

    def __bool__(self) -> bool:
        # An empty cache is still a configured provider.
        return True

    @property
    def size_bytes(self) -> int:
        return self._current_size_bytes

    def keys(self) -> list:
        return list(self._cache.keys())

    async def _get(self, key: str) -> Optional[CacheEntry]:
        entry = self._cache.get(key)
        if entry is None:
            return None

        if entry.is_expired(time.time()):
            self._remove(key)
            if self.allow_stale:
                return replace(entry, stale=True)
            return None

        self._cache.move_to_end(key)
        return entry

    async def _set(self, key: str, entry: CacheEntry) -> bool:
        if key in self._cache:
            self._remove(key)

        size = entry.size_bytes
        if size > self.max_size_bytes:
            self.logger.warning(
                "Entry larger than cache size bound, not stored",
                key=key, size_bytes=size, max_size_bytes=self.max_size_bytes,
            )
            return False

        self._evict_for(size)
        self._cache[key] = entry
        self._current_size_bytes += size
        return True

    async def _delete(self, key: str) -> bool:
        return self._remove(key)

    async def _clear_by_regexp(self, patterns: Sequence["re.Pattern[str]"]) -> int:
        doomed = [key for key in self._cache if any(p.search(key) for p in patterns)]
        for key in doomed:
            self._remove(key)
        return len(doomed)

    async def _reset(self) -> bool:
        self._cache.clear()
        self._current_size_bytes = 0
        return True

    async def _close(self) -> None:
        await self._reset()

    def _remove(self, key: str) -> bool:
        entry = self._cache.pop(key, None)
        if entry is None:
            return False
        self._current_size_bytes -= entry.size_bytes
        return True

    def _evict_for(self, incoming_size: int) -> None:
        """Evict least recently used entries until ``incoming_size`` fits."""
        while self._cache and (
            len(self._cache) >= self.max_entries
            or self._current_size_bytes + incoming_size > self.max_size_bytes
        ):
            key, entry = self._cache.popitem(last=False)
            self._current_size_bytes -= entry.size_bytes
            self.logger.debug("Evicted cache entry", key=key)
