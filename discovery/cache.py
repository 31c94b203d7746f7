"""
HostFinder Discovery Cache

Time-bounded cache of discovery results, owned by a discovery engine.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from shared.models import HostRecord

UNIFIED_CACHE_KEY = "unified"


def source_cache_key(source: str) -> str:
    """Cache key for a single source's results."""
    return f"source:{source}"


@dataclass
class CacheEntry:
    hosts: list[HostRecord]
    timestamp: float


class DiscoveryCache:
    """
    Keyed store of host lists with lazy TTL checks.

    Expired entries are never served and never extended; they are replaced
    by the next write for the same key.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    def get(self, key: str, ttl: float) -> Optional[list[HostRecord]]:
        """
        Get cached hosts if the entry is younger than ttl seconds.

        Returns:
            A copy of the cached host list, or None if absent or stale
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= ttl:
            return None
        return list(entry.hosts)

    def age(self, key: str) -> Optional[float]:
        """Seconds since the entry was written, or None if absent."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return self._clock() - entry.timestamp

    async def set(self, key: str, hosts: list[HostRecord]) -> None:
        """Store hosts under key, stamped with the current time."""
        async with self._lock:
            self._entries[key] = CacheEntry(hosts=list(hosts), timestamp=self._clock())

    async def invalidate(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
