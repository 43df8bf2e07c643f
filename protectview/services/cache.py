"""
In-memory TTL cache for bootstrap snapshots and camera codecs.
Expiry is checked lazily on read; nothing sweeps in the background.
"""
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


@dataclass
class CacheEntry:
    data: Any
    timestamp: float


class TTLCache:
    """Key/value cache whose entries expire `ttl` seconds after they were stored"""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic, name: str = 'cache'):
        self.ttl = ttl
        self.name = name
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired"""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._clock() - entry.timestamp > self.ttl:
            del self._entries[key]
            return None

        return entry.data

    def put(self, key: str, data: Any) -> None:
        self._entries[key] = CacheEntry(data=data, timestamp=self._clock())

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return self.get(key) is not None
