"""
In-process TTL cache for read-heavy list endpoints.

Values live in a dict guarded by a lock; each entry carries its own
expiry time. When the cache is full the entry closest to expiring is
evicted first.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class TTLCache:
    def __init__(self, ttl_seconds: int = 300, max_entries: int = 100,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.RLock()
        self.stats = {"hits": 0, "misses": 0}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry:
                value, expires_at = entry
                if self._clock() < expires_at:
                    self.stats["hits"] += 1
                    return value
                del self._entries[key]
            self.stats["misses"] += 1
            return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0 or self.max_entries <= 0:
            return
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)
            while len(self._entries) > self.max_entries:
                oldest = min(self._entries, key=lambda k: self._entries[k][1])
                self._entries.pop(oldest, None)

    def get_or_set(self, key: str, loader: Callable[[], Any]) -> Any:
        """Cache-aside read: return the cached value or load and store it."""
        value = self.get(key)
        if value is not None:
            return value
        value = loader()
        self.set(key, value)
        return value

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        if count:
            logger.info("Cleared %d cached entries", count)
        return count

    def __len__(self):
        with self._lock:
            return len(self._entries)
