"""
Small in-memory TTL cache.

The owner constructs one instance and hands it to whatever needs it (the
holiday calendar keeps one year map per key); expiry and clearing are
driven by the owner, there is no module-level instance.
"""

import logging
import time
from typing import Any, Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)


class CacheService:
    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: Dict[Hashable, Dict[str, Any]] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        """Get value from cache if not expired."""
        entry = self._cache.get(key)
        if entry is None:
            logger.debug("Cache MISS for key: %s", key)
            return None

        if self._clock() >= entry["expires_at"]:
            logger.debug("Cache MISS for key: %s (expired)", key)
            del self._cache[key]
            return None

        logger.debug("Cache HIT for key: %s", key)
        return entry["value"]

    def set(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Set value in cache with TTL (defaults to the cache's own TTL)."""
        now = self._clock()
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._cache[key] = {
            "value": value,
            "expires_at": now + ttl,
            "created_at": now,
        }

    def invalidate(self, key: Hashable) -> None:
        """Remove specific key from cache."""
        self._cache.pop(key, None)

    def clear(self) -> None:
        """Clear all cache."""
        logger.info("Cache CLEAR - removing %s entries", len(self._cache))
        self._cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_entries": len(self._cache),
            "keys": list(self._cache.keys()),
        }
