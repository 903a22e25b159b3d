import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, Optional

from ..config import utcnow

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Key/value cache for read-mostly API responses"""

    name = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None):
        ...

    @abstractmethod
    async def delete(self, key: str):
        ...

    @abstractmethod
    async def invalidate_prefix(self, prefix: str):
        ...

    async def ping(self) -> bool:
        return True

    async def close(self):
        pass


class MemoryCache(CacheBackend):
    """Process-local cache with per-entry TTL"""

    name = "memory"

    def __init__(self, ttl_seconds: int = 300):
        self._cache: Dict[str, Dict] = {}
        self._ttl = ttl_seconds
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if utcnow() < entry["expires"]:
                return entry["data"]
            del self._cache[key]
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None):
        async with self._lock:
            self._cache[key] = {
                "data": value,
                "expires": utcnow() + timedelta(seconds=ttl or self._ttl),
            }

    async def delete(self, key: str):
        async with self._lock:
            self._cache.pop(key, None)

    async def invalidate_prefix(self, prefix: str):
        async with self._lock:
            for key in [k for k in self._cache if k.startswith(prefix)]:
                del self._cache[key]

    async def close(self):
        async with self._lock:
            self._cache.clear()


class DisabledCache(CacheBackend):
    """Stand-in used when caching is switched off: every lookup misses"""

    name = "disabled"

    async def get(self, key: str) -> Optional[Any]:
        return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None):
        pass

    async def delete(self, key: str):
        pass

    async def invalidate_prefix(self, prefix: str):
        pass

    async def ping(self) -> bool:
        return False


def build_cache(backend: str, ttl_seconds: int = 300) -> CacheBackend:
    if backend == "memory":
        return MemoryCache(ttl_seconds)
    if backend == "disabled":
        logger.info("Cache disabled by configuration")
        return DisabledCache()
    raise ValueError(f"Unknown cache backend: {backend}")
