from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: Optional[float]
    hits: int = 0


@dataclass
class MemoryCache:
    """In-process key/value cache with per-entry TTL.

    Why:
    - Overpass/Nominatim/OpenRouteService rate-limit aggressively.
    - Route sampling hits the same POI lookups over and over.

    Expired entries are dropped lazily on access and by `sweep()`.
    `wrap()` does not collapse concurrent misses for the same key: two
    callers that miss at the same time both run `compute`.
    """
    ttl_seconds: int = 3600
    enabled: bool = True
    clock: Callable[[], float] = time.monotonic
    _entries: Dict[str, CacheEntry] = field(default_factory=dict, init=False, repr=False)
    _stats: Dict[str, int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.ttl_seconds <= 0:
            raise ConfigurationError(f"cache ttl must be > 0, got {self.ttl_seconds}")
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0}

    @staticmethod
    def create_key(*parts: Any) -> str:
        return ":".join(str(p) for p in parts)

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self.clock() >= entry.expires_at:
            del self._entries[key]
            logger.debug("Cache key expired: %s", key)
            return None
        return entry

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        if not self.enabled:
            return None
        entry = self._live_entry(key)
        if entry is None:
            self._stats["misses"] += 1
            logger.debug("Cache miss: %s", key)
            return None
        self._stats["hits"] += 1
        entry.hits += 1
        logger.debug("Cache hit: %s", key)
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._lookup(key)
        return default if entry is None else entry.value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store `value`; `ttl` overrides the default, 0 means no expiry."""
        if not self.enabled:
            return False
        ttl = self.ttl_seconds if ttl is None else ttl
        if ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {ttl}")
        now = self.clock()
        self._entries[key] = CacheEntry(
            value=value,
            created_at=now,
            expires_at=None if ttl == 0 else now + ttl,
        )
        self._stats["sets"] += 1
        logger.debug("Cache set: %s", key)
        return True

    def has(self, key: str) -> bool:
        return self._live_entry(key) is not None

    def delete(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self._stats["deletes"] += 1
        logger.debug("Cache deleted: %s", key)
        return True

    async def wrap(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl: Optional[int] = None,
    ) -> T:
        """Return the cached value for `key`, computing and storing it on a miss.

        Exceptions from `compute` propagate and nothing is cached.
        """
        entry = self._lookup(key)
        if entry is not None:
            return entry.value
        result = await compute()
        self.set(key, result, ttl)
        return result

    def sweep(self) -> int:
        """Drop all expired entries; returns how many were removed."""
        now = self.clock()
        expired = [k for k, e in self._entries.items() if e.expires_at is not None and now >= e.expires_at]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Cache sweep removed %d expired keys", len(expired))
        return len(expired)

    def flush(self) -> None:
        self._entries.clear()
        logger.info("Cache flushed")

    def keys(self) -> List[str]:
        return [k for k in list(self._entries) if self._live_entry(k) is not None]

    def stats(self) -> Dict[str, int]:
        return {**self._stats, "keys": len(self.keys())}
