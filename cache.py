"""
Caching layer for ApiFlora.

Discovered doc corpora, extracted endpoint lists and evaluations are
expensive to derive (several page renders plus an LLM call), so they are
memoized for days. Two backends share one async interface:

- RedisCache: shared across instances, used when REDIS_URL is set.
- SmartCache: in-process LRU fallback with per-namespace hit stats.

Values are strings; callers serialize JSON themselves. Cache failures
never fail a request: writes go through `best_effort`.
"""

import hashlib
import logging
import threading
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Optional, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger("apiflora.cache")


class Cache(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    def stats(self) -> dict: ...


# ── Keys ─────────────────────────────────────────────────────────────────────
class CacheKeys:
    """One constructor per cache namespace."""

    @staticmethod
    def discovered_docs(api_id: str) -> str:
        return f"discoveredDocs:{api_id}"

    @staticmethod
    def extracted_endpoints(api_id: str) -> str:
        return f"extractedEndpoints:{api_id}"

    @staticmethod
    def evaluation(api_id: str) -> str:
        return f"evaluation:{api_id}"

    @staticmethod
    def raw_doc_page(url: str) -> str:
        return f"rawDocPage:{url}"

    @staticmethod
    def discovered_search(query: str) -> str:
        return f"discoveredSearch:{make_key(query.strip().lower())}"


def make_key(*parts: str) -> str:
    """Create a deterministic cache key from parts."""
    raw = "|".join(str(p) for p in parts if p)
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


async def best_effort(operation: Awaitable, what: str) -> bool:
    """Await a cache operation, logging and suppressing any failure."""
    try:
        await operation
        return True
    except Exception as exc:
        logger.warning("Cache %s failed: %s", what, exc)
        return False


async def cached_get(cache: Cache, key: str) -> Optional[str]:
    """Read a key, treating a failing backend as a miss."""
    try:
        return await cache.get(key)
    except Exception as exc:
        logger.warning("Cache read failed for %s: %s", key, exc)
        return None


# ── In-process backend ───────────────────────────────────────────────────────
@dataclass
class CacheEntry:
    value: str
    expires_at: float

    @property
    def is_expired(self) -> bool:
        return time.time() >= self.expires_at


def namespace_of(key: str) -> str:
    return key.split(":", 1)[0]


class SmartCache:
    """
    In-process LRU cache with per-key expiry, used when no Redis is configured.

    Entries live until their TTL passes or they are the least recently used
    when the cache is full. Hits and misses are counted per key namespace
    (`extractedEndpoints`, `evaluation`, ...) so /health shows which
    derivations are being reused.
    """

    backend = "memory"

    def __init__(self, default_ttl: int = 900, max_entries: int = 500):
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._hits: Counter = Counter()
        self._misses: Counter = Counter()
        self._writes = 0
        self._started = time.time()

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired:
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses[namespace_of(key)] += 1
                return None
            self._entries.move_to_end(key)
            self._hits[namespace_of(key)] += 1
            return entry.value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=time.time() + (ttl or self.default_ttl))
            self._entries.move_to_end(key)
            self._writes += 1
            if len(self._entries) > self.max_entries:
                self._purge_expired()
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def _purge_expired(self) -> None:
        for key in [k for k, e in self._entries.items() if e.is_expired]:
            del self._entries[key]

    def stats(self) -> dict:
        with self._lock:
            hits = sum(self._hits.values())
            lookups = hits + sum(self._misses.values())
            namespaces = sorted(set(self._hits) | set(self._misses))
            return {
                "backend": self.backend,
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "writes": self._writes,
                "hit_rate_percent": round(hits / lookups * 100, 1) if lookups else 0,
                "by_namespace": {
                    ns: {"hits": self._hits[ns], "misses": self._misses[ns]} for ns in namespaces
                },
                "uptime_seconds": int(time.time() - self._started),
            }


# ── Redis backend ────────────────────────────────────────────────────────────
class RedisCache:
    """Shared cache on Redis with per-key expiry."""

    backend = "redis"

    def __init__(self, url: str, timeout: float = 5.0):
        self._client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._client.set(key, value, ex=ttl)

    async def close(self) -> None:
        await self._client.aclose()

    def stats(self) -> dict:
        return {"backend": self.backend}


def build_cache(redis_url: Optional[str], default_ttl: int, max_entries: int) -> Cache:
    if redis_url:
        logger.info("Using Redis cache")
        return RedisCache(redis_url)
    logger.info("REDIS_URL not set, using in-process cache")
    return SmartCache(default_ttl=default_ttl, max_entries=max_entries)
