"""
Cache store capability for GraphQL responses.

The orchestrator only needs ``get`` and ``put``. Physical eviction belongs to
the store: the in-memory store evicts least-recently-used entries past its
capacity, the Redis store keeps keys for a retention window past their TTL. Logical
expiry (TTL) is decided by the freshness evaluator.
"""

import base64
import json
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

import redis.asyncio as redis

from shared.config import BaseConfig
from shared.logging import get_logger


@dataclass(frozen=True)
class CacheEntry:
    """A stored backend response. Replaced wholesale, never mutated."""

    body: bytes
    status_code: int
    stored_at_ms: int
    ttl_seconds: Optional[int] = None
    headers: Tuple[Tuple[str, str], ...] = ()

    def to_json(self) -> str:
        return json.dumps({
            "body": base64.b64encode(self.body).decode("ascii"),
            "status_code": self.status_code,
            "stored_at_ms": self.stored_at_ms,
            "ttl_seconds": self.ttl_seconds,
            "headers": [list(pair) for pair in self.headers],
        })

    @classmethod
    def from_json(cls, raw) -> "CacheEntry":
        data = json.loads(raw)
        return cls(
            body=base64.b64decode(data["body"]),
            status_code=int(data["status_code"]),
            stored_at_ms=int(data["stored_at_ms"]),
            ttl_seconds=data.get("ttl_seconds"),
            headers=tuple((name, value) for name, value in data.get("headers") or []),
        )


class CacheStore(Protocol):
    """Key-value store holding cache entries."""

    async def get(self, key: str) -> Optional[CacheEntry]:
        ...

    async def put(self, key: str, entry: CacheEntry) -> None:
        ...

    async def close(self) -> None:
        ...


class InMemoryCacheStore:
    """Process-local LRU store."""

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max(1, max_entries)
        self.logger = get_logger("gqlcache.store.memory")
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    async def put(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self.logger.debug("Evicted cache entry", key=evicted)

    async def close(self) -> None:
        self._entries.clear()


class RedisCacheStore:
    """Redis-backed store shared by every gateway replica."""

    KEY_PREFIX = "gqlcache:"

    def __init__(self, redis_url: str, retention_seconds: int = 300):
        self.redis_url = redis_url
        self.retention_seconds = retention_seconds
        self.logger = get_logger("gqlcache.store.redis")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        redis_client = await self._get_redis()
        raw = await redis_client.get(self._make_key(key))
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            self.logger.warning("Discarding undecodable cache entry", key=key, error=str(exc))
            return None

    async def put(self, key: str, entry: CacheEntry) -> None:
        redis_client = await self._get_redis()
        # Entries outlive their TTL by the retention window so stale lookups report EXPIRED.
        expiry = (entry.ttl_seconds or 0) + self.retention_seconds
        await redis_client.setex(self._make_key(key), expiry, entry.to_json())

    async def ping(self) -> bool:
        redis_client = await self._get_redis()
        return bool(await redis_client.ping())

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def build_cache_store(config: BaseConfig) -> CacheStore:
    """Create the store selected by ``cache_backend``."""
    if config.cache_backend == "redis":
        return RedisCacheStore(config.redis_url, retention_seconds=config.cache_ttl)
    return InMemoryCacheStore(config.cache_max_entries)
