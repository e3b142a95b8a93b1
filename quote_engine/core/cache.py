from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import redis

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """
    TTL key-value cache consumed by the pricing path.
    Values must be JSON-serializable.
    """

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_prefix(self, prefix: str) -> int: ...


@dataclass
class Entry:
    payload: str
    expires_at: float


class InMemoryTTLCache:
    """
    Per-process TTL cache.

    Values are stored serialized so callers never share mutable state
    with the cache, matching what a network cache would hand back.

    Expired entries are swept on writes, at most every `sweep_interval`
    seconds or whenever the cache is full. Once `max_entries` live entries
    are held, the oldest write is evicted first.
    """

    def __init__(self, clock=time.monotonic, *, max_entries: int = 10_000, sweep_interval: float = 60.0):
        self._clock = clock
        self._entries: Dict[str, Entry] = {}
        self.max_entries = max(1, max_entries)
        self.sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def __len__(self) -> int:
        return len(self._entries)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            del self._entries[k]
        self._next_sweep = now + self.sweep_interval
        return len(expired)

    def get(self, key: str) -> Optional[Any]:
        e = self._entries.get(key)
        if e is None:
            return None
        if e.expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return json.loads(e.payload)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries.pop(key, None)
        if len(self._entries) >= self.max_entries or self._clock() >= self._next_sweep:
            self.purge_expired()
        while len(self._entries) >= self.max_entries:
            # dicts keep insertion order, so the first key is the oldest write
            del self._entries[next(iter(self._entries))]
        self._entries[key] = Entry(
            payload=json.dumps(value),
            expires_at=self._clock() + float(ttl_seconds),
        )

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)


class RedisCache:
    """
    Redis-backed cache (SETEX / SCAN + DEL).
    """

    def __init__(self, client):
        self._client = client

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        socket_timeout: Optional[float] = None,
        socket_connect_timeout: Optional[float] = None,
    ) -> "RedisCache":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
        )
        return cls(client)

    def get(self, key: str) -> Optional[Any]:
        raw = self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._client.setex(key, int(ttl_seconds), json.dumps(value))

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def delete_prefix(self, prefix: str) -> int:
        deleted = 0
        batch = []
        for k in self._client.scan_iter(match=f"{prefix}*", count=500):
            batch.append(k)
            if len(batch) >= 500:
                deleted += self._client.delete(*batch)
                batch = []
        if batch:
            deleted += self._client.delete(*batch)
        return deleted


class SafeCache:
    """
    Wraps a backend so that no cache failure ever reaches a caller.
    Reads degrade to a miss, writes and deletes to a no-op.
    """

    def __init__(self, backend: CacheBackend):
        self.backend = backend

    def get(self, key: str) -> Optional[Any]:
        try:
            return self.backend.get(key)
        except Exception as exc:
            logger.warning("[cache] get failed key=%s error=%s", key, exc)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self.backend.set(key, value, ttl_seconds)
        except Exception as exc:
            logger.warning("[cache] set failed key=%s error=%s", key, exc)

    def delete(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except Exception as exc:
            logger.warning("[cache] delete failed key=%s error=%s", key, exc)

    def delete_prefix(self, prefix: str) -> int:
        try:
            return self.backend.delete_prefix(prefix)
        except Exception as exc:
            logger.warning("[cache] prefix bust failed prefix=%s error=%s", prefix, exc)
            return 0


def build_cache(
    redis_url: Optional[str],
    *,
    socket_timeout: Optional[float] = None,
    socket_connect_timeout: Optional[float] = None,
    max_entries: int = 10_000,
) -> SafeCache:
    if redis_url:
        return SafeCache(
            RedisCache.from_url(
                redis_url,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_connect_timeout,
            )
        )
    return SafeCache(InMemoryTTLCache(max_entries=max_entries))
