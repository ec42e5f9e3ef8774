"""
ascend.engine.cache — Result cache for ranked leaderboards
===========================================================

The leaderboard aggregator caches *final, ranked* results under
``leaderboard:{company}:{type}:{timeframe}`` and every committed grant
drops every key under ``leaderboard:{company}:``.

Two backends share one small interface:

* :class:`MemoryCache` — thread-safe in-process dict with TTL expiry.
* :class:`RedisCache`  — shared cache for multi-process deployments.

Values are stored as JSON in both backends, so a cache hit always hands
back a fresh copy and the two behave identically.  Handles are built
once at process start (:func:`build_cache`) and injected into services.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

import redis

from ascend.constants import CACHE_PREFIX_LEADERBOARD

if TYPE_CHECKING:
    from ascend.config import AscendConfig

logger = logging.getLogger(__name__)


class ResultCache(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    def delete_prefix(self, prefix: str) -> int: ...


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------
def leaderboard_prefix(company_id: str) -> str:
    return f"{CACHE_PREFIX_LEADERBOARD}:{company_id}:"


def leaderboard_key(company_id: str, board_type: str, timeframe: str) -> str:
    return f"{leaderboard_prefix(company_id)}{board_type}:{timeframe}"


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------
class MemoryCache:
    """Thread-safe TTL cache.

    Usage:
        cache = MemoryCache()
        cache.set("leaderboard:acme:total_xp:all_time", rows, 300)
        cache.get("leaderboard:acme:total_xp:all_time")
        cache.delete_prefix("leaderboard:acme:")
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        # key → (expires_at, json payload)
        self._entries: dict[str, tuple[float, str]] = {}

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if expires_at <= now:
                del self._entries[key]
                return None
        return json.loads(payload)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = json.dumps(value, default=str)
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, payload)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------
class RedisCache:
    """Redis-backed cache.  Connection errors degrade to cache misses.

    Invalidation is the one path that does not degrade silently: a failed
    prefix delete is logged at ERROR because stale leaderboards would then
    survive until their TTL runs out.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCache:
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Any | None:
        try:
            raw = self._client.get(key)
        except redis.RedisError:
            logger.warning("Redis GET failed for %s — treating as miss", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self._client.setex(key, ttl_seconds, json.dumps(value, default=str))
        except redis.RedisError:
            logger.warning("Redis SET failed for %s", key, exc_info=True)

    def delete_prefix(self, prefix: str) -> int:
        deleted = 0
        try:
            batch: list[str] = []
            for key in self._client.scan_iter(match=f"{prefix}*", count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += self._client.delete(*batch)
                    batch = []
            if batch:
                deleted += self._client.delete(*batch)
        except redis.RedisError:
            logger.error("Redis prefix delete failed for %s", prefix, exc_info=True)
        return deleted


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------
def build_cache(config: AscendConfig, redis_url: str | None = None) -> ResultCache:
    """Pick the backend: explicit *redis_url*, then ``config.redis_url``,
    else the in-process cache."""
    url = redis_url or config.redis_url
    if url:
        logger.info("Leaderboard cache → Redis")
        return RedisCache.from_url(url)
    logger.info("Leaderboard cache → in-process memory")
    return MemoryCache()
