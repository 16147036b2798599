# formflow/cache/manager.py

"""
Multi-tier cache used across ingestion and signature orchestration.

Reads check the in-process map, then Redis, then the database table and
promote a hit into the faster tiers. Writes go to every configured tier;
the database outcome is the result.
"""

import threading
from functools import lru_cache
from typing import Any, Callable, Dict, Optional, Tuple

from formflow.cache.envelope import decode_value, encode_value
from formflow.cache.tiers import DatabaseCache, ProcessCache, RedisCache
from formflow.core.config import settings
from formflow.utils.logger import get_logger

logger = get_logger(__name__)

CACHE_PREFIX = "formflow_"
CACHE_VERSION = "2.0.0"

_MISS = object()
_LOCK_STRIPES = 64


class CacheManager:
    """Read-through / write-through cache over up to three tiers."""

    def __init__(
        self,
        database: DatabaseCache,
        redis_cache: Optional[RedisCache] = None,
        process_cache: Optional[ProcessCache] = None,
        enabled: Optional[bool] = None,
        default_ttl: Optional[int] = None,
    ):
        self.l1 = process_cache
        self.l2 = redis_cache
        self.l3 = database
        self.enabled = settings.cache_enabled if enabled is None else enabled
        self.default_ttl = default_ttl or settings.cache_default_ttl
        self._locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]
        self.reset_stats()

    def reset_stats(self) -> None:
        self._stats = {
            "hits": 0,
            "misses": 0,
            "writes": 0,
            "deletes": 0,
            "l1_hits": 0,
            "l2_hits": 0,
            "l3_hits": 0,
        }

    @staticmethod
    def make_key(key: str) -> str:
        """Namespaced and versioned storage key"""
        return f"{CACHE_PREFIX}{CACHE_VERSION}_{key}"

    # ==== Reads ====

    def get(self, key: str, default: Any = None) -> Any:
        """
        Return the cached value or ``default``. Never raises.
        """
        if not self.enabled:
            self._stats["misses"] += 1
            return default

        value, tier = self._lookup(self.make_key(key))
        if value is _MISS:
            self._stats["misses"] += 1
            return default

        self._stats["hits"] += 1
        self._stats[f"{tier}_hits"] += 1
        return value

    def _lookup(self, full_key: str) -> Tuple[Any, Optional[str]]:
        if self.l1 is not None:
            raw = self.l1.get(full_key)
            if raw is not None:
                return decode_value(raw), "l1"

        if self.l2 is not None:
            raw = self.l2.get(full_key)
            if raw is not None:
                if self.l1 is not None:
                    self._promote(self.l1, full_key, raw, self.l2.ttl(full_key))
                return decode_value(raw), "l2"

        raw, remaining = self.l3.get_with_ttl(full_key)
        if raw is not None:
            for tier in (self.l2, self.l1):
                if tier is not None:
                    self._promote(tier, full_key, raw, remaining)
            return decode_value(raw), "l3"

        return _MISS, None

    @staticmethod
    def _promote(tier, full_key: str, raw: str, remaining: Optional[int]) -> None:
        # A promoted copy never outlives its source; 0 means no expiry
        if remaining is None:
            return
        tier.set(full_key, raw, remaining or None)

    # ==== Writes ====

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Write through every tier and report the database outcome."""
        if not self.enabled:
            return False

        full_key = self.make_key(key)
        raw = encode_value(value)
        ttl = ttl or self.default_ttl

        if self.l1 is not None:
            self.l1.set(full_key, raw, ttl)
        if self.l2 is not None and not self.l2.set(full_key, raw, ttl):
            logger.warning("Cache write skipped redis tier", key=key)

        stored = self.l3.set(full_key, raw, ttl)
        if stored:
            self._stats["writes"] += 1
        return stored

    def delete(self, key: str) -> bool:
        """Remove a key from every tier; absent keys are not an error."""
        if not self.enabled:
            return False

        full_key = self.make_key(key)
        if self.l1 is not None:
            self.l1.delete(full_key)
        if self.l2 is not None:
            self.l2.delete(full_key)
        removed = self.l3.delete(full_key)
        self._stats["deletes"] += 1
        return removed

    def flush(self) -> bool:
        """Drop every key in the namespace, across all versions."""
        pattern = f"{CACHE_PREFIX}*"
        if self.l1 is not None:
            self.l1.delete_pattern(pattern)
        if self.l2 is not None:
            self.l2.delete_pattern(pattern)
        removed = self.l3.delete_pattern(pattern)
        logger.info("Cache flushed", removed=removed)
        return True

    def flush_pattern(self, pattern: str) -> int:
        """
        Drop keys matching a glob where ``*`` is the only wildcard.

        The pattern is namespaced like a key, so ``form_*`` only touches
        ``form_`` entries of the current version. Returns the number of
        database rows removed.
        """
        full_pattern = self.make_key(pattern)
        if self.l1 is not None:
            self.l1.delete_pattern(full_pattern)
        if self.l2 is not None:
            self.l2.delete_pattern(full_pattern)
        removed = self.l3.delete_pattern(full_pattern)
        logger.info("Cache pattern flushed", pattern=pattern, removed=removed)
        return removed

    def remember(self, key: str, fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """
        Return the cached value or compute, store and return it.

        Concurrent misses for the same key inside this process wait on a
        shared lock so ``fn`` runs once. ``None`` results are not stored.
        """
        value = self.get(key)
        if value is not None:
            return value

        with self._locks[hash(key) % _LOCK_STRIPES]:
            if self.enabled:
                value, _ = self._lookup(self.make_key(key))
                if value is not _MISS and value is not None:
                    return value

            value = fn()
            if value is not None:
                self.set(key, value, ttl)
            return value

    # ==== Maintenance ====

    def cleanup_expired(self) -> int:
        """Delete expired database rows and purge the in-process map."""
        if self.l1 is not None:
            self.l1.purge_expired()
        removed = self.l3.cleanup_expired()
        logger.info("Expired cache entries removed", removed=removed)
        return removed

    def warm(self, loaders: Dict[str, Tuple[Callable[[], Any], Optional[int]]]) -> Dict[str, Any]:
        """Pre-populate entries from ``key -> (loader, ttl)``."""
        entries = 0
        for key, (loader, ttl) in loaders.items():
            value = loader()
            if value is None:
                continue
            if self.set(key, value, ttl):
                entries += 1
        logger.info("Cache warmed", entries=entries)
        return {"status": "success", "entries": entries}

    def stats(self) -> Dict[str, Any]:
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = round(self._stats["hits"] / total * 100, 2) if total else 0
        return {
            **self._stats,
            "hit_rate": hit_rate,
            "total_requests": total,
            "enabled": self.enabled,
            "has_object_cache": self.l2 is not None,
        }


def build_cache_manager(session_factory=None, redis_client=None) -> CacheManager:
    """Assemble a manager from settings and the shared connections."""
    if session_factory is None:
        from formflow.core.db import SessionLocal
        session_factory = SessionLocal
    if redis_client is None:
        from formflow.core.redis import create_redis_client
        redis_client = create_redis_client()

    return CacheManager(
        database=DatabaseCache(session_factory),
        redis_cache=RedisCache(redis_client),
        process_cache=ProcessCache() if settings.cache_l1_enabled else None,
    )


@lru_cache(maxsize=1)
def get_cache_manager() -> CacheManager:
    """
    Method for obtaining the process wide cache manager
    """
    return build_cache_manager()
