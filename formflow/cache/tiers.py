# formflow/cache/tiers.py

"""
Storage tiers behind the CacheManager.

Every tier stores already-encoded envelope strings and accepts glob
patterns where ``*`` is the only wildcard. Failures are logged and
reported as a miss or a failed write; they never propagate.
"""

import re
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from redis.exceptions import RedisError
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError

from formflow.cache.models import CacheEntry
from formflow.utils.general import utcnow
from formflow.utils.logger import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]

_REDIS_GLOB_SPECIALS = "\\?[]^"


def glob_to_regex(pattern: str) -> "re.Pattern":
    """Anchored regex equivalent of a ``*`` only glob"""
    return re.compile("^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$")


def glob_to_redis_match(pattern: str) -> str:
    """Escape redis glob metacharacters other than ``*``"""
    return "".join("\\" + ch if ch in _REDIS_GLOB_SPECIALS else ch for ch in pattern)


def glob_to_like(pattern: str) -> str:
    """SQL LIKE pattern using backslash as the escape character"""
    escaped = pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "%")


class ProcessCache:
    """In-process TTL map. Lives only as long as the worker process."""

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock
        self._store: Dict[str, Tuple[str, Optional[datetime]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            raw, expires_at = item
            if expires_at is not None and expires_at <= self.clock():
                del self._store[key]
                return None
            return raw

    def set(self, key: str, raw: str, ttl: Optional[int]) -> bool:
        expires_at = self.clock() + timedelta(seconds=ttl) if ttl else None
        with self._lock:
            self._store[key] = (raw, expires_at)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            self._store.pop(key, None)
        return True

    def delete_pattern(self, pattern: str) -> int:
        regex = glob_to_regex(pattern)
        with self._lock:
            matched = [key for key in self._store if regex.match(key)]
            for key in matched:
                del self._store[key]
        return len(matched)

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [k for k, (_, exp) in self._store.items() if exp is not None and exp <= now]
            for key in expired:
                del self._store[key]
        return len(expired)


class RedisCache:
    """Shared tier on a redis-py client; expiry is delegated to Redis TTLs."""

    def __init__(self, client, scan_count: int = 500):
        self.client = client
        self.scan_count = scan_count

    def get(self, key: str) -> Optional[str]:
        try:
            raw = self.client.get(key)
        except RedisError as e:
            logger.warning("Redis cache read failed", key=key, error=str(e))
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return raw

    def ttl(self, key: str) -> Optional[int]:
        """Seconds left on ``key``; 0 when it never expires, None when unknown"""
        try:
            remaining = self.client.ttl(key)
        except RedisError as e:
            logger.warning("Redis cache ttl read failed", key=key, error=str(e))
            return None
        if not isinstance(remaining, int):
            return None
        if remaining == -1:
            return 0
        return remaining if remaining > 0 else None

    def set(self, key: str, raw: str, ttl: Optional[int]) -> bool:
        try:
            if ttl:
                self.client.setex(key, ttl, raw)
            else:
                self.client.set(key, raw)
            return True
        except RedisError as e:
            logger.warning("Redis cache write failed", key=key, error=str(e))
            return False

    def delete(self, key: str) -> bool:
        try:
            self.client.delete(key)
            return True
        except RedisError as e:
            logger.warning("Redis cache delete failed", key=key, error=str(e))
            return False

    def delete_pattern(self, pattern: str) -> int:
        match = glob_to_redis_match(pattern)
        removed = 0
        try:
            for key in self.client.scan_iter(match=match, count=self.scan_count):
                removed += self.client.delete(key) or 0
        except RedisError as e:
            logger.warning("Redis cache pattern delete failed", pattern=pattern, error=str(e))
        return removed


class DatabaseCache:
    """
    Relational tier on the ``cache_entries`` table.

    Uses its own sessions so cache writes never ride on a caller's
    transaction; every operation commits on its own.
    """

    def __init__(self, session_factory, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def get(self, key: str) -> Optional[str]:
        return self.get_with_ttl(key)[0]

    def get_with_ttl(self, key: str) -> Tuple[Optional[str], Optional[int]]:
        """
        Live value and the seconds it has left, 0 when it never expires.
        """
        now = self.clock()
        stmt = select(CacheEntry.cache_value, CacheEntry.expires_at).where(
            CacheEntry.cache_key == key,
            or_(CacheEntry.expires_at.is_(None), CacheEntry.expires_at > now),
        )
        session = self.session_factory()
        try:
            row = session.execute(stmt).one_or_none()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Database cache read failed", key=key, error=str(e))
            return None, None
        finally:
            session.close()

        if row is None:
            return None, None
        raw, expires_at = row
        if expires_at is None:
            return raw, 0
        # SQLite hands back naive datetimes
        if expires_at.tzinfo is None and now.tzinfo is not None:
            expires_at = expires_at.replace(tzinfo=now.tzinfo)
        return raw, max(1, int((expires_at - now).total_seconds()))

    def set(self, key: str, raw: str, ttl: Optional[int]) -> bool:
        now = self.clock()
        session = self.session_factory()
        try:
            session.merge(
                CacheEntry(
                    cache_key=key,
                    cache_value=raw,
                    expires_at=now + timedelta(seconds=ttl) if ttl else None,
                    created_at=now,
                )
            )
            session.commit()
            return True
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Database cache write failed", key=key, error=str(e))
            return False
        finally:
            session.close()

    def delete(self, key: str) -> bool:
        return self._delete(CacheEntry.cache_key == key) is not None

    def delete_pattern(self, pattern: str) -> int:
        removed = self._delete(CacheEntry.cache_key.like(glob_to_like(pattern), escape="\\"))
        return removed or 0

    def cleanup_expired(self) -> int:
        removed = self._delete(CacheEntry.expires_at <= self.clock())
        return removed or 0

    def _delete(self, criterion) -> Optional[int]:
        session = self.session_factory()
        try:
            result = session.execute(
                delete(CacheEntry).where(criterion).execution_options(synchronize_session=False)
            )
            session.commit()
            return result.rowcount
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Database cache delete failed", error=str(e))
            return None
        finally:
            session.close()
