"""
Caching for completion statistics, category listings and user roles.

Provides in-memory caching with key patterns like completion:school:{id},
categories:{school_id} and user_roles:{user_id} so dashboards and review
queues do not recompute the same aggregates on every request.
"""

import asyncio
import fnmatch
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached item with metadata."""
    key: str
    value: Any
    created_at: float
    expires_at: Optional[float]
    access_count: int = 0
    last_accessed: Optional[float] = None


class CacheInterface(ABC):
    """Abstract interface for cache implementations."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get a value from cache."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set a value in cache with optional TTL in seconds."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key from cache. Returns True if key existed."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    @abstractmethod
    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        """Get all keys, optionally matching a glob pattern."""
        pass


class InMemoryCache(CacheInterface):
    """
    In-memory cache with TTL support and LRU eviction.

    Features:
    - TTL-based expiration
    - Size-based eviction (least recently used fifth of the entries)
    - Glob pattern key lookup
    """

    def __init__(self, max_size: int = 10000, default_ttl: Optional[int] = 300):
        """
        Initialize in-memory cache.

        Args:
            max_size: Maximum number of entries to store
            default_ttl: Default TTL in seconds (None for no expiration)
        """
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self.misses += 1
                return None

            now = time.time()
            if entry.expires_at and now > entry.expires_at:
                del self._cache[key]
                self.misses += 1
                return None

            entry.access_count += 1
            entry.last_accessed = now
            self.hits += 1
            return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        async with self._lock:
            self._cleanup_expired()
            if key not in self._cache:
                self._ensure_space()

            if ttl is None:
                ttl = self.default_ttl

            now = time.time()
            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                expires_at=now + ttl if ttl is not None else None,
                last_accessed=now,
            )

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        async with self._lock:
            self._cleanup_expired()
            all_keys = list(self._cache.keys())
            if pattern is None:
                return all_keys
            return [key for key in all_keys if fnmatch.fnmatchcase(key, pattern)]

    async def get_cache_stats(self) -> Dict[str, Any]:
        async with self._lock:
            self._cleanup_expired()
            total_entries = len(self._cache)
            lookups = self.hits + self.misses
            return {
                'total_entries': total_entries,
                'max_size': self.max_size,
                'utilization': total_entries / self.max_size if self.max_size > 0 else 0,
                'hits': self.hits,
                'misses': self.misses,
                'hit_rate': self.hits / lookups if lookups else 0,
            }

    def _cleanup_expired(self) -> None:
        now = time.time()
        expired_keys = [
            key for key, entry in self._cache.items()
            if entry.expires_at and now > entry.expires_at
        ]
        for key in expired_keys:
            del self._cache[key]

        if expired_keys:
            logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")

    def _ensure_space(self) -> None:
        if len(self._cache) < self.max_size:
            return

        lru_keys = sorted(self._cache, key=lambda k: self._cache[k].last_accessed or 0)
        keys_to_remove = lru_keys[:max(1, len(lru_keys) // 5)]
        for key in keys_to_remove:
            del self._cache[key]

        logger.debug(f"Evicted {len(keys_to_remove)} LRU cache entries")


class InfoLineCache:
    """
    Cache with the İnfoLine key patterns.

    Key patterns:
    - completion:school:{school_id}: School completion across categories
    - completion:category:{school_id}:{category_id}: One category of a school
    - categories:{school_id}: Categories with columns visible to a school
    - user_roles:{user_id}: A user's role rows
    """

    COMPLETION_TTL = 300
    CATEGORIES_TTL = 600
    USER_ROLES_TTL = 1800

    def __init__(self, cache: Optional[CacheInterface] = None):
        self.cache = cache or InMemoryCache()

    @staticmethod
    def _make_key(prefix: str, *args: Any) -> str:
        return ":".join([prefix] + ["none" if arg is None else str(arg) for arg in args])

    # Completion
    async def get_school_completion(self, school_id) -> Optional[Any]:
        return await self.cache.get(self._make_key("completion:school", school_id))

    async def set_school_completion(self, school_id, stats: Any) -> None:
        await self.cache.set(self._make_key("completion:school", school_id), stats, self.COMPLETION_TTL)

    async def get_category_completion(self, school_id, category_id) -> Optional[Any]:
        return await self.cache.get(self._make_key("completion:category", school_id, category_id))

    async def set_category_completion(self, school_id, category_id, stats: Any) -> None:
        key = self._make_key("completion:category", school_id, category_id)
        await self.cache.set(key, stats, self.COMPLETION_TTL)

    # Categories
    async def get_categories(self, school_id) -> Optional[Any]:
        return await self.cache.get(self._make_key("categories", school_id))

    async def set_categories(self, school_id, categories: Any) -> None:
        await self.cache.set(self._make_key("categories", school_id), categories, self.CATEGORIES_TTL)

    # User roles
    async def get_user_roles(self, user_id) -> Optional[Any]:
        return await self.cache.get(self._make_key("user_roles", user_id))

    async def set_user_roles(self, user_id, roles: Any) -> None:
        await self.cache.set(self._make_key("user_roles", user_id), roles, self.USER_ROLES_TTL)

    # Invalidation
    async def _delete_pattern(self, pattern: str) -> int:
        keys = await self.cache.keys(pattern)
        for key in keys:
            await self.cache.delete(key)
        return len(keys)

    async def invalidate_school(self, school_id) -> int:
        """Drop completion and category data cached for a school."""
        removed = 0
        removed += await self._delete_pattern(f"completion:school:{school_id}")
        removed += await self._delete_pattern(f"completion:category:{school_id}:*")
        removed += await self._delete_pattern(f"categories:{school_id}")
        logger.debug(f"Invalidated {removed} cache entries for school {school_id}")
        return removed

    async def invalidate_category(self, category_id) -> int:
        """Drop everything derived from a category's columns, for every school."""
        removed = await self._delete_pattern(f"completion:category:*:{category_id}")
        removed += await self._delete_pattern("completion:school:*")
        removed += await self._delete_pattern("categories:*")
        return removed

    async def invalidate_user(self, user_id) -> int:
        return await self._delete_pattern(f"user_roles:{user_id}")

    async def get_cache_stats(self) -> Dict[str, Any]:
        if hasattr(self.cache, 'get_cache_stats'):
            return await self.cache.get_cache_stats()

        keys = await self.cache.keys()
        return {
            'total_entries': len(keys),
            'key_patterns': {
                prefix: len([k for k in keys if k.startswith(prefix + ':')])
                for prefix in ('completion', 'categories', 'user_roles')
            }
        }


# Global cache instance
_global_cache: Optional[InfoLineCache] = None


def get_infoline_cache() -> InfoLineCache:
    """Get the global İnfoLine cache instance."""
    global _global_cache

    if _global_cache is None:
        _global_cache = InfoLineCache()

    return _global_cache


async def clear_infoline_cache() -> None:
    await get_infoline_cache().cache.clear()
