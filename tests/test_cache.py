"""Tests for the in-memory cache and the İnfoLine key patterns."""

import itertools
import time
from unittest.mock import patch
from uuid import uuid4

import pytest

from database import InMemoryCache, InfoLineCache, clear_infoline_cache, get_infoline_cache
from services import load_user_scope


class TestInMemoryCache:

    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        cache = InMemoryCache()
        await cache.set("a", 1)
        assert await cache.get("a") == 1
        assert await cache.delete("a") is True
        assert await cache.delete("a") is False
        assert await cache.get("a") is None

    @pytest.mark.asyncio
    async def test_ttl_expiry(self):
        cache = InMemoryCache(default_ttl=10)
        await cache.set("a", 1)
        await cache.set("b", 2, ttl=100)

        with patch("database.cache.time.time", return_value=time.time() + 50):
            assert await cache.get("a") is None
            assert await cache.get("b") == 2

    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        cache = InMemoryCache(max_size=5, default_ttl=None)
        with patch("database.cache.time.time", side_effect=itertools.count(1000)):
            for i in range(5):
                await cache.set(f"k{i}", i)
            await cache.get("k0")

            await cache.set("k5", 5)

            keys = await cache.keys()
        assert len(keys) == 5
        assert "k0" in keys
        assert "k1" not in keys

    @pytest.mark.asyncio
    async def test_keys_pattern_and_stats(self):
        cache = InMemoryCache()
        await cache.set("completion:school:1", 1)
        await cache.set("categories:1", 2)
        await cache.get("categories:1")
        await cache.get("missing")

        assert await cache.keys("completion:*") == ["completion:school:1"]
        stats = await cache.get_cache_stats()
        assert stats["total_entries"] == 2
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5


class TestInfoLineCache:

    @pytest.mark.asyncio
    async def test_invalidate_school(self):
        cache = InfoLineCache()
        school_id, other_school, category_id = uuid4(), uuid4(), uuid4()
        await cache.set_school_completion(school_id, "school")
        await cache.set_category_completion(school_id, category_id, "category")
        await cache.set_categories(school_id, ["c"])
        await cache.set_school_completion(other_school, "other")
        await cache.set_user_roles(school_id, ["role"])

        removed = await cache.invalidate_school(school_id)

        assert removed == 3
        assert await cache.get_school_completion(school_id) is None
        assert await cache.get_categories(school_id) is None
        assert await cache.get_school_completion(other_school) == "other"
        assert await cache.get_user_roles(school_id) == ["role"]

    @pytest.mark.asyncio
    async def test_invalidate_category_and_user(self):
        cache = InfoLineCache()
        school_id, category_id, user_id = uuid4(), uuid4(), uuid4()
        await cache.set_category_completion(school_id, category_id, "stats")
        await cache.set_category_completion(school_id, uuid4(), "untouched")
        await cache.set_school_completion(school_id, "school")
        await cache.set_user_roles(user_id, [])

        await cache.invalidate_category(category_id)
        assert await cache.get_category_completion(school_id, category_id) is None
        assert await cache.get_school_completion(school_id) is None
        assert len(await cache.cache.keys("completion:category:*")) == 1

        assert await cache.invalidate_user(user_id) == 1

    @pytest.mark.asyncio
    async def test_global_cache(self):
        cache = get_infoline_cache()
        assert get_infoline_cache() is cache
        await cache.set_user_roles("u", ["x"])
        await clear_infoline_cache()
        assert await cache.get_user_roles("u") is None


@pytest.mark.asyncio
async def test_user_roles_are_cached(store, demo):
    cache = InfoLineCache()
    user_id = demo.users["sectoradmin"]
    first = await load_user_scope(store, user_id, cache=cache)
    store.user_roles.clear()

    second = await load_user_scope(store, user_id, cache=cache)

    assert second.permissions.sector_ids == first.permissions.sector_ids == {demo.sector_id}
