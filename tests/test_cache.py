"""
Tests for the discovery cache.
"""

import pytest

from discovery.cache import DiscoveryCache, UNIFIED_CACHE_KEY, source_cache_key
from shared.models import HostRecord


@pytest.fixture
def cache(clock):
    """Create a cache driven by the fake clock."""
    return DiscoveryCache(clock=clock)


@pytest.fixture
def hosts():
    return [HostRecord(address="0x1"), HostRecord(address="0x2")]


class TestDiscoveryCache:
    """Tests for TTL handling."""

    @pytest.mark.asyncio
    async def test_fresh_entry_served(self, cache, hosts, clock):
        """Test that an entry younger than the TTL is returned."""
        await cache.set(UNIFIED_CACHE_KEY, hosts)
        clock.advance(59)

        cached = cache.get(UNIFIED_CACHE_KEY, ttl=60)

        assert [h.address for h in cached] == ["0x1", "0x2"]

    @pytest.mark.asyncio
    async def test_stale_entry_not_served(self, cache, hosts, clock):
        """Test that an entry at or past the TTL is ignored."""
        await cache.set(UNIFIED_CACHE_KEY, hosts)
        clock.advance(60)

        assert cache.get(UNIFIED_CACHE_KEY, ttl=60) is None
        # Stale entries are kept until overwritten
        assert UNIFIED_CACHE_KEY in cache

    @pytest.mark.asyncio
    async def test_zero_ttl_never_hits(self, cache, hosts):
        await cache.set(UNIFIED_CACHE_KEY, hosts)

        assert cache.get(UNIFIED_CACHE_KEY, ttl=0) is None

    @pytest.mark.asyncio
    async def test_get_returns_copy(self, cache, hosts):
        """Test that callers cannot mutate the cached list."""
        await cache.set(UNIFIED_CACHE_KEY, hosts)

        cache.get(UNIFIED_CACHE_KEY, ttl=60).clear()

        assert len(cache.get(UNIFIED_CACHE_KEY, ttl=60)) == 2

    @pytest.mark.asyncio
    async def test_age_and_invalidate(self, cache, hosts, clock):
        key = source_cache_key("http")
        await cache.set(key, hosts)
        clock.advance(12)

        assert key == "source:http"
        assert cache.age(key) == 12
        await cache.invalidate(key)
        assert cache.age(key) is None

    @pytest.mark.asyncio
    async def test_clear(self, cache, hosts):
        await cache.set("a", hosts)
        await cache.set("b", hosts)

        await cache.clear()

        assert len(cache) == 0
