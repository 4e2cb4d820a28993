"""Tests for data/cache.py: TTL store."""

from data.cache import TTLCache


class TestTTLCache:
    def test_set_and_get(self, clock):
        cache = TTLCache(clock)
        cache.set("k", "v", 1000)
        assert cache.get("k") == "v"
        assert cache.contains("k")

    def test_expired_hidden_but_kept_until_cleanup(self, clock):
        cache = TTLCache(clock)
        cache.set("k", "v", 1000)
        clock.advance(1000)
        assert cache.get("k") is None
        assert len(cache) == 1
        assert cache.cleanup() == 1
        assert len(cache) == 0

    def test_cleanup_keeps_live_entries(self, clock):
        cache = TTLCache(clock)
        cache.set("old", 1, 100)
        cache.set("new", 2, 10_000)
        clock.advance(500)
        assert cache.cleanup() == 1
        assert cache.get("new") == 2

    def test_delete_and_clear(self, clock):
        cache = TTLCache(clock)
        cache.set("a", 1, 1000)
        cache.set("b", 2, 1000)
        cache.delete("a")
        cache.delete("missing")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0
