"""Tests for InProcessCache."""

import threading
import time

import pytest

from cache import InProcessCache, make_key


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    c = InProcessCache(max_size=3, sweep_interval=0, clock=clock)
    yield c
    c.close()


class TestGetSet:
    def test_roundtrip(self, cache):
        assert cache.set("k", {"a": 1}, ttl=60) is True
        assert cache.get("k") == {"a": 1}

    def test_missing(self, cache):
        assert cache.get("nope") is None

    def test_expired_entry_is_absent(self, cache, clock):
        cache.set("k", "v", ttl=1)
        clock.advance(1.5)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_ttl_with_real_time(self):
        cache = InProcessCache(sweep_interval=0)
        cache.set("k", "v", ttl=1)
        time.sleep(1.5)
        assert cache.get("k") is None

    def test_delete(self, cache):
        cache.set("k", "v")
        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.get("k") is None


class TestEviction:
    def test_oldest_inserted_evicted(self, cache):
        for key in ("a", "b", "c", "d"):
            cache.set(key, key)
        assert len(cache) == 3
        assert cache.get("a") is None
        assert cache.get("d") == "d"

    def test_max_size_plus_one_with_default_size(self):
        cache = InProcessCache(sweep_interval=0)
        for i in range(1001):
            cache.set(f"k{i}", i)
        assert len(cache) == 1000
        assert cache.get("k0") is None
        assert cache.get("k1000") == 1000

    def test_overwrite_does_not_evict_or_reorder(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.set("a", 10)
        assert len(cache) == 3
        cache.set("d", 4)
        assert cache.get("a") is None
        assert cache.get("b") == 2

    def test_stats_count_evictions(self, cache):
        for key in ("a", "b", "c", "d", "e"):
            cache.set(key, key)
        cache.get("e")
        cache.get("a")
        stats = cache.stats()
        assert stats['evictions'] == 2
        assert stats['hits'] == 1
        assert stats['misses'] == 1


class TestPatterns:
    def test_delete_pattern(self, clock):
        cache = InProcessCache(sweep_interval=0, clock=clock)
        cache.set("config:google_drive_root_folder_id", "x")
        cache.set("config:google_drive_passport_folder_id", "y")
        cache.set("folder:root:a", "z")
        assert cache.delete_pattern("config:*") == 2
        assert cache.get("folder:root:a") == "z"

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0


class TestSweep:
    def test_sweep_removes_expired(self, cache, clock):
        cache.set("short", 1, ttl=1)
        cache.set("long", 2, ttl=100)
        clock.advance(5)
        assert cache.sweep() == 1
        assert len(cache) == 1

    def test_background_sweep_thread(self):
        cache = InProcessCache(sweep_interval=0.05)
        cache.set("k", "v", ttl=0.01)
        deadline = time.time() + 2
        while len(cache) and time.time() < deadline:
            time.sleep(0.02)
        cache.close()
        assert len(cache) == 0


class TestConcurrency:
    def test_parallel_writers_respect_bound(self):
        cache = InProcessCache(max_size=50, sweep_interval=0)

        def writer(n):
            for i in range(200):
                cache.set(f"{n}:{i}", i)
                cache.get(f"{n}:{i // 2}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(cache) == 50


def test_make_key_skips_none():
    assert make_key("folder", "root", None, "a/b") == "folder:root:a/b"
