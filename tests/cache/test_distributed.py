"""Tests for DistributedCache and TieredCache with a mocked Redis client."""

import json
import logging
from unittest import mock

import pytest
import redis

from cache import DistributedCache, InProcessCache, TieredCache


def make_client(ping_error=None):
    """A MagicMock standing in for redis.Redis, backed by a dict."""
    store = {}
    client = mock.MagicMock(spec=redis.Redis)
    if ping_error:
        client.ping.side_effect = ping_error
    else:
        client.ping.return_value = True
    client.get.side_effect = lambda key: store.get(key)

    def set_(key, value, ex=None):
        store[key] = value
        return True
    client.set.side_effect = set_

    def delete(*keys):
        return sum(1 for k in keys if store.pop(k, None) is not None)
    client.delete.side_effect = delete

    def scan_iter(match=None, count=None):
        import fnmatch
        return [k for k in list(store) if fnmatch.fnmatchcase(k, match)]
    client.scan_iter.side_effect = scan_iter
    client.store = store
    return client


class TestDistributedCache:
    def test_values_are_json_under_prefix(self):
        client = make_client()
        cache = DistributedCache(client=client)
        assert cache.set("folder:root:a", {"id": "x"}, ttl=600) is True

        assert json.loads(client.store["assetsync:folder:root:a"]) == {"id": "x"}
        client.set.assert_called_with("assetsync:folder:root:a", '{"id": "x"}', ex=600)
        assert cache.get("folder:root:a") == {"id": "x"}

    def test_delete_pattern_scoped_to_prefix(self):
        client = make_client()
        cache = DistributedCache(client=client)
        cache.set("config:a", 1)
        cache.set("config:b", 2)
        cache.set("folder:x", 3)
        assert cache.delete_pattern("config:*") == 2
        assert cache.get("folder:x") == 3

    def test_failed_probe_disables_tier(self, caplog):
        client = make_client(ping_error=redis.ConnectionError("refused"))
        with caplog.at_level(logging.WARNING, logger="cache.distributed"):
            cache = DistributedCache(client=client)

        assert cache.connected is False
        assert cache.set("k", "v") is False
        assert cache.get("k") is None
        assert cache.delete_pattern("*") == 0
        client.set.assert_not_called()
        assert caplog.text.count("Distributed cache unavailable") == 1

    def test_runtime_error_logged_once(self, caplog):
        client = make_client()
        cache = DistributedCache(client=client)
        client.get.side_effect = redis.TimeoutError("slow")

        with caplog.at_level(logging.WARNING, logger="cache.distributed"):
            assert cache.get("a") is None
            assert cache.get("b") is None
            assert cache.set("c", 1) is False

        assert cache.connected is False
        assert caplog.text.count("Distributed cache unavailable") == 1
        assert client.get.call_count == 1

    def test_reset_reprobes(self):
        client = make_client(ping_error=redis.ConnectionError("refused"))
        cache = DistributedCache(client=client)
        assert cache.connected is False

        client.ping.side_effect = None
        client.ping.return_value = True
        assert cache.reset() is True
        assert cache.connected is True
        assert cache.set("k", "v") is True

    def test_no_url_means_disabled(self):
        cache = DistributedCache()
        assert cache.connected is False
        assert cache.get("k") is None
        assert cache.reset() is False

    def test_non_positive_ttl_not_stored(self):
        client = make_client()
        cache = DistributedCache(client=client)
        assert cache.set("k", "v", ttl=0) is False
        client.set.assert_not_called()


class TestTieredCache:
    def test_falls_back_to_local_when_distributed_down(self):
        distributed = DistributedCache(client=make_client(ping_error=redis.ConnectionError("down")))
        local = InProcessCache(sweep_interval=0)
        cache = TieredCache(distributed, local)

        assert cache.set("folder:root:a", "id1", ttl=60) is True
        assert cache.get("folder:root:a") == "id1"

    def test_prefers_distributed_value(self):
        client = make_client()
        distributed = DistributedCache(client=client)
        local = InProcessCache(sweep_interval=0)
        cache = TieredCache(distributed, local)

        cache.set("k", "old")
        client.store["assetsync:k"] = json.dumps("new")
        assert cache.get("k") == "new"

    def test_local_used_on_distributed_miss(self):
        client = make_client()
        cache = TieredCache(DistributedCache(client=client), InProcessCache(sweep_interval=0))
        cache.set("k", "v")
        client.store.clear()
        assert cache.get("k") == "v"

    def test_delete_pattern_hits_both(self):
        client = make_client()
        local = InProcessCache(sweep_interval=0)
        cache = TieredCache(DistributedCache(client=client), local)
        cache.set("config:a", 1)
        cache.set("config:b", 2)
        local.set("config:c", 3)

        assert cache.delete_pattern("config:*") == 3
        assert cache.get("config:a") is None
        assert client.store == {}

    def test_stats(self):
        cache = TieredCache(DistributedCache(), InProcessCache(sweep_interval=0))
        stats = cache.stats()
        assert stats['distributed']['connected'] is False
        assert stats['local']['type'] == 'memory'
