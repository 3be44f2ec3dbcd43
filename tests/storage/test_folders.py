"""Tests for FolderHierarchyResolver."""

import threading

import pytest

from storage import FolderHierarchyResolver, PermissionDenied
from storage.folders import split_path
from storage.gdrive import FOLDER_MIME


@pytest.fixture
def resolver(gdrive_store, memory_cache):
    return FolderHierarchyResolver(gdrive_store, cache=memory_cache)


class TestSplitPath:
    def test_string(self):
        assert split_path("a/b/c") == ["a", "b", "c"]

    def test_ignores_empty_segments(self):
        assert split_path("/a//b/ ") == ["a", "b"]

    def test_sequence(self):
        assert split_path(["a", "", "b"]) == ["a", "b"]


class TestResolve:
    """Tests for resolve()."""

    def test_creates_each_level_once(self, resolver, fake_drive):
        leaf = resolver.resolve("customers/42_Kim/passport")

        customers = fake_drive.children('root', FOLDER_MIME)
        assert [f['name'] for f in customers] == ["customers"]
        entity = fake_drive.children(customers[0]['id'], FOLDER_MIME)
        assert [f['name'] for f in entity] == ["42_Kim"]
        assert fake_drive.items[leaf]['parents'] == [entity[0]['id']]

    def test_second_resolve_hits_cache(self, resolver, fake_drive):
        first = resolver.resolve("a/b")
        calls = len(fake_drive.calls)
        assert resolver.resolve("a/b") == first
        assert len(fake_drive.calls) == calls

    def test_without_cache_still_idempotent(self, gdrive_store, fake_drive):
        resolver = FolderHierarchyResolver(gdrive_store)
        assert resolver.resolve("a/b") == resolver.resolve("a/b")
        assert len(fake_drive.children('root', FOLDER_MIME)) == 1

    def test_empty_path_returns_root(self, resolver):
        assert resolver.resolve("", "base") == "base"

    def test_relative_to_root_id(self, resolver, fake_drive):
        base = fake_drive.add_folder("Backups")
        leaf = resolver.resolve("Daily_Reports", base)
        assert fake_drive.items[leaf]['parents'] == [base]

    def test_entity_folder(self, resolver, fake_drive):
        leaf = resolver.entity_folder("contracts", 7, "Lee/Park", "signature")

        names = []
        folder_id = leaf
        while folder_id != 'root':
            item = fake_drive.items[folder_id]
            names.insert(0, item['name'])
            folder_id = item['parents'][0]
        assert names == ["contracts", "7_Lee-Park", "signature"]

    def test_concurrent_first_resolution_creates_one_folder(self, resolver, fake_drive):
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(resolver.resolve("shared/leaf"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(results)) == 1
        assert len(fake_drive.children('root', FOLDER_MIME)) == 1
        assert resolver._locks == {}

    def test_locks_released_after_resolution(self, gdrive_store):
        resolver = FolderHierarchyResolver(gdrive_store)
        for i in range(50):
            resolver.resolve(f"customer-{i}/passport")
        assert resolver._locks == {}

    def test_lock_released_when_store_fails(self, gdrive_store, fake_drive):
        resolver = FolderHierarchyResolver(gdrive_store)
        fake_drive.fail('files.create', 403, 'insufficientFilePermissions')

        with pytest.raises(PermissionDenied):
            resolver.ensure("locked-out")
        assert resolver._locks == {}
        assert resolver.ensure("locked-out")

    def test_invalidate_drops_memoised_paths(self, resolver, fake_drive, memory_cache):
        folder_id = resolver.resolve("a/b")
        assert resolver.invalidate() == 1

        fake_drive.items[folder_id]['name'] = "renamed"
        new_id = resolver.resolve("a/b")
        assert new_id != folder_id
