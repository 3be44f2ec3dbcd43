"""Tests for ConfigResolver and ConfigStore."""

import sqlite3

import pytest

from assetsync.config import (
    DEFAULTS,
    ENV_VARS,
    ConfigResolver,
    ConfigSource,
    StorageKey,
    coerce_key,
    validate_defaults,
)
from assetsync.config_store import ConfigStore
from cache import InProcessCache


@pytest.fixture
def store(tmp_path):
    s = ConfigStore(str(tmp_path / "config.db"))
    yield s
    s.close()


@pytest.fixture
def cache():
    return InProcessCache(sweep_interval=0)


class BrokenStore:
    def get(self, key):
        raise sqlite3.OperationalError("database is locked")


class TestKeyTable:
    def test_every_key_has_default_and_env_var(self):
        validate_defaults()
        assert set(DEFAULTS) == set(StorageKey)
        assert set(ENV_VARS) == set(StorageKey)

    def test_incomplete_defaults_rejected(self):
        partial = dict(DEFAULTS)
        del partial[StorageKey.PASSPORTS]
        with pytest.raises(ValueError, match="PASSPORTS"):
            ConfigResolver(defaults=partial)

    def test_coerce_key_forms(self):
        assert coerce_key(StorageKey.ROOT) is StorageKey.ROOT
        assert coerce_key("ROOT") is StorageKey.ROOT
        assert coerce_key("root") is StorageKey.ROOT
        assert coerce_key("google_drive_passport_folder_id") is StorageKey.PASSPORTS

    def test_unknown_key(self):
        with pytest.raises(ValueError):
            coerce_key("NOT_A_KEY")


class TestResolve:
    def test_default(self):
        resolver = ConfigResolver(environ={})
        entry = resolver.resolve(StorageKey.CONTRACTS)
        assert entry.value == DEFAULTS[StorageKey.CONTRACTS]
        assert entry.source == ConfigSource.DEFAULT

    def test_environment_beats_default(self):
        resolver = ConfigResolver(environ={'GOOGLE_DRIVE_CONTRACTS_FOLDER_ID': 'env-id'})
        entry = resolver.resolve(StorageKey.CONTRACTS)
        assert entry.value == 'env-id'
        assert entry.source == ConfigSource.ENVIRONMENT

    def test_persisted_beats_environment(self, store):
        store.set(StorageKey.CONTRACTS.value, 'db-id')
        resolver = ConfigResolver(store=store, environ={'GOOGLE_DRIVE_CONTRACTS_FOLDER_ID': 'env-id'})
        entry = resolver.resolve("CONTRACTS")
        assert entry.value == 'db-id'
        assert entry.source == ConfigSource.PERSISTED

    def test_empty_values_fall_through(self, store):
        store.set(StorageKey.CONTRACTS.value, '')
        resolver = ConfigResolver(store=store, environ={'GOOGLE_DRIVE_CONTRACTS_FOLDER_ID': ''})
        assert resolver.resolve(StorageKey.CONTRACTS).source == ConfigSource.DEFAULT

    def test_env_var_mapping_uses_legacy_names(self):
        resolver = ConfigResolver(environ={'GOOGLE_DRIVE_UPLOADS_PROFILES_FOLDER_ID': 'p'})
        assert resolver.resolve_value(StorageKey.PROFILES) == 'p'

    def test_store_failure_is_not_fatal(self, caplog):
        resolver = ConfigResolver(store=BrokenStore(), environ={'GOOGLE_DRIVE_ROOT_FOLDER_ID': 'env-root'})
        entry = resolver.resolve(StorageKey.ROOT)
        assert entry.value == 'env-root'
        assert "Persisted config read failed" in caplog.text

    def test_resolve_all_lists_every_key(self, store):
        store.set(StorageKey.ROOT.value, 'db-root')
        resolver = ConfigResolver(store=store, environ={})
        entries = {e.key: e for e in resolver.resolve_all()}
        assert set(entries) == set(StorageKey)
        assert entries[StorageKey.ROOT].source == ConfigSource.PERSISTED


class TestCachingAndOverrides:
    def test_resolution_is_memoised(self, store, cache):
        resolver = ConfigResolver(store=store, cache=cache, environ={})
        resolver.resolve(StorageKey.ROOT)
        assert cache.get("config:google_drive_root_folder_id") == {
            'value': DEFAULTS[StorageKey.ROOT], 'source': 'default'}

        store.set(StorageKey.ROOT.value, 'sneaky')
        assert resolver.resolve_value(StorageKey.ROOT) == DEFAULTS[StorageKey.ROOT]

    def test_set_override_invalidates_cache(self, store, cache):
        resolver = ConfigResolver(store=store, cache=cache, environ={})
        resolver.resolve(StorageKey.ROOT)

        entry = resolver.set_override(StorageKey.ROOT, 'new-root')
        assert entry.value == 'new-root'
        assert entry.source == ConfigSource.PERSISTED
        assert resolver.resolve_value(StorageKey.ROOT) == 'new-root'

    def test_clear_override(self, store, cache):
        resolver = ConfigResolver(store=store, cache=cache, environ={'GOOGLE_DRIVE_ROOT_FOLDER_ID': 'env-root'})
        resolver.set_override("ROOT", 'db-root')
        entry = resolver.clear_override("ROOT")
        assert entry.value == 'env-root'
        assert store.get(StorageKey.ROOT.value) is None

    def test_override_without_store(self):
        resolver = ConfigResolver(environ={})
        with pytest.raises(RuntimeError):
            resolver.set_override(StorageKey.ROOT, 'x')

    def test_empty_override_rejected(self, store):
        resolver = ConfigResolver(store=store, environ={})
        with pytest.raises(ValueError):
            resolver.set_override(StorageKey.ROOT, '')


class TestConfigStore:
    def test_set_get_delete(self, store):
        store.set("k", "v")
        assert store.get("k") == "v"
        assert store.all() == {"k": "v"}
        assert store.delete("k") is True
        assert store.delete("k") is False
        assert store.get("k") is None

    def test_persists_across_connections(self, tmp_path):
        path = str(tmp_path / "nested" / "config.db")
        first = ConfigStore(path)
        first.set("k", "v")
        first.close()

        second = ConfigStore(path)
        assert second.get("k") == "v"
        second.close()
