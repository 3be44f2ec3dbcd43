"""assetsync - Asset storage synchronisation with a tiered cache.

``AssetSync`` is the service object the rest of an application talks to.
Build one at process start (usually with ``AssetSync.from_env()``) and pass
it to whatever needs to store assets.
"""

import logging
import os
import time
from concurrent.futures import Future
from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

from cache import Cache, InProcessCache, create_cache
from storage import (
    AssetRecord,
    FolderHierarchyResolver,
    ObjectStore,
    UploadResult,
    Visibility,
    create_storage,
    parse_storage_uri,
)
from workflows.ledger import SyncLedger
from workflows.sync import CycleReport, SyncScheduler
from workflows.upload_queue import DEFAULT_MAX_CONCURRENT, UploadQueue

from .config import ConfigEntry, ConfigResolver, StorageKey
from .config_store import DB_PATH, ConfigStore
from .targets import RecordExport, SyncTarget, load_targets

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_URI = "gdrive:root"


class AssetSync:
    """Owns the store, cache, config resolver, upload queue and scheduler.

    Args:
        store: Object store backend
        cache: Cache shared by config and folder resolution (in-process if None)
        config_store: Persisted config overrides, optional
        ledger: Sync ledger of confirmed uploads, optional
        targets: Local directories synced by ``run_sync_cycle``
        exports: Record exports written by ``run_sync_cycle``
        max_concurrent: Upload queue width
        environ: Environment used for config resolution
    """

    def __init__(self, store: ObjectStore,
                 cache: Optional[Cache] = None,
                 config_store: Optional[ConfigStore] = None,
                 ledger: Optional[SyncLedger] = None,
                 targets: Sequence[SyncTarget] = (),
                 exports: Sequence[RecordExport] = (),
                 max_concurrent: int = DEFAULT_MAX_CONCURRENT,
                 environ: Optional[Mapping[str, str]] = None,
                 pace_seconds: float = 0.1,
                 grace_seconds: float = 60 * 60,
                 clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.cache = cache if cache is not None else InProcessCache()
        self.config_store = config_store
        self.ledger = ledger
        self.config = ConfigResolver(store=config_store, cache=self.cache, environ=environ)
        self.folders = FolderHierarchyResolver(store, cache=self.cache)
        self.queue = UploadQueue(max_concurrent=max_concurrent, pace_seconds=pace_seconds)
        self.scheduler = SyncScheduler(
            store=store,
            config=self.config,
            folders=self.folders,
            queue=self.queue,
            targets=targets,
            exports=exports,
            ledger=ledger,
            grace_seconds=grace_seconds,
            clock=clock,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "AssetSync":
        """Build the full service graph from environment variables.

        Keyword overrides win over the environment: ``storage_uri``,
        ``db_path``, ``redis_url``, ``targets_path``, ``max_concurrent``,
        ``store``, ``cache``, ``exports``.

        Raises:
            AuthConfigError: If Google credentials are missing or malformed
            ValueError: If STORAGE_URI or the targets file is invalid
        """
        env = os.environ if environ is None else environ

        def setting(name: str, var: str, default: Any = None) -> Any:
            value = overrides.get(name)
            if value is None:
                value = env.get(var) or default
            return value

        store = overrides.get('store')
        if store is None:
            uri = setting('storage_uri', 'STORAGE_URI', DEFAULT_STORAGE_URI)
            storage_type, _ = parse_storage_uri(uri)
            if storage_type == 'gdrive':
                store = create_storage(
                    uri,
                    service_account_file=env.get('GOOGLE_SERVICE_ACCOUNT_FILE'),
                    shared_drive_id=env.get('GOOGLE_DRIVE_SHARED_DRIVE_ID'),
                )
            else:
                store = create_storage(uri)

        cache = overrides.get('cache')
        if cache is None:
            cache = create_cache(setting('redis_url', 'REDIS_URL'))

        db_path = os.path.expanduser(setting('db_path', 'ASSETSYNC_DB', DB_PATH))
        targets_path = setting('targets_path', 'ASSETSYNC_TARGETS')
        targets = load_targets(targets_path) if targets_path else []

        logger.info("Using %s, %d sync targets", store.display_name, len(targets))
        return cls(
            store=store,
            cache=cache,
            config_store=ConfigStore(db_path),
            ledger=SyncLedger(db_path),
            targets=targets,
            exports=overrides.get('exports') or (),
            max_concurrent=int(setting('max_concurrent', 'UPLOAD_MAX_CONCURRENT', DEFAULT_MAX_CONCURRENT)),
            environ=env,
        )

    # =========================================================================
    # Folders and config
    # =========================================================================

    def resolve_folder(self, key: Union[StorageKey, str], path: Optional[str] = None) -> str:
        """Folder ID for a storage key, optionally extended by a sub-path."""
        folder_id = self.config.resolve_value(key)
        if path:
            return self.folders.resolve(path, folder_id)
        return folder_id

    def set_config(self, key: Union[StorageKey, str], value: str) -> ConfigEntry:
        return self.config.set_override(key, value)

    def clear_config(self, key: Union[StorageKey, str]) -> ConfigEntry:
        return self.config.clear_override(key)

    # =========================================================================
    # Objects
    # =========================================================================

    def upload_async(self, folder_id: str, file_name: str, mime_type: str, data: bytes,
                     visibility: Visibility = Visibility.PRIVATE) -> Future:
        """Queue an upload and return its Future."""
        return self.queue.submit(self.store.upload, folder_id, file_name, mime_type, data, visibility)

    def upload(self, folder_id: str, file_name: str, mime_type: str, data: bytes,
               visibility: Visibility = Visibility.PRIVATE) -> UploadResult:
        """Upload through the queue and wait for the result.

        Raises:
            PermissionDenied, RateLimited, NetworkTimeout, StorageError
        """
        return self.upload_async(folder_id, file_name, mime_type, data, visibility).result()

    def delete(self, object_id_or_url: str) -> bool:
        return self.store.delete(object_id_or_url)

    def move(self, object_id: str, target_folder_id: str,
             current_folder_id: Optional[str] = None) -> bool:
        return self.store.move(object_id, target_folder_id, current_folder_id)

    def list(self, folder_id: str) -> List[AssetRecord]:
        return self.store.list_folder_contents(folder_id)

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        """Run any job on the bounded upload queue."""
        return self.queue.submit(fn, *args, **kwargs)

    # =========================================================================
    # Sync
    # =========================================================================

    def run_sync_cycle(self) -> CycleReport:
        return self.scheduler.run_sync_cycle()

    def close(self) -> None:
        """Stop the queue and release cache and database handles."""
        self.queue.shutdown(wait=True)
        self.cache.close()
        if self.config_store is not None:
            self.config_store.close()
        if self.ledger is not None:
            self.ledger.close()

    def __enter__(self) -> "AssetSync":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


__all__ = [
    'AssetSync',
    'ConfigEntry',
    'ConfigResolver',
    'ConfigStore',
    'RecordExport',
    'StorageKey',
    'SyncTarget',
    '__version__',
]
