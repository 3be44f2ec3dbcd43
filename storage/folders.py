"""Idempotent multi-level folder resolution on top of an ObjectStore."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .base import ObjectStore

logger = logging.getLogger(__name__)

FOLDER_CACHE_PREFIX = "folder"


def split_path(path: Union[str, Sequence[str]]) -> List[str]:
    """Split ``"a/b/c"`` (or a list of segments) into non-empty segments."""
    if isinstance(path, str):
        segments = path.split('/')
    else:
        segments = list(path)
    return [s.strip() for s in segments if s and s.strip()]


def segment_name(value: object) -> str:
    """Make a single folder name out of an arbitrary value."""
    return str(value).replace('/', '-').strip()


class FolderHierarchyResolver:
    """Creates folder paths once and reuses them afterwards.

    Each segment is resolved with find-or-create under a lock keyed by
    ``(parent_id, name)``, so concurrent first-time callers in this process
    never create duplicate folders. Resolved paths are memoised in the cache
    for ``ttl`` seconds; the store stays the source of truth.
    """

    def __init__(self, store: ObjectStore, cache=None, ttl: int = 600) -> None:
        self.store = store
        self.cache = cache
        self.ttl = ttl
        # (parent_id, name) -> [lock, number of callers holding or waiting]
        self._locks: Dict[Tuple[Optional[str], str], List] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _locked(self, parent_id: Optional[str], name: str) -> Iterator[None]:
        """Hold the find-or-create lock for one folder name under one parent."""
        key = (parent_id, name)
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def _cache_key(self, root_id: Optional[str], segments: List[str]) -> str:
        return f"{FOLDER_CACHE_PREFIX}:{root_id or 'root'}:{'/'.join(segments)}"

    def ensure(self, name: str, parent_id: Optional[str] = None) -> str:
        """Find or create a single folder under ``parent_id``."""
        with self._locked(parent_id, name):
            return self.store.find_or_create_folder(name, parent_id)

    def resolve(self, path: Union[str, Sequence[str]], root_id: Optional[str] = None) -> Optional[str]:
        """Resolve a folder path below ``root_id``, creating missing folders.

        Args:
            path: "a/b/c" or a sequence of segment names
            root_id: Folder the path starts from; None for the store root

        Returns:
            ID of the last folder in the path, or ``root_id`` for an empty path
        """
        segments = split_path(path)
        if not segments:
            return root_id

        key = self._cache_key(root_id, segments)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached:
                return cached

        parent_id = root_id
        for name in segments:
            parent_id = self.ensure(name, parent_id)

        logger.debug("Resolved folder path %s -> %s", '/'.join(segments), parent_id)
        if self.cache is not None:
            self.cache.set(key, parent_id, self.ttl)
        return parent_id

    def entity_folder(self, entity_type: str, entity_id: object, entity_name: str,
                      document_type: str, root_id: Optional[str] = None) -> Optional[str]:
        """Resolve ``<entity-type>/<entity-id>_<entity-name>/<document-type>``."""
        return self.resolve([
            segment_name(entity_type),
            segment_name(f"{entity_id}_{entity_name}"),
            segment_name(document_type),
        ], root_id)

    def invalidate(self, prefix: str = "") -> int:
        """Forget memoised paths whose cache key starts with ``folder:<prefix>``."""
        if self.cache is None:
            return 0
        return self.cache.delete_pattern(f"{FOLDER_CACHE_PREFIX}:{prefix}*")
