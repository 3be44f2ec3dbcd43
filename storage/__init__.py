"""Remote object store abstraction for assetsync.

Provides a uniform interface for asset storage across different backends:
- GDriveStore: Google Drive (tables written as Google Sheets)
- LocalStore: Local filesystem (tables written as CSV)

Usage:
    from storage import create_storage

    store = create_storage("gdrive:folder_id")
    store = create_storage("local:/path/to/folder")
"""

from .base import (
    AssetRecord,
    AuthConfigError,
    FolderRecord,
    NetworkTimeout,
    NotFoundError,
    ObjectStore,
    PermissionDenied,
    RateLimited,
    StorageError,
    UploadResult,
    Visibility,
)
from .folders import FolderHierarchyResolver
from .gdrive import GDriveStore, drive_file_url, extract_file_id
from .local import LocalStore


def create_storage(uri: str, **kwargs) -> ObjectStore:
    """Create an object store from a URI.

    Args:
        uri: Storage URI in one of these formats:
            - gdrive:folder_id (empty or 'root' for the drive root)
            - local:/path/to/folder
        **kwargs: Passed to the GDriveStore constructor

    Returns:
        ObjectStore instance for the specified backend

    Raises:
        ValueError: If URI format is invalid
    """
    storage_type, value = parse_storage_uri(uri)
    if storage_type == "local":
        return LocalStore(value)
    return GDriveStore(value or "root", **kwargs)


def parse_storage_uri(uri: str) -> tuple:
    """Parse a storage URI into (type, value) tuple.

    Args:
        uri: Storage URI (e.g., 'gdrive:abc123', 'local:/path')

    Returns:
        Tuple of (storage_type, value) where storage_type is 'gdrive' or 'local'

    Raises:
        ValueError: If URI format is invalid
    """
    if uri.startswith("gdrive:"):
        return ("gdrive", uri[7:])
    elif uri.startswith("local:"):
        return ("local", uri[6:])
    else:
        raise ValueError(
            f"Invalid storage URI: {uri}. "
            "Must start with 'gdrive:' or 'local:'"
        )


__all__ = [
    'AssetRecord',
    'AuthConfigError',
    'FolderHierarchyResolver',
    'FolderRecord',
    'GDriveStore',
    'LocalStore',
    'NetworkTimeout',
    'NotFoundError',
    'ObjectStore',
    'PermissionDenied',
    'RateLimited',
    'StorageError',
    'UploadResult',
    'Visibility',
    'create_storage',
    'drive_file_url',
    'extract_file_id',
    'parse_storage_uri',
]
