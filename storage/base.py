"""Base classes for remote object stores.

This module defines the interface every storage backend implements, the
records it hands back, and the error taxonomy callers branch on.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class AuthConfigError(StorageError):
    """Credential material is missing or malformed.

    Raised while a store is being constructed, never per call. Startup
    should abort when it sees this.
    """
    pass


class NotFoundError(StorageError):
    """The referenced object or folder does not exist."""
    pass


class PermissionDenied(StorageError):
    """The remote refused an operation, or a permission grant failed."""
    pass


class RateLimited(StorageError):
    """The remote API throttled the request. Not retried by this layer."""
    pass


class NetworkTimeout(StorageError):
    """The request did not complete within the client's timeout."""
    pass


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class AssetRecord:
    """A binary object held by the remote store.

    Attributes:
        logical_name: File name as given at upload time
        remote_object_id: Backend-specific identifier (e.g., Drive file ID)
        parent_folder_id: Folder that contains the object
        mime_type: Content type
        size_bytes: Size in bytes, if the backend reports it
        visibility: PUBLIC when anyone with the link can read it
        url: Link suitable for embedding or download
    """
    logical_name: str
    remote_object_id: str
    parent_folder_id: str
    mime_type: str
    size_bytes: Optional[int]
    visibility: Visibility
    url: Optional[str] = None


@dataclass(frozen=True)
class FolderRecord:
    """A folder in the remote hierarchy.

    At most one folder exists per (name, parent_id) pair when created
    through ``find_or_create_folder``.
    """
    name: str
    parent_id: Optional[str]
    remote_folder_id: str


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a successful upload."""
    object_id: str
    url: str


class ObjectStore(ABC):
    """Abstract base class for remote object stores.

    All backends (Google Drive, local filesystem) implement this interface.
    Folder and object identifiers are opaque strings owned by the backend.
    """

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name for this store (e.g., 'Backups (Google Drive)')."""
        pass

    # =========================================================================
    # Folders
    # =========================================================================

    @abstractmethod
    def find_folder(self, name: str, parent_id: Optional[str] = None) -> Optional[str]:
        """Look up a folder by exact name under a parent.

        Args:
            name: Folder name
            parent_id: Parent folder ID, or None for the store root

        Returns:
            The folder ID, or None if no such folder exists
        """
        pass

    @abstractmethod
    def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        """Create a folder unconditionally and return its ID."""
        pass

    def find_or_create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        """Return the folder named ``name`` under ``parent_id``, creating it if absent.

        Sequential calls with the same arguments return the same ID. Concurrent
        first-time callers may race; serialise through FolderHierarchyResolver
        when that matters.
        """
        folder_id = self.find_folder(name, parent_id)
        if folder_id:
            return folder_id
        return self.create_folder(name, parent_id)

    @abstractmethod
    def list_folders(self, parent_id: Optional[str] = None) -> List[FolderRecord]:
        """List immediate subfolders of a folder."""
        pass

    @abstractmethod
    def rename_folder(self, folder_id: str, new_name: str) -> None:
        """Rename a folder in place."""
        pass

    # =========================================================================
    # Objects
    # =========================================================================

    @abstractmethod
    def upload(self, folder_id: str, file_name: str, mime_type: str, data: bytes,
               visibility: Visibility = Visibility.PRIVATE) -> UploadResult:
        """Write bytes as a new object under a folder.

        For PUBLIC uploads the object is made readable by anyone with the
        link. If that step fails the object is deleted again and
        PermissionDenied is raised: callers never see a half-created object.

        Raises:
            PermissionDenied, RateLimited, NetworkTimeout, StorageError
        """
        pass

    @abstractmethod
    def delete(self, object_id_or_url: str) -> bool:
        """Delete an object. Deleting an absent object succeeds.

        Returns:
            True once the object is gone
        """
        pass

    @abstractmethod
    def move(self, object_id: str, to_folder_id: str,
             from_folder_id: Optional[str] = None) -> bool:
        """Re-parent an object in a single remote call.

        Args:
            object_id: Object to move
            to_folder_id: Destination folder
            from_folder_id: Current folder; looked up when omitted
        """
        pass

    @abstractmethod
    def list_folder_contents(self, folder_id: str) -> List[AssetRecord]:
        """List the objects (not subfolders) directly inside a folder."""
        pass

    @abstractmethod
    def write_table(self, folder_id: str, name: str, header: Sequence[str],
                    rows: Sequence[Sequence[Any]]) -> str:
        """Overwrite the tabular object ``name`` in a folder with header + rows.

        Creates the object on first use. The write is a full replacement so
        repeating it with the same data is harmless.

        Returns:
            The object ID of the table
        """
        pass
