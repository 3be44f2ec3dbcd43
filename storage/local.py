"""Local filesystem object store."""

import csv
import logging
import mimetypes
import os
import re
import shutil
import threading
from typing import Any, BinaryIO, List, Optional, Sequence, Set, Tuple
from urllib.parse import unquote, urlparse

from .base import (
    AssetRecord,
    FolderRecord,
    NotFoundError,
    ObjectStore,
    PermissionDenied,
    StorageError,
    UploadResult,
    Visibility,
)

logger = logging.getLogger(__name__)

# Per-folder list of objects shared publicly, one file name per line.
PUBLIC_MARKER = ".public"


class LocalStore(ObjectStore):
    """Object store on the local filesystem.

    Folder and object IDs are paths relative to ``root_path`` ('' is the
    root). Public visibility is recorded in a marker file per folder. Used
    for development and for mirroring backups onto a mounted volume.
    """

    def __init__(self, root_path: str) -> None:
        """Initialize local store.

        Args:
            root_path: Path to the root directory

        Raises:
            StorageError: If root_path doesn't exist
        """
        self.root_path = os.path.abspath(root_path)
        if not os.path.exists(self.root_path):
            raise StorageError(f"Directory does not exist: {self.root_path}")
        if not os.path.isdir(self.root_path):
            raise StorageError(f"Not a directory: {self.root_path}")
        self._marker_lock = threading.Lock()

    @property
    def display_name(self) -> str:
        return f"{self.root_path} (local)"

    def _full_path(self, path: Optional[str]) -> str:
        """Convert a relative ID to an absolute path inside the root."""
        if not path or path == 'root':
            return self.root_path
        full = os.path.normpath(os.path.join(self.root_path, path))
        if os.path.commonpath([full, self.root_path]) != self.root_path:
            raise StorageError(f"Path escapes the store root: {path}")
        return full

    def _relative(self, full_path: str) -> str:
        rel = os.path.relpath(full_path, self.root_path)
        return '' if rel == '.' else rel.replace(os.sep, '/')

    # =========================================================================
    # Folders
    # =========================================================================

    def find_folder(self, name: str, parent_id: Optional[str] = None) -> Optional[str]:
        full = os.path.join(self._full_path(parent_id), self.sanitize_filename(name))
        if os.path.isdir(full):
            return self._relative(full)
        return None

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        parent = self._full_path(parent_id)
        if not os.path.isdir(parent):
            raise NotFoundError(f"Parent folder does not exist: {parent_id}")
        full = os.path.join(parent, self.sanitize_filename(name))
        try:
            os.makedirs(full, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create folder {name}: {e}") from e
        logger.info("Created folder %s", full)
        return self._relative(full)

    def list_folders(self, parent_id: Optional[str] = None) -> List[FolderRecord]:
        parent = self._full_path(parent_id)
        if not os.path.isdir(parent):
            raise NotFoundError(f"Folder does not exist: {parent_id}")

        results = []
        for name in sorted(os.listdir(parent)):
            abs_path = os.path.join(parent, name)
            if os.path.isdir(abs_path):
                results.append(FolderRecord(
                    name=name,
                    parent_id=self._relative(parent),
                    remote_folder_id=self._relative(abs_path),
                ))
        return results

    def rename_folder(self, folder_id: str, new_name: str) -> None:
        full = self._full_path(folder_id)
        if not os.path.isdir(full):
            raise NotFoundError(f"Folder does not exist: {folder_id}")
        target = os.path.join(os.path.dirname(full), self.sanitize_filename(new_name))
        try:
            os.rename(full, target)
        except OSError as e:
            raise StorageError(f"Failed to rename folder {folder_id}: {e}") from e

    # =========================================================================
    # Objects
    # =========================================================================

    def _claim_path(self, folder: str, file_name: str) -> Tuple[str, BinaryIO]:
        """Create a new, empty file that doesn't overwrite an existing object.

        The name is claimed with an exclusive create, so concurrent callers
        asking for the same name each get their own file.

        Returns:
            Tuple of (path, file opened for writing)
        """
        base, ext = os.path.splitext(file_name)
        candidate = os.path.join(folder, file_name)
        counter = 1
        while True:
            try:
                return candidate, open(candidate, 'xb')
            except FileExistsError:
                candidate = os.path.join(folder, f"{base} ({counter}){ext}")
                counter += 1

    def _read_marker(self, folder: str) -> Set[str]:
        marker = os.path.join(folder, PUBLIC_MARKER)
        if not os.path.exists(marker):
            return set()
        with open(marker, 'r', encoding='utf-8') as f:
            return {line.strip() for line in f if line.strip()}

    def _write_marker(self, folder: str, names: Set[str]) -> None:
        marker = os.path.join(folder, PUBLIC_MARKER)
        if not names:
            if os.path.exists(marker):
                os.remove(marker)
            return
        with open(marker, 'w', encoding='utf-8') as f:
            f.write('\n'.join(sorted(names)) + '\n')

    def _set_public(self, folder: str, name: str, public: bool) -> None:
        with self._marker_lock:
            names = self._read_marker(folder)
            if public:
                names.add(name)
            else:
                names.discard(name)
            self._write_marker(folder, names)

    def upload(self, folder_id: str, file_name: str, mime_type: str, data: bytes,
               visibility: Visibility = Visibility.PRIVATE) -> UploadResult:
        visibility = Visibility(visibility)
        folder = self._full_path(folder_id)
        if not os.path.isdir(folder):
            raise NotFoundError(f"Folder does not exist: {folder_id}")

        try:
            dest, f = self._claim_path(folder, self.sanitize_filename(file_name))
        except OSError as e:
            raise StorageError(f"Failed to write {file_name}: {e}") from e

        try:
            with f:
                f.write(data)
        except OSError as e:
            self._discard_orphan(dest)
            raise StorageError(f"Failed to write {file_name}: {e}") from e

        if visibility == Visibility.PUBLIC:
            try:
                self._set_public(folder, os.path.basename(dest), True)
            except OSError as e:
                self._discard_orphan(dest)
                raise PermissionDenied(f"Could not make '{file_name}' public: {e}") from e

        return UploadResult(object_id=self._relative(dest), url=_file_uri(dest))

    def _discard_orphan(self, path: str) -> None:
        try:
            os.remove(path)
        except OSError as e:
            logger.error("Failed to delete orphaned upload %s: %s", path, e)

    def _object_path(self, object_id_or_url: str) -> str:
        if object_id_or_url.startswith('file://'):
            path = unquote(urlparse(object_id_or_url).path)
            return self._full_path(os.path.relpath(path, self.root_path))
        return self._full_path(object_id_or_url)

    def delete(self, object_id_or_url: str) -> bool:
        full = self._object_path(object_id_or_url)
        if not os.path.exists(full):
            logger.info("Object %s already deleted", object_id_or_url)
            return True
        if not os.path.isfile(full):
            raise StorageError(f"Not an object: {object_id_or_url}")

        try:
            os.remove(full)
            self._set_public(os.path.dirname(full), os.path.basename(full), False)
        except OSError as e:
            raise StorageError(f"Failed to delete {object_id_or_url}: {e}") from e
        return True

    def move(self, object_id: str, to_folder_id: str,
             from_folder_id: Optional[str] = None) -> bool:
        full_src = self._object_path(object_id)
        if not os.path.isfile(full_src):
            raise NotFoundError(f"Source object does not exist: {object_id}")
        if from_folder_id is not None and self._full_path(from_folder_id) != os.path.dirname(full_src):
            raise StorageError(f"{object_id} is not in folder {from_folder_id}")

        dest_folder = self._full_path(to_folder_id)
        if not os.path.isdir(dest_folder):
            raise NotFoundError(f"Destination folder does not exist: {to_folder_id}")

        name = os.path.basename(full_src)
        src_folder = os.path.dirname(full_src)
        if src_folder == dest_folder:
            return True

        # Objects already in the destination are kept; the moved one is renamed.
        try:
            dest, placeholder = self._claim_path(dest_folder, name)
            placeholder.close()
        except OSError as e:
            raise StorageError(f"Failed to move {object_id} to {to_folder_id}: {e}") from e

        was_public = name in self._read_marker(src_folder)
        try:
            shutil.move(full_src, dest)
        except OSError as e:
            self._discard_orphan(dest)
            raise StorageError(f"Failed to move {object_id} to {to_folder_id}: {e}") from e

        new_name = os.path.basename(dest)
        if new_name != name:
            logger.info("Moved %s to %s as %s", object_id, to_folder_id, new_name)
        if was_public:
            try:
                self._set_public(src_folder, name, False)
                self._set_public(dest_folder, new_name, True)
            except OSError as e:
                raise StorageError(f"Moved {object_id} but could not update visibility: {e}") from e
        return True

    def list_folder_contents(self, folder_id: str) -> List[AssetRecord]:
        folder = self._full_path(folder_id)
        if not os.path.isdir(folder):
            raise NotFoundError(f"Folder does not exist: {folder_id}")

        public = self._read_marker(folder)
        results = []
        for filename in sorted(os.listdir(folder)):
            abs_path = os.path.join(folder, filename)
            if filename.startswith('.') or not os.path.isfile(abs_path):
                continue

            try:
                size = os.path.getsize(abs_path)
            except OSError:
                size = None

            results.append(AssetRecord(
                logical_name=filename,
                remote_object_id=self._relative(abs_path),
                parent_folder_id=self._relative(folder),
                mime_type=mimetypes.guess_type(filename)[0] or 'application/octet-stream',
                size_bytes=size,
                visibility=Visibility.PUBLIC if filename in public else Visibility.PRIVATE,
                url=_file_uri(abs_path),
            ))
        return results

    def write_table(self, folder_id: str, name: str, header: Sequence[str],
                    rows: Sequence[Sequence[Any]]) -> str:
        folder = self._full_path(folder_id)
        if not os.path.isdir(folder):
            raise NotFoundError(f"Folder does not exist: {folder_id}")

        dest = os.path.join(folder, f"{self.sanitize_filename(name)}.csv")
        try:
            with open(dest, 'w', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)
                writer.writerow(header)
                writer.writerows(rows)
        except OSError as e:
            raise StorageError(f"Failed to write table {name}: {e}") from e
        return self._relative(dest)

    def sanitize_filename(self, name: str) -> str:
        """Sanitize a file or folder name for the local filesystem.

        Removes characters that are invalid on most filesystems:
        / \\ : * ? \" < > |
        """
        name = name.replace('/', '-')
        name = name.replace('\\', '-')
        name = name.replace(':', '-')
        name = name.replace('*', '')
        name = name.replace('?', '')
        name = name.replace('"', "'")
        name = name.replace('<', '')
        name = name.replace('>', '')
        name = name.replace('|', '-')

        name = name.strip().strip('.')
        name = re.sub(r'\s+', ' ', name)
        name = re.sub(r'-+', '-', name)

        if len(name) > 100:
            name = name[:100].strip()

        if not name:
            raise StorageError("Name is empty after sanitizing")
        return name


def _file_uri(path: str) -> str:
    return 'file://' + os.path.abspath(path).replace(os.sep, '/')
