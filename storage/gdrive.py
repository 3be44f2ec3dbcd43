"""Google Drive object store."""

import io
import json
import logging
import re
import socket
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from .base import (
    AssetRecord,
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
from .credentials import load_credentials
from utils.retry import retry_on_transient_error, is_transient_server_status, log_retry

logger = logging.getLogger(__name__)

FOLDER_MIME = 'application/vnd.google-apps.folder'
SHEET_MIME = 'application/vnd.google-apps.spreadsheet'

# Drive assigns this fixed permission ID to "anyone with the link".
ANYONE_PERMISSION_ID = 'anyoneWithLink'

RATE_LIMIT_REASONS = {'rateLimitExceeded', 'userRateLimitExceeded'}

PAGE_SIZE = 100


# ---------------------------------------------------------------------------
# Google API error handling
# ---------------------------------------------------------------------------

def _http_status(exc: HttpError) -> Optional[int]:
    status = getattr(exc.resp, 'status', None)
    try:
        return int(status)
    except (TypeError, ValueError):
        return None


def _error_reason(exc: HttpError) -> str:
    """Pull the first ``reason`` out of a Google JSON error body."""
    content = exc.content
    if isinstance(content, bytes):
        content = content.decode('utf-8', errors='replace')
    try:
        payload = json.loads(content)
    except (TypeError, ValueError):
        return ""
    if not isinstance(payload, dict):
        return ""
    error = payload.get('error')
    if not isinstance(error, dict):
        return ""
    errors = error.get('errors') or []
    if errors and isinstance(errors[0], dict):
        return errors[0].get('reason', '')
    return ""


def _translate_error(exc: HttpError, action: str) -> StorageError:
    """Map a Google HttpError onto the storage error taxonomy."""
    status = _http_status(exc)
    reason = _error_reason(exc)
    message = f"{action} failed (HTTP {status}{', ' + reason if reason else ''})"

    if status == 404:
        return NotFoundError(message)
    if status == 429 or (status == 403 and reason in RATE_LIMIT_REASONS):
        return RateLimited(message)
    if status in (401, 403):
        return PermissionDenied(message)
    return StorageError(message)


def _is_retryable_gdrive_error(exc: Exception) -> bool:
    """Only 5xx answers are retried here; 429 and timeouts go to the caller."""
    return isinstance(exc, HttpError) and is_transient_server_status(_http_status(exc))


def _escape_query_value(value: str) -> str:
    """Escape a value for use in Google Drive API query strings."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------

def drive_file_url(file_id: str, is_image: bool = False) -> str:
    """Build a direct link for a Drive file.

    Images use the googleusercontent host, which serves the bytes without a
    redirect and embeds reliably in <img> tags.
    """
    if is_image:
        return f"https://lh3.googleusercontent.com/d/{file_id}"
    return f"https://drive.google.com/uc?export=download&id={file_id}"


_ID_PARAM = re.compile(r'[?&]id=([a-zA-Z0-9_-]+)')
_ID_PATH = re.compile(r'/d/([a-zA-Z0-9_-]+)')
_ID_FALLBACK = re.compile(r'([a-zA-Z0-9_-]{20,})')


def extract_file_id(file_id_or_url: str) -> str:
    """Return the Drive file ID from a bare ID or any of the usual Drive URLs.

    Raises:
        StorageError: If a URL is given but no file ID can be found in it
    """
    value = file_id_or_url.strip()
    if '://' not in value and 'id=' not in value:
        return value

    for pattern in (_ID_PARAM, _ID_PATH, _ID_FALLBACK):
        match = pattern.search(value)
        if match:
            return match.group(1)

    raise StorageError(f"Not a Google Drive file URL: {file_id_or_url}")


class GDriveStore(ObjectStore):
    """Object store backed by Google Drive.

    Uses service account authentication. Folders passed as None resolve to
    ``root_folder_id``, which falls back to the shared drive when configured.
    Tabular exports are written as native Google Sheets.
    """

    def __init__(self, root_folder_id: str = "root",
                 service: Any = None,
                 sheets_service: Any = None,
                 credentials: Any = None,
                 service_account_file: Optional[str] = None,
                 shared_drive_id: Optional[str] = None,
                 max_retries: int = 3,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        """Initialize the Google Drive store.

        Args:
            root_folder_id: Folder used when no parent is given
            service: Prebuilt Drive v3 client (built from credentials when None)
            sheets_service: Prebuilt Sheets v4 client (built lazily when None)
            credentials: Google credentials; loaded from the environment when None
            service_account_file: Key file used when loading credentials
            shared_drive_id: Shared drive used as root when root_folder_id is 'root'
            max_retries: Retries for transient 5xx answers
            sleep: Pause function for retries

        Raises:
            AuthConfigError: If credentials are missing or malformed
            StorageError: If the API client can't be built
        """
        if root_folder_id and root_folder_id != 'root':
            self.root_folder_id = root_folder_id
        else:
            self.root_folder_id = shared_drive_id or 'root'
        self.max_retries = max_retries
        self._sleep = sleep
        self._sheets = sheets_service
        self.creds = credentials

        if service is None:
            if self.creds is None:
                self.creds = load_credentials(service_account_file)
            try:
                service = build('drive', 'v3', credentials=self.creds, cache_discovery=False)
            except Exception as e:
                raise StorageError(f"Failed to initialize Google Drive: {e}") from e
        self.service = service

    @property
    def display_name(self) -> str:
        return f"{self.root_folder_id} (Google Drive)"

    @property
    def sheets(self) -> Any:
        if self._sheets is None:
            if self.creds is None:
                raise StorageError("Google Sheets client needs credentials")
            try:
                self._sheets = build('sheets', 'v4', credentials=self.creds, cache_discovery=False)
            except Exception as e:
                raise StorageError(f"Failed to initialize Google Sheets: {e}") from e
        return self._sheets

    def _parent(self, folder_id: Optional[str]) -> str:
        if not folder_id or folder_id == 'root':
            return self.root_folder_id
        return folder_id

    def _execute(self, request: Any, action: str) -> Dict:
        """Execute an API request, retrying 5xx and translating failures."""
        @retry_on_transient_error(
            is_retryable=_is_retryable_gdrive_error,
            max_retries=self.max_retries,
            base_delay=1.0,
            max_delay=30.0,
            on_retry=log_retry,
            sleep=self._sleep,
        )
        def execute():
            return request.execute()

        try:
            return execute() or {}
        except HttpError as e:
            raise _translate_error(e, action) from e
        except (TimeoutError, socket.timeout, ConnectionError,
                httplib2.HttpLib2Error, TransportError) as e:
            raise NetworkTimeout(f"{action} failed: {e}") from e
        except RefreshError as e:
            raise PermissionDenied(f"{action} failed: credentials rejected: {e}") from e
        except OSError as e:
            raise StorageError(f"{action} failed: {e}") from e

    # =========================================================================
    # Folders
    # =========================================================================

    def find_folder(self, name: str, parent_id: Optional[str] = None) -> Optional[str]:
        parent = self._parent(parent_id)
        escaped = _escape_query_value(name)
        results = self._execute(self.service.files().list(
            q=f"name='{escaped}' and mimeType='{FOLDER_MIME}' and '{parent}' in parents and trashed=false",
            fields="files(id, name)",
            pageSize=1,
            supportsAllDrives=True,
            includeItemsFromAllDrives=True,
        ), f"Find folder '{name}'")

        items = results.get('files', [])
        return items[0]['id'] if items else None

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        parent = self._parent(parent_id)
        folder = self._execute(self.service.files().create(
            body={
                'name': name,
                'mimeType': FOLDER_MIME,
                'parents': [parent],
            },
            fields='id',
            supportsAllDrives=True,
        ), f"Create folder '{name}'")

        folder_id = folder.get('id')
        if not folder_id:
            raise StorageError(f"Create folder '{name}' returned no folder ID")
        logger.info("Created folder '%s' (%s) under %s", name, folder_id, parent)
        return folder_id

    def list_folders(self, parent_id: Optional[str] = None) -> List[FolderRecord]:
        parent = self._parent(parent_id)
        results = []
        page_token = None

        while True:
            response = self._execute(self.service.files().list(
                q=f"'{parent}' in parents and trashed=false and mimeType='{FOLDER_MIME}'",
                pageSize=PAGE_SIZE,
                fields="nextPageToken, files(id, name)",
                pageToken=page_token,
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            ), f"List folders in {parent}")

            for item in response.get('files', []):
                results.append(FolderRecord(
                    name=item['name'],
                    parent_id=parent,
                    remote_folder_id=item['id'],
                ))

            page_token = response.get('nextPageToken')
            if not page_token:
                break

        return results

    def rename_folder(self, folder_id: str, new_name: str) -> None:
        self._execute(self.service.files().update(
            fileId=folder_id,
            body={'name': new_name},
            fields='id, name',
            supportsAllDrives=True,
        ), f"Rename folder {folder_id}")

    # =========================================================================
    # Objects
    # =========================================================================

    def upload(self, folder_id: str, file_name: str, mime_type: str, data: bytes,
               visibility: Visibility = Visibility.PRIVATE) -> UploadResult:
        visibility = Visibility(visibility)
        mime_type = mime_type or 'application/octet-stream'
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=False)

        created = self._execute(self.service.files().create(
            body={
                'name': file_name,
                'mimeType': mime_type,
                'parents': [self._parent(folder_id)],
            },
            media_body=media,
            fields='id',
            supportsAllDrives=True,
        ), f"Upload '{file_name}'")

        object_id = created.get('id')
        if not object_id:
            raise StorageError(f"Upload '{file_name}' returned no file ID")

        if visibility == Visibility.PUBLIC:
            try:
                self._execute(self.service.permissions().create(
                    fileId=object_id,
                    body={'role': 'reader', 'type': 'anyone'},
                    supportsAllDrives=True,
                ), f"Share '{file_name}'")
            except Exception as e:
                logger.error("Permission grant failed for %s (%s): %s", file_name, object_id, e)
                self._discard_orphan(object_id)
                if isinstance(e, StorageError):
                    raise
                raise StorageError(f"Could not make '{file_name}' public: {e}") from e

        url = drive_file_url(object_id, is_image=mime_type.startswith('image/'))
        logger.info("Uploaded '%s' as %s (%s)", file_name, object_id, visibility.value)
        return UploadResult(object_id=object_id, url=url)

    def _discard_orphan(self, object_id: str) -> None:
        """Delete an object left behind by a failed upload. Failures are only logged."""
        try:
            self._execute(self.service.files().delete(
                fileId=object_id,
                supportsAllDrives=True,
            ), f"Delete orphan {object_id}")
        except NotFoundError:
            pass
        except Exception as e:
            logger.error("Failed to delete orphaned upload %s: %s", object_id, e)

    def delete(self, object_id_or_url: str) -> bool:
        file_id = extract_file_id(object_id_or_url)
        try:
            self._execute(self.service.files().delete(
                fileId=file_id,
                supportsAllDrives=True,
            ), f"Delete {file_id}")
        except NotFoundError:
            logger.info("File %s already deleted", file_id)
            return True
        logger.info("Deleted %s", file_id)
        return True

    def move(self, object_id: str, to_folder_id: str,
             from_folder_id: Optional[str] = None) -> bool:
        if from_folder_id:
            previous_parents = from_folder_id
        else:
            item = self._execute(self.service.files().get(
                fileId=object_id,
                fields='parents',
                supportsAllDrives=True,
            ), f"Get parents of {object_id}")
            previous_parents = ','.join(item.get('parents', []))

        self._execute(self.service.files().update(
            fileId=object_id,
            addParents=self._parent(to_folder_id),
            removeParents=previous_parents,
            fields='id, parents',
            supportsAllDrives=True,
        ), f"Move {object_id}")
        return True

    def list_folder_contents(self, folder_id: str) -> List[AssetRecord]:
        parent = self._parent(folder_id)
        results = []
        page_token = None

        while True:
            response = self._execute(self.service.files().list(
                q=f"'{parent}' in parents and trashed=false and mimeType!='{FOLDER_MIME}'",
                pageSize=PAGE_SIZE,
                fields="nextPageToken, files(id, name, mimeType, size, permissionIds)",
                pageToken=page_token,
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            ), f"List files in {parent}")

            for item in response.get('files', []):
                mime_type = item.get('mimeType', '')
                is_public = ANYONE_PERMISSION_ID in (item.get('permissionIds') or [])
                results.append(AssetRecord(
                    logical_name=item['name'],
                    remote_object_id=item['id'],
                    parent_folder_id=parent,
                    mime_type=mime_type,
                    size_bytes=int(item['size']) if item.get('size') else None,
                    visibility=Visibility.PUBLIC if is_public else Visibility.PRIVATE,
                    url=drive_file_url(item['id'], is_image=mime_type.startswith('image/')),
                ))

            page_token = response.get('nextPageToken')
            if not page_token:
                break

        return results

    def write_table(self, folder_id: str, name: str, header: Sequence[str],
                    rows: Sequence[Sequence[Any]]) -> str:
        parent = self._parent(folder_id)
        escaped = _escape_query_value(name)
        results = self._execute(self.service.files().list(
            q=f"name='{escaped}' and mimeType='{SHEET_MIME}' and '{parent}' in parents and trashed=false",
            fields="files(id)",
            pageSize=1,
            supportsAllDrives=True,
            includeItemsFromAllDrives=True,
        ), f"Find sheet '{name}'")

        items = results.get('files', [])
        if items:
            spreadsheet_id = items[0]['id']
        else:
            created = self._execute(self.service.files().create(
                body={
                    'name': name,
                    'mimeType': SHEET_MIME,
                    'parents': [parent],
                },
                fields='id',
                supportsAllDrives=True,
            ), f"Create sheet '{name}'")
            spreadsheet_id = created.get('id')
            if not spreadsheet_id:
                raise StorageError(f"Create sheet '{name}' returned no file ID")

        values = [list(header)] + [list(row) for row in rows]
        values_api = self.sheets.spreadsheets().values()
        self._execute(values_api.clear(
            spreadsheetId=spreadsheet_id,
            range='A:ZZ',
            body={},
        ), f"Clear sheet '{name}'")
        self._execute(values_api.update(
            spreadsheetId=spreadsheet_id,
            range='A1',
            valueInputOption='RAW',
            body={'values': values},
        ), f"Write sheet '{name}'")

        logger.info("Wrote %d rows to sheet '%s' (%s)", len(values) - 1, name, spreadsheet_id)
        return spreadsheet_id
