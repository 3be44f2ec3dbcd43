"""Shared fixtures: an in-memory stand-in for the Drive v3 / Sheets v4 clients.

The fake reproduces the ``service.files().list(...).execute()`` call chain
used by GDriveStore and raises real ``HttpError``s, so the store's error
translation and retry paths run unchanged.
"""

import itertools
import json
import re
import threading

import httplib2
import pytest
from googleapiclient.errors import HttpError

from cache import InProcessCache
from storage import GDriveStore

FOLDER_MIME = 'application/vnd.google-apps.folder'

_NAME = re.compile(r"name='((?:[^'\\]|\\.)*)'")
_PARENT = re.compile(r"'([^']+)' in parents")
_MIME_EQ = re.compile(r"mimeType='([^']+)'")
_MIME_NE = re.compile(r"mimeType!='([^']+)'")


def make_http_error(status, reason=None, message="error"):
    """Build an HttpError the way googleapiclient raises it."""
    resp = httplib2.Response({'status': str(status)})
    error = {'code': status, 'message': message}
    if reason:
        error['errors'] = [{'reason': reason, 'message': message}]
    return HttpError(resp, json.dumps({'error': error}).encode('utf-8'))


def _unescape(value):
    return re.sub(r"\\(.)", r"\1", value)


class FakeRequest:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class _Resource:
    def __init__(self, fake, prefix):
        self._fake = fake
        self._prefix = prefix

    def __getattr__(self, method):
        handler = getattr(self._fake, f"_{self._prefix}_{method}")

        def call(**kwargs):
            return FakeRequest(lambda: self._fake._dispatch(f"{self._prefix}.{method}", handler, kwargs))
        return call


class FakeDrive:
    """In-memory Drive: files keyed by ID, with parents and permissions."""

    def __init__(self, root_id='root'):
        self.root_id = root_id
        self.items = {}
        self.calls = []
        self._failures = []
        self._call_counts = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    # -- client surface ----------------------------------------------------

    def files(self):
        return _Resource(self, 'files')

    def permissions(self):
        return _Resource(self, 'permissions')

    # -- test helpers ------------------------------------------------------

    def fail(self, method, status=None, reason=None, times=1, on_call=None, error=None):
        """Make ``method`` ('files.create', 'permissions.create', ...) fail.

        Args:
            status: HTTP status to raise
            reason: Google error reason (e.g. 'rateLimitExceeded')
            times: How many calls fail
            on_call: Only fail starting with the Nth call of that method
            error: Exception raised instead of an HttpError (transport failures)
        """
        with self._lock:
            self._failures.append({
                'method': method, 'status': status, 'reason': reason,
                'times': times, 'on_call': on_call, 'error': error,
            })

    def add_folder(self, name, parent=None):
        return self._add(name, FOLDER_MIME, parent or self.root_id)

    def add_file(self, name, parent=None, mime_type='application/pdf', data=b'', public=False):
        file_id = self._add(name, mime_type, parent or self.root_id, data)
        if public:
            self.items[file_id]['permissionIds'].append('anyoneWithLink')
        return file_id

    def children(self, parent, mime_type=None):
        with self._lock:
            return [item for item in self.items.values()
                    if parent in item['parents']
                    and (mime_type is None or item['mimeType'] == mime_type)]

    def count_calls(self, method):
        with self._lock:
            return sum(1 for name, _ in self.calls if name == method)

    # -- internals ---------------------------------------------------------

    def _add(self, name, mime_type, parent, data=b''):
        with self._lock:
            file_id = f"id{next(self._ids):022d}"
            self.items[file_id] = {
                'id': file_id,
                'name': name,
                'mimeType': mime_type,
                'parents': [parent],
                'size': str(len(data)),
                'data': data,
                'permissionIds': [],
            }
            return file_id

    def _dispatch(self, method, handler, kwargs):
        with self._lock:
            self.calls.append((method, kwargs))
            count = self._call_counts.get(method, 0) + 1
            self._call_counts[method] = count
            for failure in self._failures:
                if failure['method'] != method or failure['times'] <= 0:
                    continue
                if failure['on_call'] is not None and count < failure['on_call']:
                    continue
                failure['times'] -= 1
                if failure['error'] is not None:
                    raise failure['error']
                raise make_http_error(failure['status'], failure['reason'])
            return handler(**kwargs)

    def _get(self, file_id):
        item = self.items.get(file_id)
        if item is None:
            raise make_http_error(404, 'notFound', f"File not found: {file_id}")
        return item

    def _files_list(self, q, fields=None, pageSize=100, pageToken=None, **kwargs):
        name = _NAME.search(q)
        parent = _PARENT.search(q)
        mime_eq = _MIME_EQ.search(q)
        mime_ne = _MIME_NE.search(q)

        matches = []
        for item in self.items.values():
            if name and item['name'] != _unescape(name.group(1)):
                continue
            if parent and parent.group(1) not in item['parents']:
                continue
            if mime_eq and item['mimeType'] != mime_eq.group(1):
                continue
            if mime_ne and item['mimeType'] == mime_ne.group(1):
                continue
            matches.append(item)

        start = int(pageToken or 0)
        page = matches[start:start + pageSize]
        response = {'files': [{k: v for k, v in item.items() if k != 'data'} for item in page]}
        if start + pageSize < len(matches):
            response['nextPageToken'] = str(start + pageSize)
        return response

    def _files_create(self, body, media_body=None, fields=None, **kwargs):
        data = b''
        if media_body is not None:
            data = media_body.getbytes(0, media_body.size())
        parent = (body.get('parents') or [self.root_id])[0]
        file_id = self._add(body['name'], body.get('mimeType', 'application/octet-stream'), parent, data)
        return {'id': file_id}

    def _files_get(self, fileId, fields=None, **kwargs):
        item = self._get(fileId)
        return {'id': item['id'], 'name': item['name'], 'parents': list(item['parents'])}

    def _files_update(self, fileId, body=None, addParents=None, removeParents=None, fields=None, **kwargs):
        item = self._get(fileId)
        if body and 'name' in body:
            item['name'] = body['name']
        if removeParents:
            remove = removeParents.split(',')
            item['parents'] = [p for p in item['parents'] if p not in remove]
        if addParents:
            item['parents'].extend(addParents.split(','))
        return {'id': item['id'], 'parents': list(item['parents'])}

    def _files_delete(self, fileId, **kwargs):
        self._get(fileId)
        del self.items[fileId]
        return ''

    def _permissions_create(self, fileId, body, **kwargs):
        item = self._get(fileId)
        if body.get('type') == 'anyone':
            item['permissionIds'].append('anyoneWithLink')
        return {'id': 'anyoneWithLink'}


class FakeSheets:
    """In-memory Sheets values API."""

    def __init__(self):
        self.data = {}
        self.calls = []

    def spreadsheets(self):
        return self

    def values(self):
        return self

    def clear(self, spreadsheetId, range, body=None):
        def run():
            self.calls.append(('clear', spreadsheetId))
            self.data[spreadsheetId] = []
            return {}
        return FakeRequest(run)

    def update(self, spreadsheetId, range, valueInputOption, body):
        def run():
            self.calls.append(('update', spreadsheetId, valueInputOption))
            self.data[spreadsheetId] = [list(row) for row in body['values']]
            return {'updatedRows': len(body['values'])}
        return FakeRequest(run)


@pytest.fixture
def fake_drive():
    return FakeDrive()


@pytest.fixture
def fake_sheets():
    return FakeSheets()


@pytest.fixture
def gdrive_store(fake_drive, fake_sheets):
    """GDriveStore wired to the in-memory fakes, with instant retries."""
    return GDriveStore(
        service=fake_drive,
        sheets_service=fake_sheets,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def memory_cache():
    cache = InProcessCache(sweep_interval=0)
    yield cache
    cache.close()
