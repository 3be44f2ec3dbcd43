"""Periodic reconciliation of local directories and record exports with the store.

One cycle does two things:

1. For every SyncTarget, scan the local directory. Files younger than the
   grace window belong to the live request path and are left alone. Older
   files are uploaded through the UploadQueue, and local copies past the
   retention window are deleted only once an upload has been confirmed.

2. For every RecordExport, fetch the full row set and overwrite the master
   sheet in ``<backup folder>/Daily_Reports/<YYYY-MM-DD>/``.

Failures are isolated: one target or export failing is logged and recorded
in the CycleReport, and the cycle moves on.
"""

import fnmatch
import json
import logging
import mimetypes
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Sequence

from storage.base import ObjectStore
from storage.folders import FolderHierarchyResolver

from .ledger import SyncLedger, compute_sha256
from .upload_queue import UploadQueue

if TYPE_CHECKING:
    from assetsync.targets import RecordExport, SyncTarget

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 60 * 60
DEFAULT_REPORT_FOLDER = "Daily_Reports"
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class SyncResult:
    target: str
    total: int = 0
    uploaded: int = 0
    skipped: int = 0
    failed: int = 0
    deleted: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class ExportResult:
    name: str
    ok: bool
    rows: int = 0
    object_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CycleReport:
    started_at: float
    duration: float = 0.0
    targets: List[SyncResult] = field(default_factory=list)
    exports: List[ExportResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return (all(not r.failed and not r.errors for r in self.targets)
                and all(e.ok for e in self.exports))


@dataclass
class _Candidate:
    path: str
    age: float
    sha256: Optional[str] = None
    confirmed: bool = False


def normalize_cell(value: Any) -> Any:
    """Convert a record value into something a sheet cell accepts."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, (int, float, str)):
        return value
    return str(value)


def normalize_row(row: Sequence[Any]) -> List[Any]:
    return [normalize_cell(v) for v in row]


class SyncScheduler:
    """Runs sync cycles over static targets and exports.

    Without a ledger only files older than the retention window are handled,
    each one uploaded and then deleted. With a ledger, files are uploaded once
    after the grace window and deleted later when they pass retention.
    """

    def __init__(self, store: ObjectStore, config, folders: FolderHierarchyResolver,
                 queue: UploadQueue, targets: Sequence["SyncTarget"],
                 exports: Sequence["RecordExport"] = (),
                 ledger: Optional[SyncLedger] = None,
                 grace_seconds: float = DEFAULT_GRACE_SECONDS,
                 clock: Callable[[], float] = time.time,
                 report_folder: str = DEFAULT_REPORT_FOLDER) -> None:
        self.store = store
        self.config = config
        self.folders = folders
        self.queue = queue
        self.targets = list(targets)
        self.exports = list(exports)
        self.ledger = ledger
        self.grace_seconds = grace_seconds
        self.clock = clock
        self.report_folder = report_folder

        if ledger is None:
            keep_local = [t.name for t in self.targets if not t.cleanup]
            if keep_local:
                raise ValueError(f"Targets without cleanup need a sync ledger: {keep_local}")

    # =========================================================================
    # Cycle
    # =========================================================================

    def run_sync_cycle(self) -> CycleReport:
        """Run one full cycle. Never raises for per-target or per-export failures."""
        report = CycleReport(started_at=self.clock())
        wall_start = time.monotonic()

        for target in self.targets:
            try:
                result = self.sync_target(target)
            except Exception as e:
                logger.exception("Sync of %s failed", target.name)
                result = SyncResult(target=target.name, errors=[f"General Error: {e}"])
            report.targets.append(result)

        for export in self.exports:
            report.exports.append(self.export_records(export))

        report.duration = time.monotonic() - wall_start

        uploaded = sum(r.uploaded for r in report.targets)
        deleted = sum(r.deleted for r in report.targets)
        failed = sum(r.failed for r in report.targets)
        exports_ok = sum(1 for e in report.exports if e.ok)
        logger.info(
            "Sync cycle finished in %.1fs: %d uploaded, %d deleted, %d failed, %d/%d exports written",
            report.duration, uploaded, deleted, failed, exports_ok, len(report.exports),
        )
        return report

    def run_periodically(self, interval: float, stop: Optional[threading.Event] = None) -> None:
        """Run cycles every ``interval`` seconds until ``stop`` is set."""
        stop = stop or threading.Event()
        while not stop.is_set():
            self.run_sync_cycle()
            stop.wait(interval)

    # =========================================================================
    # Targets
    # =========================================================================

    def _scan(self, target: "SyncTarget", result: SyncResult) -> List[_Candidate]:
        now = self.clock()
        retention_seconds = target.retention_days * SECONDS_PER_DAY
        candidates = []

        for name in sorted(os.listdir(target.local_directory)):
            if name.startswith('.'):
                continue
            path = os.path.join(target.local_directory, name)
            if not os.path.isfile(path):
                continue
            if target.pattern and not fnmatch.fnmatch(name, target.pattern):
                continue

            result.total += 1
            try:
                age = now - os.path.getmtime(path)
            except FileNotFoundError:
                logger.info("%s disappeared during the scan, skipping", path)
                result.skipped += 1
                continue
            if age < self.grace_seconds:
                result.skipped += 1
                continue

            if self.ledger is None:
                if age <= retention_seconds:
                    result.skipped += 1
                    continue
                candidates.append(_Candidate(path, age))
                continue

            try:
                sha256 = compute_sha256(path)
            except FileNotFoundError:
                logger.info("%s disappeared during the scan, skipping", path)
                result.skipped += 1
                continue
            confirmed = self.ledger.is_confirmed(path, sha256)
            if confirmed and not (target.cleanup and age > retention_seconds):
                result.skipped += 1
                continue
            candidates.append(_Candidate(path, age, sha256, confirmed))

        return candidates

    def _upload_file(self, folder_id: str, path: str, target: "SyncTarget"):
        name = os.path.basename(path)
        mime_type = mimetypes.guess_type(name)[0] or 'application/octet-stream'
        with open(path, 'rb') as f:
            data = f.read()
        return self.store.upload(folder_id, name, mime_type, data, target.visibility)

    def _delete_local(self, candidate: _Candidate, result: SyncResult) -> None:
        try:
            os.remove(candidate.path)
        except OSError as e:
            result.failed += 1
            result.errors.append(f"{os.path.basename(candidate.path)}: delete failed: {e}")
            logger.warning("Could not delete local copy %s: %s", candidate.path, e)
            return
        if self.ledger is not None:
            self.ledger.forget(candidate.path)
        result.deleted += 1
        logger.info("Deleted local copy %s", candidate.path)

    def sync_target(self, target: "SyncTarget") -> SyncResult:
        """Upload and clean up one target directory."""
        result = SyncResult(target=target.name)

        if not os.path.isdir(target.local_directory):
            logger.warning("Directory not found: %s", target.local_directory)
            return result

        folder_id = self.config.resolve_value(target.storage_key)
        retention_seconds = target.retention_days * SECONDS_PER_DAY
        candidates = self._scan(target, result)
        logger.info("Scanning %s (%d files) -> %s", target.local_directory, result.total,
                    target.storage_key.name)

        futures = []
        for candidate in candidates:
            if candidate.confirmed:
                futures.append((candidate, None))
            else:
                futures.append((candidate, self.queue.submit(
                    self._upload_file, folder_id, candidate.path, target)))

        for candidate, future in futures:
            name = os.path.basename(candidate.path)
            if future is not None:
                try:
                    upload = future.result()
                except Exception as e:
                    result.failed += 1
                    result.errors.append(f"{name}: {e}")
                    logger.warning("Upload of %s failed, keeping local copy: %s", candidate.path, e)
                    continue
                result.uploaded += 1
                if self.ledger is not None:
                    self.ledger.record(candidate.path, candidate.sha256, upload.object_id,
                                       folder_id, self.clock())

            if target.cleanup and candidate.age > retention_seconds:
                self._delete_local(candidate, result)

        return result

    # =========================================================================
    # Exports
    # =========================================================================

    def export_records(self, export: "RecordExport") -> ExportResult:
        """Overwrite one master sheet. Failures are returned, not raised."""
        try:
            backup_id = self.config.resolve_value(export.storage_key)
            day = datetime.fromtimestamp(self.clock()).strftime('%Y-%m-%d')
            folder_id = self.folders.resolve([self.report_folder, day], backup_id)
            rows = [normalize_row(row) for row in export.fetch_rows()]
            object_id = self.queue.submit(
                self.store.write_table, folder_id, export.name, list(export.header), rows,
            ).result()
        except Exception as e:
            logger.exception("Export of %s failed", export.name)
            return ExportResult(name=export.name, ok=False, error=str(e))

        logger.info("Exported %d rows to %s", len(rows), export.name)
        return ExportResult(name=export.name, ok=True, rows=len(rows), object_id=object_id)
