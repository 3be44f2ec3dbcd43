"""Workflow layer for assetsync.

- UploadQueue: bounded-concurrency job queue for remote uploads
- SyncScheduler: periodic local-to-remote reconciliation and record exports
- SyncLedger: record of confirmed uploads, gating local deletion
"""

from .ledger import SyncLedger, compute_sha256
from .sync import (
    CycleReport,
    ExportResult,
    SyncResult,
    SyncScheduler,
    normalize_cell,
    normalize_row,
)
from .upload_queue import UploadQueue


__all__ = [
    # Upload queue
    'UploadQueue',

    # Sync ledger
    'SyncLedger',
    'compute_sha256',

    # Sync scheduler
    'SyncScheduler',
    'CycleReport',
    'SyncResult',
    'ExportResult',
    'normalize_cell',
    'normalize_row',
]
