"""Sync targets and record exports read by the sync scheduler."""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Sequence

from storage.base import Visibility

from .config import StorageKey, coerce_key

DEFAULT_RETENTION_DAYS = 30

# Column layouts of the master backup sheets.
LEADS_HEADER = ['ID', 'Name', 'Phone', 'Status', 'Source', 'Agent', 'Manager', 'Created At', 'Notes']
SALES_HEADER = ['ID', 'Order Code', 'Product', 'Cabin', 'Amount', 'Status', 'Agent', 'Sale Date', 'Created At']
COMMISSION_LEDGER_HEADER = ['ID', 'Profile', 'Code', 'Type', 'Amount', 'Withholding', 'Settled', 'Created At']
PAYSLIPS_HEADER = ['ID', 'Period', 'Profile', 'Type', 'Total Sales', 'Commission', 'Withholding',
                   'Net Payment', 'Status']


@dataclass
class SyncTarget:
    """A local directory mirrored into a configured storage location.

    Attributes:
        local_directory: Directory scanned on every cycle
        storage_key: Where the files go (StorageKey, its name or stored ID)
        retention_days: Local copies older than this are removed once uploaded
        pattern: Optional glob restricting which file names are synced
        visibility: Visibility given to uploaded objects
        cleanup: Whether local copies may be deleted at all
    """
    local_directory: str
    storage_key: StorageKey
    retention_days: int = DEFAULT_RETENTION_DAYS
    pattern: Optional[str] = None
    visibility: Visibility = Visibility.PRIVATE
    cleanup: bool = True

    def __post_init__(self) -> None:
        self.storage_key = coerce_key(self.storage_key)
        self.visibility = Visibility(self.visibility)
        if self.retention_days < 0:
            raise ValueError("retention_days must not be negative")

    @property
    def name(self) -> str:
        return f"{self.local_directory} -> {self.storage_key.name}"


@dataclass
class RecordExport:
    """A table of domain records overwritten into a master sheet each cycle.

    ``fetch_rows`` is called once per cycle and returns the full row set.
    """
    name: str
    storage_key: StorageKey
    header: Sequence[str]
    fetch_rows: Callable[[], Iterable[Sequence[Any]]] = field(repr=False)

    def __post_init__(self) -> None:
        self.storage_key = coerce_key(self.storage_key)


def leads_export(fetch_rows: Callable[[], Iterable[Sequence[Any]]]) -> RecordExport:
    return RecordExport('Master_Leads_Backup', StorageKey.LEADS_BACKUP, LEADS_HEADER, fetch_rows)


def sales_export(fetch_rows: Callable[[], Iterable[Sequence[Any]]]) -> RecordExport:
    return RecordExport('Master_Sales_Backup', StorageKey.SALES_BACKUP, SALES_HEADER, fetch_rows)


def commission_ledger_export(fetch_rows: Callable[[], Iterable[Sequence[Any]]]) -> RecordExport:
    return RecordExport('Master_Commission_Ledger', StorageKey.SETTLEMENTS_BACKUP,
                        COMMISSION_LEDGER_HEADER, fetch_rows)


def payslips_export(fetch_rows: Callable[[], Iterable[Sequence[Any]]]) -> RecordExport:
    return RecordExport('Master_Payslips_Summary', StorageKey.SETTLEMENTS_BACKUP,
                        PAYSLIPS_HEADER, fetch_rows)


def load_targets(path: str) -> List[SyncTarget]:
    """Load sync targets from a JSON file.

    The file holds either a list of target objects or ``{"targets": [...]}``.
    Each object takes the SyncTarget field names; relative directories are
    resolved against the file's own directory.

    Raises:
        ValueError: If the file is not valid or a target is malformed
    """
    with open(path, 'r', encoding='utf-8') as f:
        try:
            data = json.load(f)
        except ValueError as e:
            raise ValueError(f"Invalid targets file {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get('targets', [])
    if not isinstance(data, list):
        raise ValueError(f"Invalid targets file {path}: expected a list of targets")

    base_dir = os.path.dirname(os.path.abspath(path))
    targets = []
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise ValueError(f"Target #{i + 1} in {path} is not an object")
        try:
            target = SyncTarget(**item)
        except TypeError as e:
            raise ValueError(f"Target #{i + 1} in {path}: {e}") from e
        target.local_directory = os.path.join(base_dir, os.path.expanduser(target.local_directory))
        targets.append(target)
    return targets
