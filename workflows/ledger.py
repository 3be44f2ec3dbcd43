"""Ledger of local files confirmed uploaded by the sync scheduler.

A local file may only be deleted after the ledger holds a confirmed upload
for its exact content (path + SHA-256).
"""

import hashlib
import os
import sqlite3
import threading
import time
from typing import Dict, Optional

DB_PATH = os.path.join(os.path.expanduser("~/.assetsync"), "assetsync.db")


def compute_sha256(file_path: str) -> str:
    """Compute SHA256 hash of a file."""
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256_hash.update(chunk)
    return sha256_hash.hexdigest()


class SyncLedger:
    """SQLite record of confirmed uploads, keyed by local path."""

    def __init__(self, db_path: str = DB_PATH) -> None:
        # Ensure directory exists
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

        self.db_path = db_path
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        """Create table if it doesn't exist."""
        with self._lock:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS synced_files (
                    path TEXT PRIMARY KEY,
                    sha256 TEXT NOT NULL,
                    remote_object_id TEXT NOT NULL,
                    folder_id TEXT,
                    uploaded_at REAL NOT NULL
                )
            """)
            self.conn.commit()

    def get(self, path: str) -> Optional[Dict]:
        """Look up the ledger row for a local path."""
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM synced_files WHERE path = ?", (os.path.abspath(path),)
            ).fetchone()
        return dict(row) if row else None

    def is_confirmed(self, path: str, sha256: str) -> bool:
        """True if this exact content at this path has been uploaded."""
        row = self.get(path)
        return row is not None and row['sha256'] == sha256

    def record(self, path: str, sha256: str, remote_object_id: str,
               folder_id: Optional[str] = None, uploaded_at: Optional[float] = None) -> None:
        """Record a confirmed upload, replacing any earlier one for the path."""
        with self._lock:
            self.conn.execute("""
                INSERT OR REPLACE INTO synced_files
                (path, sha256, remote_object_id, folder_id, uploaded_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                os.path.abspath(path),
                sha256,
                remote_object_id,
                folder_id,
                uploaded_at if uploaded_at is not None else time.time(),
            ))
            self.conn.commit()

    def forget(self, path: str) -> bool:
        """Drop the row for a path (after the local copy is deleted)."""
        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM synced_files WHERE path = ?", (os.path.abspath(path),))
            self.conn.commit()
            return cursor.rowcount > 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self.conn.close()
