"""Persisted configuration overrides.

Administrators store folder IDs here to override the environment and the
built-in defaults without a redeploy.
"""

import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Dict, Optional

DB_DIR = os.path.expanduser("~/.assetsync")
DB_PATH = os.path.join(DB_DIR, "assetsync.db")


class ConfigStore:
    """SQLite key/value store for configuration overrides.

    Safe to share between threads: one connection, guarded by a lock.
    """

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
                CREATE TABLE IF NOT EXISTS system_config (
                    config_key TEXT PRIMARY KEY,
                    config_value TEXT NOT NULL,
                    updated_at TEXT
                )
            """)
            self.conn.commit()

    def get(self, config_key: str) -> Optional[str]:
        """Look up an override. Empty values count as absent."""
        with self._lock:
            row = self.conn.execute(
                "SELECT config_value FROM system_config WHERE config_key = ?",
                (config_key,),
            ).fetchone()
        if row and row['config_value']:
            return row['config_value']
        return None

    def set(self, config_key: str, config_value: str) -> None:
        """Insert or replace an override."""
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self.conn.execute("""
                INSERT OR REPLACE INTO system_config (config_key, config_value, updated_at)
                VALUES (?, ?, ?)
            """, (config_key, config_value, now))
            self.conn.commit()

    def delete(self, config_key: str) -> bool:
        """Remove an override. Returns True if one existed."""
        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM system_config WHERE config_key = ?", (config_key,))
            self.conn.commit()
            return cursor.rowcount > 0

    def all(self) -> Dict[str, str]:
        """Return every stored override."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT config_key, config_value FROM system_config").fetchall()
        return {row['config_key']: row['config_value'] for row in rows}

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self.conn.close()
