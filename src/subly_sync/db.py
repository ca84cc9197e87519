"""
SQLite persistence for the subscriptions/settings blob.
"""

import json
import logging
import sqlite3
import time
from pathlib import Path

from subly_sync.models import AppState
from subly_sync.models import CalendarSyncError
from subly_sync.models import normalize_state

STATE_KEY = "subly:state"

logger = logging.getLogger(__name__)


class StateStore:
    """Key/value store holding the whole application state under one key.

    save() overwrites the whole object; there is no finer-grained
    transactionality.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Initialize and connect to the state database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS app_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)
        self.conn.commit()

    def _require_conn(self) -> sqlite3.Connection:
        if not self.conn:
            raise CalendarSyncError("State database not connected")
        return self.conn

    def load(self) -> AppState:
        """Return the stored state, or a default one when nothing is stored yet.

        A value that is not valid JSON is treated as empty rather than fatal.
        """
        row = (
            self._require_conn()
            .execute("SELECT value FROM app_state WHERE key = ?", (STATE_KEY,))
            .fetchone()
        )
        if row is None:
            return normalize_state(None)
        try:
            raw = json.loads(row["value"])
        except json.JSONDecodeError as e:
            logger.warning(f"Stored state is not valid JSON, starting empty: {e}")
            raw = None
        return normalize_state(raw)

    def save(self, state: AppState):
        conn = self._require_conn()
        conn.execute(
            "INSERT INTO app_state (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
            "updated_at = excluded.updated_at",
            (STATE_KEY, json.dumps(state.to_dict()), int(time.time())),
        )
        conn.commit()

    def last_saved_at(self) -> int | None:
        row = (
            self._require_conn()
            .execute("SELECT updated_at FROM app_state WHERE key = ?", (STATE_KEY,))
            .fetchone()
        )
        return row["updated_at"] if row else None

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
