"""
Local persistence - SQLite-backed settings and library snapshot cache
"""

import logging
import os
import sqlite3
from datetime import datetime
from typing import Dict, Optional

from dastan.errors import SnapshotFormatError
from dastan.models import Library, decode_library, encode_library


class LocalStore:
    """SQLite store for persisted sync settings and the last known library snapshot"""

    def __init__(self, db_file: str = "data/.dastan_state.db"):
        self.db_file = db_file
        self.logger = logging.getLogger(__name__)
        abs_path = os.path.abspath(self.db_file)
        self.logger.debug(f"LocalStore: Database file path: {self.db_file} (absolute: {abs_path})")
        try:
            self._init_database()
        except Exception as e:
            self.logger.error(f"Failed to initialize database at {self.db_file}: {str(e)}")
            raise

    def _init_database(self) -> None:
        """Initialize SQLite database with schema"""
        db_dir = os.path.dirname(self.db_file)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)
            self.logger.info(f"Created data directory: {db_dir}")

        with sqlite3.connect(self.db_file) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            # Single-row table; id is always 1
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS library_snapshot (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    payload TEXT NOT NULL,
                    saved_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_file)
        conn.row_factory = sqlite3.Row
        return conn

    # Settings
    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM settings WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row["value"] if row else default

    def get_settings(self) -> Dict[str, str]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT key, value FROM settings")
            return {row["key"]: row["value"] for row in cursor.fetchall()}

    def set_setting(self, key: str, value: Optional[str]) -> None:
        """Store a setting; a None or empty value removes the key"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            if value:
                cursor.execute(
                    """
                    INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, value, datetime.now().isoformat()),
                )
            else:
                cursor.execute("DELETE FROM settings WHERE key = ?", (key,))
            conn.commit()

    def update_settings(self, values: Dict[str, Optional[str]]) -> None:
        """Write several settings in one transaction"""
        current_time = datetime.now().isoformat()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            for key, value in values.items():
                if value:
                    cursor.execute(
                        """
                        INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                        """,
                        (key, value, current_time),
                    )
                else:
                    cursor.execute("DELETE FROM settings WHERE key = ?", (key,))
            conn.commit()
        self.logger.debug(f"Persisted settings: {sorted(values)}")

    # Library snapshot
    def load_library(self) -> Optional[Library]:
        """Return the cached library, or None when nothing has been cached"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT payload FROM library_snapshot WHERE id = 1")
            row = cursor.fetchone()

        if not row:
            return None

        try:
            return decode_library(row["payload"])
        except SnapshotFormatError as e:
            self.logger.warning(f"Ignoring corrupt local library cache: {str(e)}")
            return None

    def save_library(self, books: Library) -> None:
        payload = encode_library(books)
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO library_snapshot (id, payload, saved_at) VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, saved_at = excluded.saved_at
                """,
                (payload, datetime.now().isoformat()),
            )
            conn.commit()
        self.logger.debug(f"Cached library snapshot locally ({len(books)} books)")

    def clear(self) -> None:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM settings")
            cursor.execute("DELETE FROM library_snapshot")
            conn.commit()
        self.logger.info("Local store cleared")
