"""
Reminder Store

Durable key-value storage for the reminder collection and the settings
record. Each value is a JSON document kept in a small SQLite table under one
of two fixed keys. No business rules live here; callers read and write whole
collections.
"""

import json
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional

from vocalizeit.errors import StoreError, ValidationError
from vocalizeit.logger import get_logger
from vocalizeit.models import AppSettings, Reminder


REMINDERS_KEY = "vocalizeit_reminders"
SETTINGS_KEY = "vocalizeit_settings"


class ReminderStore:
    """SQLite-backed key-value store holding reminders and settings as JSON."""

    def __init__(self, config, db_path: Optional[str] = None):
        self.config = config
        self.logger = get_logger(__name__, config)

        self.db_path = Path(db_path or config.get("storage.db_path")).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_lock = threading.Lock()
        self._init_db()

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    def _init_db(self):
        """Create the key-value table if it doesn't exist."""
        with self._db_lock:
            try:
                conn = sqlite3.connect(str(self.db_path))
            except sqlite3.Error as e:
                raise StoreError(f"Cannot open store at {self.db_path}: {e}") from e
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS kv_store (
                        key         TEXT PRIMARY KEY,
                        value       TEXT NOT NULL,
                        updated_at  TEXT NOT NULL DEFAULT (datetime('now', 'localtime'))
                    )
                """)
                conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Cannot initialize store at {self.db_path}: {e}") from e
            finally:
                conn.close()
        self.logger.info(f"Reminder store ready at {self.db_path}")

    def _read(self, key: str):
        """Return the decoded JSON value for key, or None when absent."""
        with self._db_lock:
            try:
                conn = sqlite3.connect(str(self.db_path))
                try:
                    row = conn.execute(
                        "SELECT value FROM kv_store WHERE key = ?", (key,)
                    ).fetchone()
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to read '{key}': {e}") from e

        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            raise StoreError(f"Corrupt JSON under '{key}': {e}") from e

    def _write(self, key: str, value):
        payload = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        with self._db_lock:
            try:
                conn = sqlite3.connect(str(self.db_path))
                try:
                    conn.execute("""
                        INSERT INTO kv_store (key, value) VALUES (?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value = excluded.value,
                            updated_at = datetime('now', 'localtime')
                    """, (key, payload))
                    conn.commit()
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to write '{key}': {e}") from e

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def get_all(self) -> List[Reminder]:
        """Load the full reminder collection (empty list when nothing saved)."""
        data = self._read(REMINDERS_KEY)
        if data is None:
            return []
        if not isinstance(data, list):
            raise StoreError(f"'{REMINDERS_KEY}' is not a list")
        try:
            return [Reminder.from_dict(item) for item in data]
        except (ValidationError, TypeError, AttributeError) as e:
            raise StoreError(f"Invalid reminder record: {e}") from e

    def save_all(self, reminders: List[Reminder]):
        """Replace the persisted collection."""
        self._write(REMINDERS_KEY, [r.to_dict() for r in reminders])
        self.logger.debug(f"Saved {len(reminders)} reminder(s)")

    def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        """Get a single reminder by ID."""
        for reminder in self.get_all():
            if reminder.id == reminder_id:
                return reminder
        return None

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self) -> AppSettings:
        """Load settings merged onto defaults."""
        data = self._read(SETTINGS_KEY)
        if data is not None and not isinstance(data, dict):
            raise StoreError(f"'{SETTINGS_KEY}' is not an object")
        return AppSettings.from_dict(data)

    def save_settings(self, settings: AppSettings):
        self._write(SETTINGS_KEY, settings.to_dict())
