"""SQLite database host storage for the plugin record.

The record is stored as one JSON document in a single-row table. The table
exists only to get SQLite's transactional writes; it is not queryable beyond
reading the whole record back.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cardview_state.json_backend import json_default
from cardview_state.protocol import RecordReadError

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS plugin_record (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

UPSERT_SQL = """
INSERT INTO plugin_record (id, payload, updated_at) VALUES (1, ?, ?)
ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
"""


def utc_iso_timestamp() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    dt = datetime.now(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class SQLiteHostStorage:
    """SQLite database host storage for the plugin record.

    Uses WAL mode and IMMEDIATE transactions so a failed write leaves the
    previous record in place.

    Attributes:
        db_path: The Path to the SQLite database file.

    Example:
        storage = SQLiteHostStorage(Path("/home/user/.cardview/data.db"))
        raw = await storage.load_data()
        await storage.save_data(record)
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the SQLite host storage.

        Creates the database file and schema if they don't exist.

        Args:
            db_path: The path to the SQLite database file.

        Raises:
            sqlite3.Error: If there's an error initializing the database.
        """
        self.db_path = db_path
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        """Create and configure a database connection.

        Returns:
            A configured sqlite3.Connection object.

        Raises:
            sqlite3.Error: If there's an error connecting to the database.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            isolation_level="IMMEDIATE",
            check_same_thread=False,  # Safe: each operation uses fresh connection
        )
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._connect()
        try:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()

    def read_record(self) -> Any:
        """Read and decode the stored record.

        Returns:
            The decoded record, or None if nothing has been stored.

        Raises:
            RecordReadError: If the stored payload is not valid JSON.
            sqlite3.Error: If there's an error querying the database.
        """
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT payload FROM plugin_record WHERE id = 1"
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            raise RecordReadError(
                f"Record in {self.db_path} is corrupt: {e.msg}"
            ) from e

    def write_record(self, data: Any) -> None:
        """Replace the stored record in a single transaction.

        Args:
            data: A JSON-compatible record.

        Raises:
            sqlite3.Error: If there's an error during the transaction.
            TypeError: If the record holds values that cannot be serialized.
        """
        payload = json.dumps(data, ensure_ascii=False, default=json_default)

        conn = self._connect()
        try:
            conn.execute(UPSERT_SQL, (payload, utc_iso_timestamp()))
            conn.commit()
        except sqlite3.Error:
            try:
                conn.rollback()
            except sqlite3.Error:
                pass  # Connection may be in bad state after commit failure
            raise
        finally:
            conn.close()

    async def load_data(self) -> Any:
        return await asyncio.to_thread(self.read_record)

    async def save_data(self, data: Any) -> None:
        await asyncio.to_thread(self.write_record, data)
